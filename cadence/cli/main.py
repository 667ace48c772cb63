"""
Cadence CLI entry point.

Commands:
    cadence add       — Create a schedule
    cadence edit      — Change a schedule
    cadence remove    — Delete a schedule
    cadence list      — All schedules
    cadence calendar  — Month view of occurrences
    cadence upcoming  — Next runs, soonest first
    cadence history   — Execution ledger
    cadence run       — Start the executor loop
    cadence tick      — Run a single executor tick
"""

from __future__ import annotations

import asyncio
import calendar as cal
import datetime
import logging
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cadence.core.config import CadenceConfig
from cadence.core.errors import CadenceError, ConfigError

app = typer.Typer(
    name="cadence",
    help="Cadence — scheduled activation of dialer campaigns and lists.",
    add_completion=False,
)

console = Console()


def get_home() -> Path:
    """Get the Cadence home directory."""
    return Path.home() / ".cadence"


def get_config_path() -> Path:
    """Get the user config file path."""
    return get_home() / "config.toml"


def _load_config() -> CadenceConfig:
    try:
        return CadenceConfig.load()
    except ConfigError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Wiring
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class Runtime:
    """Store, ledger and service opened on the configured database."""

    def __init__(self, config: CadenceConfig) -> None:
        from cadence.scheduler.ledger import ExecutionLedger
        from cadence.scheduler.service import ScheduleService
        from cadence.scheduler.store import ScheduleStore

        db_path = config.get_db_path()
        self.config = config
        self.store = ScheduleStore(db_path=db_path)
        self.ledger = ExecutionLedger(db_path, instance_id=config.scheduler.instance_id or None)
        self.service = ScheduleService(
            self.store, self.ledger, max_attempts=config.executor.max_attempts
        )

    async def __aenter__(self) -> "Runtime":
        await self.store.initialize()
        await self.ledger.initialize()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.ledger.close()
        await self.store.close()


def make_port(config: CadenceConfig):
    """Build the configured TargetActivationPort."""
    provider = config.target.provider
    if provider == "http":
        from cadence.targets.http import HttpTargetPort

        return HttpTargetPort(
            base_url=config.target.base_url,
            api_key=config.target.api_key,
            timeout=config.target.timeout,
        )
    if provider == "memory":
        from cadence.targets.memory import InMemoryTargetPort

        return InMemoryTargetPort()
    raise ConfigError(f"Unknown target provider: {provider!r}")


def make_router(config: CadenceConfig, foreground: bool = True):
    """Build the operator notification router."""
    from cadence.notifications.router import NotificationRouter
    from cadence.notifications.channels.console import ConsoleChannel
    from cadence.notifications.channels.file import FileChannel
    from cadence.notifications.channels.telegram import TelegramChannel

    router = NotificationRouter()
    console_channel = ConsoleChannel(console)
    console_channel.set_active(foreground)
    router.register(console_channel)
    router.register(FileChannel(config.get_home() / "notifications.log"))
    if config.telegram.configured:
        router.register(TelegramChannel(config.telegram.token, config.telegram.chat_id))
    return router


def _run(coro: Any) -> Any:
    """Run a coroutine, turning Cadence errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except CadenceError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)


def _fmt(value: datetime.datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "—"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Schedule commands
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@app.command()
def add(
    target_id: str = typer.Argument(..., help="Campaign or list id"),
    at: str = typer.Option(..., "--at", help="First run, e.g. '2024-03-01 08:00'"),
    schedule_type: str = typer.Option("campaign", "--type", "-t", help="campaign | list"),
    action: str = typer.Option("activate", "--action", "-a", help="activate | deactivate"),
    recurring: str = typer.Option("none", "--repeat", "-r", help="none | daily | weekly | monthly"),
    until: str = typer.Option(None, "--until", help="Last day, inclusive"),
    name: str = typer.Option(None, "--name", "-n", help="Display name of the target"),
) -> None:
    """Create a schedule."""

    async def _add():
        async with Runtime(_load_config()) as rt:
            return await rt.service.create_schedule(
                schedule_type=schedule_type,
                target_id=target_id,
                target_name=name,
                action=action,
                scheduled_at=at,
                end_at=until,
                recurring=recurring,
            )

    record = _run(_add())
    console.print(f"[green]Schedule {record.id} created:[/green] {record.label} at {_fmt(record.scheduled_at)}")


@app.command()
def edit(
    schedule_id: int = typer.Argument(..., help="Schedule id"),
    at: str = typer.Option(None, "--at", help="New first run"),
    action: str = typer.Option(None, "--action", "-a"),
    recurring: str = typer.Option(None, "--repeat", "-r"),
    until: str = typer.Option(None, "--until", help="New last day ('' to clear)"),
    name: str = typer.Option(None, "--name", "-n"),
) -> None:
    """Change a schedule."""
    changes: dict[str, Any] = {}
    if at is not None:
        changes["scheduled_at"] = at
    if action is not None:
        changes["action"] = action
    if recurring is not None:
        changes["recurring"] = recurring
    if until is not None:
        changes["end_at"] = until or None
    if name is not None:
        changes["target_name"] = name
    if not changes:
        console.print("[yellow]Nothing to change.[/yellow]")
        raise typer.Exit(0)

    async def _edit():
        async with Runtime(_load_config()) as rt:
            return await rt.service.update_schedule(schedule_id, **changes)

    record = _run(_edit())
    console.print(f"[green]Schedule {record.id} updated.[/green]")


@app.command()
def remove(schedule_id: int = typer.Argument(..., help="Schedule id")) -> None:
    """Delete a schedule."""

    async def _remove():
        async with Runtime(_load_config()) as rt:
            return await rt.service.delete_schedule(schedule_id)

    if not _run(_remove()):
        console.print(f"[yellow]Schedule {schedule_id} not found.[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]Schedule {schedule_id} deleted.[/green]")


@app.command("list")
def list_schedules() -> None:
    """Show all schedules."""

    async def _list():
        async with Runtime(_load_config()) as rt:
            return await rt.service.list_schedules()

    records = _run(_list())
    if not records:
        console.print("[dim]No schedules.[/dim]")
        return

    table = Table(title="Schedules")
    for column in ("ID", "Type", "Target", "Action", "First run", "Until", "Repeat", "Executed"):
        table.add_column(column)
    for r in records:
        table.add_row(
            str(r.id),
            r.schedule_type.value,
            r.target_name or r.target_id,
            r.action.value,
            _fmt(r.scheduled_at),
            _fmt(r.end_at),
            r.recurring.value,
            "yes" if r.executed else "",
        )
    console.print(table)


@app.command()
def calendar(
    month: str = typer.Option(None, "--month", "-m", help="YYYY-MM (default: this month)"),
) -> None:
    """Show a month grid with every occurrence."""
    today = datetime.date.today()
    try:
        first = datetime.datetime.strptime(month, "%Y-%m").date() if month else today.replace(day=1)
    except ValueError:
        console.print(f"[red]Invalid month: {month!r} (expected YYYY-MM)[/red]")
        raise typer.Exit(1)
    last = first.replace(day=cal.monthrange(first.year, first.month)[1])

    async def _occurrences():
        async with Runtime(_load_config()) as rt:
            return await rt.service.list_occurrences(first, last)

    occurrences = _run(_occurrences())
    by_day: dict[datetime.date, list[str]] = {}
    for schedule, dates in occurrences:
        for day in dates:
            by_day.setdefault(day, []).append(f"#{schedule.id} {schedule.action.value[:3]} {schedule.target_name}")

    table = Table(title=first.strftime("%B %Y"), show_lines=True)
    for name in ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"):
        table.add_column(name, width=16)
    for week in cal.Calendar(firstweekday=6).monthdatescalendar(first.year, first.month):
        cells = []
        for day in week:
            if day.month != first.month:
                cells.append("")
                continue
            style = "bold cyan" if day == today else "bold"
            lines = [f"[{style}]{day.day}[/{style}]"] + by_day.get(day, [])
            cells.append("\n".join(lines))
        table.add_row(*cells)
    console.print(table)


@app.command()
def upcoming(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of schedules to show"),
) -> None:
    """Show the next runs, soonest first."""

    async def _upcoming():
        async with Runtime(_load_config()) as rt:
            return await rt.service.list_upcoming(limit=limit)

    entries = _run(_upcoming())
    if not entries:
        console.print("[dim]Nothing scheduled.[/dim]")
        return

    table = Table(title="Upcoming")
    for column in ("ID", "Next run", "Action", "Target", "Repeat", "Done", "Last execution"):
        table.add_column(column)
    for entry in entries:
        s = entry.schedule
        last = entry.last_execution
        if entry.overdue:
            last_text = "[yellow]overdue[/yellow]"
        elif last is None:
            last_text = ""
        elif last.committed:
            last_text = f"[green]committed[/green] {last.occurrence_date}"
        else:
            last_text = f"[red]{last.status.value}[/red] {last.occurrence_date}: {last.error or ''}"
        table.add_row(
            str(s.id),
            _fmt(entry.next_run),
            s.action.value,
            f"{s.schedule_type.value} {s.target_name or s.target_id}",
            s.recurring.value,
            "yes" if entry.executed else "",
            last_text,
        )
    console.print(table)


@app.command()
def history(
    schedule_id: int = typer.Option(None, "--schedule", "-s", help="Only this schedule"),
    limit: int = typer.Option(50, "--limit", "-n"),
) -> None:
    """Show the execution ledger."""

    async def _history():
        async with Runtime(_load_config()) as rt:
            return await rt.service.history(schedule_id=schedule_id, limit=limit)

    facts = _run(_history())
    if not facts:
        console.print("[dim]No executions recorded.[/dim]")
        return

    table = Table(title="Executions")
    for column in ("Schedule", "Occurrence", "Status", "Attempts", "At", "By", "Error"):
        table.add_column(column)
    colours = {"committed": "green", "failed": "red", "firing": "yellow"}
    for f in facts:
        colour = colours.get(f.status.value, "white")
        table.add_row(
            str(f.schedule_id),
            f.occurrence_date.isoformat(),
            f"[{colour}]{f.status.value}[/{colour}]",
            str(f.attempts),
            _fmt(f.executed_at),
            f.claimed_by,
            f.error or "",
        )
    console.print(table)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Executor commands
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _engine(rt: Runtime, port: Any, router: Any):
    from cadence.scheduler.engine import ExecutorEngine

    return ExecutorEngine(
        rt.store,
        rt.ledger,
        port,
        router=router,
        config=rt.config.executor,
        poll_interval=rt.config.scheduler.poll_interval,
    )


@app.command()
def run(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Start the executor loop (Ctrl-C to stop)."""
    from cadence.core.logging import setup_logging

    config = _load_config()
    if not config.scheduler.enabled:
        console.print("[yellow]Scheduler is disabled in config.[/yellow]")
        raise typer.Exit(0)

    setup_logging(
        log_dir=config.get_log_dir(),
        console_level=logging.DEBUG if verbose else config.logging.console_level,
    )
    logger = logging.getLogger("cadence")

    async def _serve():
        port = make_port(config)
        async with Runtime(config) as rt:
            engine = _engine(rt, port, make_router(config))
            console.print(
                f"[bold]Cadence executor[/bold] {engine.instance_id} "
                f"polling every {config.scheduler.poll_interval}s on {config.get_db_path()}"
            )
            await engine.start()
            try:
                await asyncio.Event().wait()
            finally:
                await engine.stop()
                await port.close()
                logger.info("Executor shut down")

    try:
        _run(_serve())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


@app.command()
def tick() -> None:
    """Run one executor tick and wait for its firings."""
    config = _load_config()

    async def _tick():
        port = make_port(config)
        async with Runtime(config) as rt:
            engine = _engine(rt, port, make_router(config))
            try:
                tasks = await engine.tick()
                return await asyncio.gather(*tasks)
            finally:
                await port.close()

    outcomes = _run(_tick())
    if not outcomes:
        console.print("[dim]Nothing due.[/dim]")
        return
    summary = ", ".join(f"{o.value}" for o in outcomes)
    console.print(f"Fired {len(outcomes)} occurrence(s): {summary}")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Housekeeping
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@app.command()
def version() -> None:
    """Show Cadence version."""
    from cadence import __version__
    console.print(f"Cadence v{__version__}")


@app.command()
def logs(
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
) -> None:
    """Show today's log."""
    from cadence.core.logging import log_file_name

    log_file = _load_config().get_log_dir() / log_file_name()
    if not log_file.exists():
        console.print(f"[dim]No log file for today: {log_file}[/dim]")
        raise typer.Exit(0)

    with open(log_file, "r", encoding="utf-8") as f:
        all_lines = f.readlines()
    for line in all_lines[-lines:]:
        console.print(line.rstrip(), markup=False)


@app.command()
def config() -> None:
    """Show current configuration."""
    cfg = _load_config()
    config_path = get_config_path()

    console.print(Panel("[bold]Cadence Configuration[/bold]", border_style="cyan"))
    console.print(f"[bold]Config file:[/bold] {config_path}")
    if config_path.exists():
        console.print(Panel(config_path.read_text(), title="config.toml", border_style="dim"))
    else:
        console.print("[dim]Not found, using defaults.[/dim]")

    console.print(f"[bold]Database:[/bold] {cfg.get_db_path()}")
    console.print(f"[bold]Target:[/bold] {cfg.target.provider} {cfg.target.base_url}")
    console.print(
        f"[bold]Executor:[/bold] poll {cfg.scheduler.poll_interval}s, "
        f"timeout {cfg.executor.activation_timeout:g}s, "
        f"{cfg.executor.max_attempts} attempts"
    )


if __name__ == "__main__":
    app()
