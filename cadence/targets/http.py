"""
HttpTargetPort — switches campaigns and lists through the dialer REST API.

Requires config:
    [target]
    base_url = "https://dialer.example.com/api"
    api_key  = "${DIALER_API_KEY}"     # optional, sent as a Bearer token

Calls:
    PUT {base_url}/campaigns/{id}   {"active": "Y" | "N"}
    PUT {base_url}/lists/{id}       {"active": "Y" | "N"}

The API answers errors as JSON {"error": "..."}; that message becomes
the failure reason.
"""

from __future__ import annotations

import logging

import httpx

from cadence.scheduler.schedule import ScheduleType
from cadence.targets.base import ActivationResult, TargetActivationPort

logger = logging.getLogger(__name__)

_PATHS = {
    ScheduleType.CAMPAIGN: "/campaigns/{target_id}",
    ScheduleType.LIST: "/lists/{target_id}",
}


class HttpTargetPort(TargetActivationPort):
    """
    Talks to the campaign/list subsystem over HTTP.

    Never raises for HTTP or transport errors; they come back as a failed
    ActivationResult so the executor can retry them.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key.strip()
        self._timeout = timeout
        self._client = client

    @property
    def name(self) -> str:
        return "http"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(
                base_url=self._base_url, headers=headers, timeout=self._timeout
            )
        return self._client

    async def activate(self, schedule_type: ScheduleType, target_id: str) -> ActivationResult:
        return await self._set_active(schedule_type, target_id, True)

    async def deactivate(self, schedule_type: ScheduleType, target_id: str) -> ActivationResult:
        return await self._set_active(schedule_type, target_id, False)

    async def _set_active(
        self, schedule_type: ScheduleType, target_id: str, active: bool
    ) -> ActivationResult:
        path = _PATHS[ScheduleType(schedule_type)].format(target_id=target_id)
        try:
            resp = await self._get_client().put(path, json={"active": "Y" if active else "N"})
        except httpx.HTTPError as e:
            logger.warning(f"PUT {path} failed: {e}")
            return ActivationResult.failed(f"transport error: {e}")

        if resp.is_success:
            logger.debug(f"PUT {path} active={active} -> {resp.status_code}")
            return ActivationResult.ok()

        reason = _error_message(resp)
        logger.warning(f"PUT {path} rejected ({resp.status_code}): {reason}")
        return ActivationResult.failed(f"HTTP {resp.status_code}: {reason}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or "Request failed"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return "Request failed"
