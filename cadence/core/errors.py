"""
Cadence exception hierarchy.

Every error in the system inherits from CadenceError.
Each subsystem has its own error class for targeted catching.

Usage:
    try:
        await service.create_schedule(...)
    except ValidationError as e:
        # Reject the operator's input
    except CadenceError as e:
        # Handle any Cadence error
"""


class CadenceError(Exception):
    """Base exception for all Cadence errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Layer 0: Core Errors ━━━


class ConfigError(CadenceError):
    """Configuration is invalid, missing, or malformed."""

    pass


class ValidationError(CadenceError):
    """A schedule definition is malformed and was rejected at create/update time."""

    def __init__(
        self,
        message: str,
        field: str = "",
        details: dict | None = None,
    ):
        self.field = field
        super().__init__(message, details)


# ━━━ Layer 1: Storage Errors ━━━


class StorageError(CadenceError):
    """Storage backend failure — database errors, corruption, etc."""

    pass


class StoreUnavailable(StorageError):
    """The persistent store could not be reached. The current tick is aborted."""

    pass


# ━━━ Layer 2: Execution Errors ━━━


class ClaimConflict(CadenceError):
    """Another executor already owns this occurrence. Expected, not a failure."""

    def __init__(
        self,
        message: str,
        schedule_id: int = 0,
        occurrence_date: str = "",
        details: dict | None = None,
    ):
        self.schedule_id = schedule_id
        self.occurrence_date = occurrence_date
        super().__init__(message, details)


class ActivationFailure(CadenceError):
    """The target port rejected the call or did not answer in time."""

    def __init__(
        self,
        message: str,
        target_id: str = "",
        details: dict | None = None,
    ):
        self.target_id = target_id
        super().__init__(message, details)
