"""
Automation Engine Errors

Raised by the lifecycle and engine; routers translate them to HTTP statuses.
CheckExecutionError is never surfaced over HTTP, it is recorded on the failed run.
"""
from typing import Optional


class AutomationError(Exception):
    """Base class for automation engine errors."""


class ConfigValidationError(AutomationError):
    """Config value out of range. Raised before anything is written."""


class InvalidStateError(AutomationError):
    """Transition not allowed from the entity's current state."""


class ActionNotFoundError(AutomationError):
    """No action with the given id."""


class RunNotFoundError(AutomationError):
    """No run with the given id."""


class RunInProgressError(AutomationError):
    """Another run is still executing."""


class StorageError(AutomationError):
    """Persistence layer failed. Fatal for the operation, never retried."""


class CheckExecutionError(AutomationError):
    """A registered check raised while running."""

    def __init__(self, check_name: str, cause: Optional[BaseException] = None):
        self.check_name = check_name
        self.cause = cause
        detail = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown error"
        super().__init__(f"Check '{check_name}' failed: {detail}")
