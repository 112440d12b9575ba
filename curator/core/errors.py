"""
Domain errors raised by the retention manager and background task services.

API endpoints translate these into HTTP responses; managers log them.
"""
from typing import Any, Dict, Optional


class CuratorError(Exception):
    """Base class for all domain errors."""

    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.data = data or {}
        super().__init__(self.message)


class ForbiddenAccess(CuratorError):
    """The principal is not allowed to perform the requested operation."""

    default_message = "You are not allowed to do this."


class UnsupportedError(CuratorError):
    """The request asks for an operation this service does not support."""

    default_message = "Unsupported operation"


class ConfigurationError(CuratorError):
    """A persisted configuration (e.g. a retention rule) cannot be executed."""

    default_message = "Invalid configuration"


class LockLostError(CuratorError):
    """The lease backing a manager lock is no longer held by this process."""

    default_message = "Lock lease lost"


class AbortError(CuratorError):
    """Raised when a handler notices its lock signal has been aborted."""

    default_message = "Execution aborted"
