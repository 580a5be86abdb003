"""
Exception taxonomy of the access engine.
Every error carries an optional detail dict for structured logging.
"""
from typing import Any


class AccessError(Exception):
    """Base class for access engine failures."""

    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.detail = detail or {}


class ConfigError(AccessError):
    """Malformed access config or a missing mandatory field. Fatal at construction."""


class AuthorizationError(AccessError):
    """Authorization endpoint failed or timed out and no fallback could be used."""


class PingbackError(AccessError):
    """Pingback signal failed. Reported, never retried."""


class LoginError(AccessError):
    """Login could not start or the login dialog failed."""


class ViewCancelled(Exception):
    """
    The current impression should not be counted as a view (document hidden).
    Not an AccessError: cancellation is an expected outcome, not a failure.
    """
