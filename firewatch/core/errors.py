# firewatch/core/errors.py
"""
Typed domain errors for incident tracking and alert dispatch.

Each error maps to a specific HTTP status code.  The transport layer
catches ``FirewatchError`` subtypes and converts them to JSON responses
without embedding business logic in the route handlers.

Channel errors (``ChannelConfigError``, ``ChannelStateError``,
``RemoteServiceError``) are raised by channel adapters and contained
per channel by the dispatcher; they only reach HTTP callers through the
session-management endpoints.
"""
from __future__ import annotations

from pydantic import ValidationError as PydanticValidationError


class FirewatchError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ValidationError(FirewatchError):
    """Malformed or out-of-range input (400). Nothing was persisted or sent."""

    status_code = 400

    def __init__(self, detail: str, field: str | None = None):
        self.field = field
        super().__init__(detail)


class NotFoundError(FirewatchError):
    """Referenced incident does not exist (404)."""

    status_code = 404


class ChannelError(FirewatchError):
    """Base class for channel adapter failures."""

    status_code = 502

    def __init__(self, detail: str, channel: str | None = None):
        self.channel = channel
        super().__init__(detail)


class ChannelConfigError(ChannelError):
    """Channel invoked without required credentials or destination (503)."""

    status_code = 503


class ChannelStateError(ChannelError):
    """Session channel not READY, or destination is read-only (409)."""

    status_code = 409


class RemoteServiceError(ChannelError):
    """The channel's underlying service rejected the call or was unreachable (502)."""

    status_code = 502


def from_pydantic(exc: PydanticValidationError) -> ValidationError:
    """Convert the first pydantic error into a field-addressed ValidationError."""
    err = exc.errors()[0]
    loc = err.get("loc") or ()
    field = str(loc[0]) if loc else None
    msg = err.get("msg", "invalid value")
    detail = f"Invalid {field}: {msg}" if field else msg
    return ValidationError(detail, field=field)
