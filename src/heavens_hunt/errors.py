from __future__ import annotations

"""Structured error taxonomy shared by the engine, client, API, and CLI."""

from typing import Any


class HuntError(Exception):
    """Base error carrying a stable code for API responses and notices."""

    default_code = "HUNT_ERROR"

    def __init__(self, message: str, *, code: str | None = None, hint: str | None = None, **context: Any) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.hint = hint
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.hint:
            payload["hint"] = self.hint
        for key, value in self.context.items():
            if value is not None:
                payload[key] = value
        return payload


class ValidationError(HuntError, ValueError):
    """Input rejected before any write happened."""

    default_code = "VALIDATION_FAILED"


class AuthorizationError(HuntError):
    """Login miss. The message never says which credential was wrong."""

    default_code = "ACCESS_DENIED"

    def __init__(self, message: str = "Access denied.", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class SectionLockedError(HuntError):
    default_code = "SECTION_LOCKED"


class UnknownRequestError(HuntError, KeyError):
    default_code = "REQUEST_NOT_FOUND"

    def __str__(self) -> str:
        return self.message


class UnknownTeamError(HuntError, KeyError):
    default_code = "TEAM_NOT_FOUND"

    def __str__(self) -> str:
        return self.message


class StoreWriteError(HuntError):
    """The durable store rejected or could not persist a write."""

    default_code = "STORE_WRITE_FAILED"


class ConcurrencyConflict(HuntError):
    """A versioned write found a newer row than the caller had read."""

    default_code = "VERSION_CONFLICT"
