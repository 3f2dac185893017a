"""
Typed shelf errors.

Services raise these; `main` turns them into the JSON error envelope
``{"error": <code>, "detail": <message>}`` and the sync client parses the
envelope back into the same classes.
"""

from __future__ import annotations

from typing import Any


class ShelfError(Exception):
    code = "ShelfError"
    status_code = 400

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)

    def to_payload(self) -> dict[str, str]:
        return {"error": self.code, "detail": self.detail}

    @classmethod
    def from_payload(cls, payload: Any, status_code: int | None = None) -> "ShelfError":
        """Rebuild a typed error from a response body; unknown codes fall back to the base class."""
        code = payload.get("error") if isinstance(payload, dict) else None
        detail = payload.get("detail") if isinstance(payload, dict) else None
        error_cls = ERROR_TYPES.get(code, ShelfError)
        error = error_cls(detail if isinstance(detail, str) else None)
        if error_cls is ShelfError and status_code is not None:
            error.status_code = status_code
        return error


class NotFound(ShelfError):
    """Book, user or shelf record not found."""

    code = "NotFound"
    status_code = 404


class InvalidTransition(ShelfError):
    """Shelf and status combination is not allowed."""

    code = "InvalidTransition"
    status_code = 422


class InvalidReorder(ShelfError):
    """Supplied order does not match the current queue."""

    code = "InvalidReorder"
    status_code = 409


class Conflict(ShelfError):
    """Shelf was modified concurrently, retry with fresh state."""

    code = "Conflict"
    status_code = 409


ERROR_TYPES: dict[str, type[ShelfError]] = {
    cls.code: cls for cls in (NotFound, InvalidTransition, InvalidReorder, Conflict)
}
