"""
Error taxonomy for the Smart Campus API.

Every handler raises one of these; main.py renders them all as the
{success, message, data} envelope with the matching status code.
"""

from typing import Any, Dict, List

from fastapi import HTTPException


class CampusError(HTTPException):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(status_code=self.status_code, detail=message or self.default_message)

    @property
    def message(self) -> str:
        return self.detail


class ValidationError(CampusError):
    status_code = 400
    default_message = "Invalid request"


class Unauthorized(CampusError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(CampusError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(CampusError):
    status_code = 404
    default_message = "Resource not found"


class Conflict(CampusError):
    status_code = 409
    default_message = "Resource already exists"


class AlreadyVoted(CampusError):
    status_code = 400
    default_message = "User already voted"


class InvalidOption(CampusError):
    status_code = 400
    default_message = "Invalid option"


def format_validation_errors(errors: List[Dict[str, Any]]) -> str:
    """Flatten pydantic error dicts into one readable line naming each field."""
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
        field = ".".join(loc) or "request"
        msg = err.get("msg", "is invalid")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        if err.get("type") == "missing":
            msg = "is required"
        parts.append(f"{field} {msg}" if msg == "is required" else f"{field}: {msg}")
    return "Invalid fields: " + "; ".join(parts)
