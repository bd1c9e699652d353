"""Error categories surfaced by the chat, profile, and intake endpoints."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional


class VocationalError(Exception):
    """Base error carrying the HTTP status and a stable category label."""
    status_code = 500
    category = "internal"


class RequestFieldError(VocationalError):
    """Request fields are missing or fail validation."""
    status_code = 400
    category = "validation"

    def __init__(self, fields: List[str], message: Optional[str] = None) -> None:
        self.fields = list(fields)
        super().__init__(message or f"Missing required fields: {', '.join(self.fields)}")

    @classmethod
    def from_validation(cls, errors: Iterable[Dict[str, Any]], prefix: str = "") -> "RequestFieldError":
        """Build from pydantic error dicts; locations become dotted field names."""
        errors = list(errors)
        fields = set()
        for error in errors:
            parts = [str(part) for part in error.get("loc", ()) if part != "body"]
            if prefix:
                parts.insert(0, prefix)
            if parts:
                fields.add(".".join(parts))
        message = "Invalid request: " + "; ".join(str(error.get("msg", "")) for error in errors)
        return cls(sorted(fields), message)


class ProviderError(VocationalError):
    """The completion provider was unreachable or rejected the call."""
    category = "provider"


class MalformedCompletionError(VocationalError):
    """A strict-mode completion could not be parsed into the expected payload.

    ``raw_text`` is kept for operator diagnostics and never sent to the client.
    """
    category = "malformed_completion"

    def __init__(self, message: str, raw_text: str) -> None:
        self.raw_text = raw_text
        super().__init__(message)


class StoreUnavailable(VocationalError):
    """The durable profile/history store cannot be read or written."""
    category = "store"
