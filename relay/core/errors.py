"""Request-terminating errors raised by the attendance service layer.

Only these errors end a request with a non-success status. Partial batch
failures are reported in reconciliation ledgers instead.
"""
from __future__ import annotations
from typing import Any, Optional


class RelayError(Exception):
    """Service error with HTTP status and optional diagnostic context."""

    status = 500

    def __init__(self, detail: str, context: Optional[dict[str, Any]] = None):
        self.detail = detail
        self.context = context or {}
        super().__init__(detail)

    def to_dict(self) -> dict:
        """Convert to the JSON error body."""
        body = {"error": self.detail}
        for key, value in self.context.items():
            if key != "error":
                body[key] = value
        return body


class ValidationError(RelayError):
    """Malformed user input; raised before any CRM call."""
    status = 400


class AuthenticationRequiredError(RelayError):
    """No CRM credential in the session and no password login configured."""
    status = 401


class NotFoundError(RelayError):
    """Meeting or record does not exist."""
    status = 404


class ConfigurationError(RelayError):
    """Schema discovery could not bind a mandatory role."""
    status = 500
