"""rolekeys error types.

Error codes are stable strings for programmatic handling by whatever
service hosts the key lifecycle.
"""

from __future__ import annotations

from typing import Any


class RolekeysError(Exception):
    """Base error for all rolekeys exceptions."""

    code: str = "internal_error"
    message: str = "An internal error occurred"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.__class__.message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Serialize for transport."""
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }
        if request_id:
            error["request_id"] = request_id
        return {"error": error}


class NotFoundError(RolekeysError):
    """Resource not found (404)."""

    code = "not_found"
    message = "Resource not found"
    status_code = 404


class ForbiddenError(RolekeysError):
    """Operation not allowed on this resource (403)."""

    code = "forbidden"
    message = "Permission denied"
    status_code = 403


class ConflictError(RolekeysError):
    """Uniqueness conflict that could not be resolved (409)."""

    code = "conflict"
    message = "Conflict"
    status_code = 409


class ValidationError(RolekeysError):
    """Validation failure (400).

    ``errors`` maps a field name to its messages, e.g.
    ``{"grants": ["only one apis section is allowed"]}``.
    """

    code = "validation_error"
    message = "Validation error"
    status_code = 400

    def __init__(
        self,
        errors: dict[str, list[str]],
        message: str | None = None,
    ) -> None:
        self.errors = {field: list(msgs) for field, msgs in errors.items() if msgs}
        full_messages = [
            f"{field} {msg}" for field, msgs in self.errors.items() for msg in msgs
        ]
        super().__init__(
            message=message or "; ".join(full_messages) or None,
            details={"errors": self.errors},
        )


class InvalidGrantsError(ValidationError):
    """Grants payload rejected before it could be interpreted."""

    code = "invalid_grants"

    def __init__(self, messages: list[str]) -> None:
        super().__init__({"grants": messages})


class UnprocessableEntityError(RolekeysError):
    """Request understood but cannot be processed (422)."""

    code = "unprocessable_entity"
    message = "Unprocessable entity"
    status_code = 422


class ProvisioningError(RolekeysError):
    """A privilege-management command failed at the database engine (422).

    ``message`` is the engine's own message with its error prefix removed,
    or ``"Unexpected error"`` when it could not be extracted.
    """

    code = "provisioning_error"
    message = "Unexpected error"
    status_code = 422
