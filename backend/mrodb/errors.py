# backend/mrodb/errors.py
"""
Error taxonomy shared by every app.

Services raise these; `mrodb.main` maps them onto the failure envelope
`{"success": false, "message": ..., "error": <code>}` with the matching
HTTP status.
"""

from __future__ import annotations

from typing import Optional


class AppError(Exception):
    status_code = 500
    code = "unexpected_error"

    def __init__(self, message: str, *, field: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details

    def as_payload(self) -> dict:
        payload = {"success": False, "message": self.message, "error": self.code}
        if self.field:
            payload["field"] = self.field
        return payload


class Unauthenticated(AppError):
    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str = "Authentication required", **kwargs):
        super().__init__(message, **kwargs)


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "You do not have permission to perform this action", **kwargs):
        super().__init__(message, **kwargs)


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"


class UnsupportedFormatError(ValidationError):
    code = "unsupported_format"


class NotFound(AppError):
    status_code = 404
    code = "not_found"

    def __init__(self, resource: str = "Resource", **kwargs):
        super().__init__(f"{resource} not found", **kwargs)


class ExternalServiceError(AppError):
    """Primary-path failure of storage or another collaborator."""

    status_code = 500
    code = "external_service_error"


def require_fields(values: dict) -> None:
    """Raise ValidationError naming the first missing or blank field."""
    for name, value in values.items():
        if value is None:
            raise ValidationError(f"{name} is required", field=name)
        if isinstance(value, str) and not value.strip():
            raise ValidationError(f"{name} is required", field=name)
