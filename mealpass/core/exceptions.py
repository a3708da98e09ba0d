"""
Exception hierarchy for the MealPass service.
All exceptions inherit from MealPassError so routes can render them uniformly.
"""

from typing import Optional


class MealPassError(Exception):
    """Base exception for all MealPass errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: str = "MEALPASS_ERROR",
        details: Optional[dict] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(MealPassError):
    """Missing required field or malformed input. Nothing was mutated."""

    status_code = 400

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR", **kwargs):
        super().__init__(message, error_code=error_code, **kwargs)


class NotFoundError(MealPassError):
    """No matching participant or event."""

    status_code = 404

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found" if identifier is None else f"{resource} '{identifier}' not found"
        super().__init__(
            message,
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": identifier},
        )


class ConflictError(MealPassError):
    """Uniqueness violation that must never happen silently (e.g. ticket id collision)."""

    status_code = 409

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFLICT", **kwargs)


class UpstreamError(MealPassError):
    """Remote sheet, Drive or mail transport unreachable or malformed."""

    status_code = 502

    def __init__(self, service: str, message: str, **kwargs):
        self.service = service
        super().__init__(f"{service}: {message}", error_code="UPSTREAM_ERROR", **kwargs)


class InternalError(MealPassError):
    """Unexpected store failure. ``details`` carries any partial progress."""

    status_code = 500

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="INTERNAL_ERROR", **kwargs)
