"""Error taxonomy for the license processing core.

Every error raised across the workflow, assignment and repository layers
derives from ``LicensingError`` and carries a stable ``code`` that the HTTP
layer maps onto a status code. ``CacheError`` is the exception: it is raised
by cache backends but absorbed by the cache-aside repository.
"""

from typing import Any, Dict, Optional


class LicensingError(Exception):
    """Base class for all licensing core errors."""

    code = "LICENSING_ERROR"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Serializable details for API responses."""
        return {"code": self.code, "message": self.message}


class ValidationError(LicensingError):
    """Malformed caller input, reported with the offending field."""

    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "field": self.field}


class InvalidTransitionError(LicensingError):
    """Action not permitted from the application's current status."""

    code = "INVALID_TRANSITION"

    def __init__(self, current_status: Any, action: str):
        status_value = getattr(current_status, "value", current_status)
        super().__init__(
            f"Cannot {action} an application in status '{status_value}'"
        )
        self.current_status = status_value
        self.action = action

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "current_status": self.current_status,
            "action": self.action,
        }


class CapacityError(LicensingError):
    """Reviewer already holds the maximum number of active applications."""

    code = "REVIEWER_CAPACITY_EXCEEDED"

    def __init__(self, reviewer_id: str, workload: int, limit: int):
        super().__init__(
            f"Reviewer {reviewer_id} has {workload} active applications (limit {limit})"
        )
        self.reviewer_id = reviewer_id
        self.workload = workload
        self.limit = limit

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "reviewer_id": self.reviewer_id,
            "workload": self.workload,
            "limit": self.limit,
        }


class NotFoundError(LicensingError):
    """Referenced application, document or reviewer does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "entity": self.entity, "entity_id": self.entity_id}


class ConflictError(LicensingError):
    """Conditional write matched no rows; the caller should re-fetch and retry."""

    code = "CONFLICT"
    retryable = True

    def __init__(self, application_id: str, expected_status: Optional[Any] = None):
        expected = getattr(expected_status, "value", expected_status)
        message = f"Application {application_id} was modified concurrently"
        if expected is not None:
            message += f" (expected status '{expected}')"
        super().__init__(message)
        self.application_id = application_id
        self.expected_status = expected

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "retryable": True}


class ForbiddenError(LicensingError):
    """Caller does not own the resource it is trying to change."""

    code = "FORBIDDEN"


class StoreError(LicensingError):
    """Underlying persistence failure."""

    code = "STORE_ERROR"


class CacheError(Exception):
    """Cache backend failure. Never surfaced past the cache-aside repository."""

    def __init__(self, operation: str, key: str, cause: Optional[BaseException] = None):
        super().__init__(f"cache {operation} failed for '{key}': {cause}")
        self.operation = operation
        self.key = key
        self.cause = cause
