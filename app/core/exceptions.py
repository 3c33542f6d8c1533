"""
Platform-wide exception hierarchy.

Services raise these types; blueprints translate them into JSON error
responses with consistent HTTP status codes.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="WorkItem", resource_id=42)
    raise ValidationError("Name is required", details={"name": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Args:
        resource: Human-readable model name (e.g. "Workspace", "WorkItem").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
        status: HTTP status the blueprint should answer with (400 or 422).
    """

    def __init__(self, message: str, details: dict | None = None, status: int = 400) -> None:
        self.details = details or {}
        self.status = status
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None,
                 message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class PermissionDeniedError(Exception):
    """Raised when the current user lacks membership or role for an operation.

    Maps to HTTP 403.
    """

    def __init__(self, message: str = "Not a team member") -> None:
        super().__init__(message)
