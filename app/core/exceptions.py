"""
Service-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere:

    UnauthenticatedError     → 401
    ForbiddenError           → 403
    NotFoundError            → 404
    ValidationError          → 400
    PersistenceError         → 500 (generic body, cause logged server-side)

UpstreamAggregationError never reaches a blueprint: the artifact
aggregator recovers it locally as an empty result for the failing kind.

Usage:
    from app.core.exceptions import NotFoundError, ForbiddenError

    raise NotFoundError(resource="Requirement", resource_id="abc")
    raise ForbiddenError(required={"link"}, missing={"link"})
"""


class UnauthenticatedError(Exception):
    """Raised when an operation is attempted without an established identity."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when the caller's role lacks one or more required permissions.

    Args:
        required: Every permission token the operation needs.
        missing: The subset the caller's role does not grant.
    """

    def __init__(self, required, missing) -> None:
        self.required = sorted(required)
        self.missing = sorted(missing)
        super().__init__(f"Missing permission(s): {', '.join(self.missing)}")


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Requirement").
        resource_id: The identifier that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed JSON but violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PersistenceError(Exception):
    """Raised when a requirement cannot be written to storage.

    Not retried here; retries belong to the storage layer.
    """

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"Persistence failure during {operation}")


class UpstreamAggregationError(Exception):
    """Raised inside the aggregator when one artifact kind cannot be fetched."""

    def __init__(self, kind: str, external_id: str | None = None, reason: str | None = None) -> None:
        self.kind = kind
        self.external_id = external_id
        self.reason = reason
        msg = f"Upstream fetch failed for {kind}"
        if external_id is not None:
            msg += f" id={external_id}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
