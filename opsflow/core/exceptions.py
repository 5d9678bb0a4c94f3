"""
Platform-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere.

Propagation policy:
  - NotFoundError, ValidationError, AuthorizationError and
    InvalidStateTransition affect workflow correctness and are surfaced
    to the caller.
  - DeliveryError only affects notification timeliness. It is raised by
    push transports and absorbed by the notification service; it never
    reaches a blueprint.

Usage:
    from opsflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Document", resource_id=42)
    raise ValidationError("title is required", details={"title": "missing"})
"""


class NotFoundError(Exception):
    """Raised when a requested document, notification or actor does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Document", "Notification").
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
    """Raised when input is missing or malformed. Caller-fixable.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AuthorizationError(Exception):
    """Raised when an actor lacks authority for a stage or notification action.

    Non-retryable. Maps to HTTP 403.
    """

    def __init__(self, message: str, actor_id: int | None = None) -> None:
        self.actor_id = actor_id
        super().__init__(message)


class InvalidStateTransition(Exception):
    """Raised when a document is not in the pre-state a transition requires.

    Covers re-review of terminal documents and the losing side of two
    concurrent advances. Non-retryable. Maps to HTTP 409.
    """

    def __init__(
        self,
        document_id: int | None,
        current_status: str | None,
        expected_status: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.document_id = document_id
        self.current_status = current_status
        self.expected_status = expected_status
        self.reason = reason
        msg = f"Document {document_id} cannot transition from status={current_status}"
        if expected_status:
            msg += f" (expected {expected_status})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class DeliveryError(Exception):
    """Raised by a push transport when a real-time event could not be sent."""

    def __init__(self, user_id: int, event: str, cause: Exception | None = None) -> None:
        self.user_id = user_id
        self.event = event
        self.cause = cause
        msg = f"Push of '{event}' to user {user_id} failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
