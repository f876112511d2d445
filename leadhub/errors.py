"""Exception hierarchy for LeadHub.

Exception Hierarchy:
    LeadHubError (base)
    ├── ValidationError - Malformed webhook config, entity data or MCP args
    ├── NotFoundError - Referenced webhook or entity does not exist
    ├── AuthenticationError - No usable actor context
    ├── PermissionDeniedError - Actor lacks the required role
    └── DeliveryError - Webhook delivery failed (logged, never surfaced to mutations)
"""

from typing import Any

from pydantic import ValidationError as PydanticValidationError


class LeadHubError(Exception):
    """Base exception for all LeadHub errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(LeadHubError):
    """Input failed validation.

    Raised for malformed webhook configurations (bad URL, empty events),
    dangling entity references and malformed MCP command arguments.
    """

    @classmethod
    def from_pydantic(
        cls, exc: PydanticValidationError, *, prefix: str = "Invalid input"
    ) -> "ValidationError":
        """Wrap a pydantic validation error with a readable message.

        Args:
            exc: Error raised by pydantic.
            prefix: Leading text of the message.

        Returns:
            ValidationError listing each failing field.
        """
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "(root)",
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        return cls(f"{prefix}: {summary}", details={"errors": errors})


class NotFoundError(LeadHubError):
    """Referenced record does not exist.

    Attributes:
        entity: Kind of record that was looked up.
        entity_id: Identifier that was not found.
    """

    def __init__(
        self,
        entity: str,
        entity_id: Any,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{entity} {entity_id} not found", details=details)
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update({"entity": self.entity, "entity_id": self.entity_id})
        return base


class AuthenticationError(LeadHubError):
    """No authenticated actor is available for the request."""


class PermissionDeniedError(LeadHubError):
    """The actor's role does not allow the operation.

    Attributes:
        required_roles: Roles that would have been accepted.
    """

    def __init__(
        self,
        message: str,
        *,
        required_roles: tuple[str, ...] = (),
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.required_roles = required_roles


class DeliveryError(LeadHubError):
    """A webhook delivery attempt failed.

    Never propagated to the caller of a domain mutation; the dispatcher
    raises it internally to drive retries and logs it.

    Attributes:
        webhook_id: Target webhook.
        event: Event name being delivered.
        reason: Short failure description.
        status_code: HTTP status code, if a response was received.
        retryable: Whether another attempt may succeed.
    """

    def __init__(
        self,
        reason: str,
        *,
        webhook_id: int,
        event: str,
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(
            reason,
            details={"webhook_id": webhook_id, "event": event, "status_code": status_code},
        )
        self.webhook_id = webhook_id
        self.event = event
        self.reason = reason
        self.status_code = status_code
        self.retryable = retryable
