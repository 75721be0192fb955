"""Worklin webhook exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from WebhookError for easy catching.
"""

from __future__ import annotations


class WebhookError(Exception):
    """Base exception for all webhook subsystem errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "webhook_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(WebhookError):
    """Invalid input provided.

    Raised synchronously when a webhook definition or an event payload
    fails validation. Never retried.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(WebhookError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "webhook").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class TransientDeliveryError(WebhookError):
    """A delivery attempt failed in a way that may succeed later.

    Covers non-2xx responses, timeouts and connection errors. The
    dispatcher records these in the delivery log as retrying or failed;
    they never reach the code that triggered the event.

    Attributes:
        response_status: HTTP status code, or None when no response arrived.
        response_body: Truncated response body, if any.
    """

    code: str = "transient_delivery_error"

    def __init__(
        self,
        message: str,
        response_status: int | None = None,
        response_body: str | None = None,
    ) -> None:
        self.response_status = response_status
        self.response_body = response_body
        super().__init__(message)


class ConfigurationGone(WebhookError):
    """The subscription behind a pending retry was deleted or disabled.

    Attributes:
        webhook_id: ID of the subscription that is no longer deliverable.
        reason: Short description ("deleted" or "disabled").
    """

    code: str = "configuration_gone"

    def __init__(self, webhook_id: str, reason: str) -> None:
        self.webhook_id = webhook_id
        self.reason = reason
        super().__init__(f"webhook {webhook_id} {reason}")


class StorageError(WebhookError):
    """Storage operation failed.

    Raised when a document store operation fails.
    """

    code: str = "storage_error"


class ConfigurationError(WebhookError):
    """Configuration error.

    Raised when required configuration is missing or invalid.
    """

    code: str = "configuration_error"
