"""Custom exception types for the subscription layer."""
from __future__ import annotations


class AppError(Exception):
    """Base app exception."""


class ConfigurationError(AppError):
    """Required settings (credentials, redirect URLs) are missing."""


class ValidationError(AppError):
    """Validation failure for caller supplied selections."""


class MissingPlanError(AppError):
    """An operation needs a plan id and none was set."""


class UserMismatchError(AppError):
    """Hosted page was completed by a different user than the one being subscribed."""


class CheckoutIncompleteError(AppError):
    """Hosted page exists but the checkout did not succeed."""

    def __init__(self, message: str, state: str | None = None):
        super().__init__(message)
        self.state = state


class RemoteServiceError(AppError):
    """Chargebee call failure: transport, auth, validation or rate limiting."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        api_error_code: str | None = None,
        error_type: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.api_error_code = api_error_code
        self.error_type = error_type


class PersistenceError(AppError):
    """Remote subscription exists but the local records could not be written."""

    def __init__(self, message: str, subscription_id: str | None = None):
        super().__init__(message)
        self.subscription_id = subscription_id
