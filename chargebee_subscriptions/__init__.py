"""Chargebee subscriptions mirrored into SQLAlchemy models."""

from chargebee_subscriptions.core.exceptions import (
    AppError,
    CheckoutIncompleteError,
    ConfigurationError,
    MissingPlanError,
    PersistenceError,
    RemoteServiceError,
    UserMismatchError,
    ValidationError,
)
from chargebee_subscriptions.services.subscriber import Subscriber

__all__ = [
    "Subscriber",
    "AppError",
    "CheckoutIncompleteError",
    "ConfigurationError",
    "MissingPlanError",
    "PersistenceError",
    "RemoteServiceError",
    "UserMismatchError",
    "ValidationError",
]
