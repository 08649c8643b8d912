"""External integration adapters."""

from .chargebee import ChargebeeClient, serialize

__all__ = [
    "ChargebeeClient",
    "serialize",
]
