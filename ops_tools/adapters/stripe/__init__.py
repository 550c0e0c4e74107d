"""Stripe REST adapter."""

from .client import StripeClient
from .exceptions import StripeAuthError, StripeError, StripeNotFoundError, StripeRateLimitError

__all__ = [
    "StripeAuthError",
    "StripeClient",
    "StripeError",
    "StripeNotFoundError",
    "StripeRateLimitError",
]
