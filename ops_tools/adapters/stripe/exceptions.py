"""Stripe adapter exceptions.

Custom exception hierarchy for Stripe REST API errors.
"""


class StripeError(Exception):
    """Base exception for Stripe adapter."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        error_type: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.error_type = error_type
        self.status_code = status_code


class StripeAuthError(StripeError):
    """Invalid or missing secret key (401 response)."""

    pass


class StripeNotFoundError(StripeError):
    """Price or product not found (resource_missing)."""

    pass


class StripeRateLimitError(StripeError):
    """Rate limit exceeded (429 response)."""

    pass
