"""Error taxonomy shared by the ledger, attribution engine and HTTP layer.

Every error carries the HTTP status it maps to and a stable machine-readable
code. Messages are safe to show to API callers.
"""
from __future__ import annotations


class AffiliateError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AffiliateError):
    """Malformed input."""
    status_code = 400
    code = "validation_error"


class NotFoundError(AffiliateError):
    """Unknown click, account or product."""
    status_code = 404
    code = "not_found"


class ExpiredAttributionError(AffiliateError):
    """Purchase arrived after the click's attribution window closed."""
    status_code = 400
    code = "attribution_expired"

    def __init__(self, message: str = "Click has expired. Commission window has passed."):
        super().__init__(message)


class AlreadyConvertedError(AffiliateError):
    """Duplicate conversion attempt for a click that is already converted."""
    status_code = 409
    code = "already_converted"

    def __init__(self, message: str = "Purchase already recorded for this click."):
        super().__init__(message)


class InternalError(AffiliateError):
    """Storage or unexpected failure. Never carries internal detail."""
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "Something went wrong. Please try again."):
        super().__init__(message)
