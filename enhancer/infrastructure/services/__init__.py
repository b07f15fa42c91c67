"""Infrastructure services"""

from .retry import (
    RATE_LIMIT_HTTP_CODE,
    TRANSIENT_HTTP_CODES,
    classify_provider_error,
    create_retrying,
    is_rate_limit_error,
    is_transient_error,
)

__all__ = [
    "RATE_LIMIT_HTTP_CODE",
    "TRANSIENT_HTTP_CODES",
    "classify_provider_error",
    "create_retrying",
    "is_rate_limit_error",
    "is_transient_error",
]
