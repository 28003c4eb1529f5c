from .rate_limit import (
    FixedWindowRateLimiter,
    RateLimitExceeded,
    client_identifier,
    get_rate_limiter,
)

__all__ = [
    "FixedWindowRateLimiter",
    "RateLimitExceeded",
    "client_identifier",
    "get_rate_limiter",
]
