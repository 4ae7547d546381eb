"""Per-client sliding window request admission with background cleanup."""

from .config import InvalidConfiguration, RateLimiterConfig, RateLimiterError, get_config
from .logging_config import configure_logging
from .rate_limit import MalformedInput, RateLimiter

__all__ = [
    "InvalidConfiguration",
    "MalformedInput",
    "RateLimiter",
    "RateLimiterConfig",
    "RateLimiterError",
    "configure_logging",
    "get_config",
]
