"""
Exception hierarchy for efrate.

Cache misses are not errors (lookups return None). Everything else that can
go wrong surfaces as one of these.
"""

from typing import Any, Optional


class GatewayError(Exception):
    """Base exception for gateway errors."""
    pass


class ConfigurationError(GatewayError, ValueError):
    """Raised when the gateway or one of its components is misconfigured."""
    pass


class RateLimitError(GatewayError):
    """Raised when rate limit is exceeded."""
    def __init__(self, wait_time_ms: int):
        self.wait_time_ms = wait_time_ms
        super().__init__(
            f"Rate limit exceeded and maximum wait time reached "
            f"(next token in {wait_time_ms} ms)."
        )


class BatchDispatchError(GatewayError):
    """Raised when a batch processor returns a malformed result list."""
    pass


class BatchCancelledError(GatewayError):
    """Raised for queued requests that were cleared before dispatch."""
    pass


class ProviderError(GatewayError):
    """Raised by providers when the upstream call fails."""
    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        data: Any = None,
    ):
        self.status = status
        self.data = data
        super().__init__(message)
