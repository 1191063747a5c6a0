"""
efrate - Caching, rate limiting and request batching for LLM APIs.

A client-side efficiency layer that sits in front of a text-generation
provider: it serves repeated (or nearly repeated) prompts from memory, keeps
traffic within a token bucket budget, and coalesces concurrent prompts into
batches.
"""

from .providers import (
    Provider,
    ProviderConfig,
    ProviderMetrics,
    MockProvider,
    CompletionOptions,
    CompletionResponse,
    Usage,
    available_providers,
    create_provider,
    register_provider,
)
from .rate_limiter import (
    RateLimiter,
    RateLimitConfig,
    TokenBucket,
)
from .cache import (
    CacheConfig,
    CacheStats,
    ResponseCache,
)
from .batcher import (
    BatchConfig,
    RequestBatcher,
)
from .similarity import (
    calculate_similarity,
    levenshtein_distance,
    normalize_prompt,
)
from .gateway import (
    Gateway,
    GatewayConfig,
    create_gateway,
)
from .exceptions import (
    GatewayError,
    ConfigurationError,
    RateLimitError,
    BatchDispatchError,
    BatchCancelledError,
    ProviderError,
)

__version__ = "0.1.0"

__all__ = [
    # Providers
    "Provider",
    "ProviderConfig",
    "ProviderMetrics",
    "MockProvider",
    "CompletionOptions",
    "CompletionResponse",
    "Usage",
    "available_providers",
    "create_provider",
    "register_provider",
    # Rate limiting
    "RateLimiter",
    "RateLimitConfig",
    "TokenBucket",
    # Caching
    "CacheConfig",
    "CacheStats",
    "ResponseCache",
    # Batching
    "BatchConfig",
    "RequestBatcher",
    # Similarity
    "calculate_similarity",
    "levenshtein_distance",
    "normalize_prompt",
    # Gateway
    "Gateway",
    "GatewayConfig",
    "create_gateway",
    # Errors
    "GatewayError",
    "ConfigurationError",
    "RateLimitError",
    "BatchDispatchError",
    "BatchCancelledError",
    "ProviderError",
]
