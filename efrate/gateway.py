"""
Main gateway implementation.

Combines caching, rate limiting and request batching in front of a provider.
"""

import asyncio
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Union

from .batcher import BatchConfig, RequestBatcher
from .cache import CacheConfig, ResponseCache
from .exceptions import ConfigurationError, RateLimitError
from .providers import (
    CompletionOptions,
    CompletionResponse,
    Provider,
    ProviderConfig,
    create_provider,
)
from .rate_limiter import RateLimitConfig, RateLimiter

logger = logging.getLogger(__name__)

_SECTIONS = {
    "cache": CacheConfig,
    "rate_limit": RateLimitConfig,
    "batch": BatchConfig,
}


@dataclass
class GatewayConfig:
    """Gateway configuration."""
    cache: CacheConfig = field(default_factory=CacheConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    cache_enabled: bool = True
    rate_limiting_enabled: bool = True
    batching_enabled: bool = True

    def to_dict(self) -> dict:
        return {
            "cache": self.cache.to_dict(),
            "rate_limit": self.rate_limit.to_dict(),
            "batch": self.batch.to_dict(),
            "cache_enabled": self.cache_enabled,
            "rate_limiting_enabled": self.rate_limiting_enabled,
            "batching_enabled": self.batching_enabled,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GatewayConfig":
        """
        Build a config from a nested mapping, e.g. parsed JSON.

        Missing keys keep their defaults.

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        toggles = {"cache_enabled", "rate_limiting_enabled", "batching_enabled"}
        unknown = set(data) - set(_SECTIONS) - toggles
        if unknown:
            raise ConfigurationError(
                f"Unknown gateway config key(s): {', '.join(sorted(unknown))}"
            )

        kwargs: Dict[str, Any] = {}
        for name, section_cls in _SECTIONS.items():
            section = data.get(name)
            if section is None:
                continue
            if not isinstance(section, Mapping):
                raise ConfigurationError(f"Config section {name!r} must be a mapping")
            allowed = {f.name for f in fields(section_cls)}
            bad = set(section) - allowed
            if bad:
                raise ConfigurationError(
                    f"Unknown {name} config key(s): {', '.join(sorted(bad))}"
                )
            try:
                kwargs[name] = section_cls(**section)
            except TypeError as e:
                raise ConfigurationError(f"Invalid {name} config: {e}") from e

        for name in toggles:
            if name in data:
                if not isinstance(data[name], bool):
                    raise ConfigurationError(f"{name} must be a boolean")
                kwargs[name] = data[name]

        return cls(**kwargs)


class Gateway:
    """
    Efficiency layer in front of a single LLM provider.

    complete() goes through the cache, the rate limiter and the batcher;
    chat() and embeddings() are only rate limited, since message lists are
    neither cache keys nor safe to batch with unrelated requests. Every
    stage can be switched off in GatewayConfig.
    """

    def __init__(
        self,
        provider: Provider,
        config: Optional[GatewayConfig] = None,
    ):
        if provider is None:
            raise ConfigurationError("A provider is required")

        self.provider = provider
        self.config = config or GatewayConfig()

        self.cache = ResponseCache(self.config.cache)
        self.rate_limiter = RateLimiter(self.config.rate_limit)
        self.batcher = RequestBatcher(self._process_batch, self.config.batch)

        # Metrics
        self.total_requests = 0
        self.cached_requests = 0
        self.rate_limited_requests = 0
        self.failed_requests = 0

        logger.info(
            "Gateway ready for provider %s (cache=%s, rate_limiting=%s, batching=%s)",
            provider.name,
            self.config.cache_enabled,
            self.config.rate_limiting_enabled,
            self.config.batching_enabled,
        )

    async def _process_batch(
        self,
        prompts: List[str],
        options_list: List[Optional[CompletionOptions]],
    ) -> List[CompletionResponse]:
        return list(await asyncio.gather(*(
            self.provider.complete(prompt, options)
            for prompt, options in zip(prompts, options_list)
        )))

    async def _acquire(self) -> None:
        if not self.config.rate_limiting_enabled:
            return
        if not await self.rate_limiter.acquire():
            self.rate_limited_requests += 1
            wait_time_ms = self.rate_limiter.get_wait_time_ms()
            logger.warning("Rate limit exceeded, retry in %d ms", wait_time_ms)
            raise RateLimitError(wait_time_ms)

    async def complete(
        self,
        prompt: str,
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResponse:
        """
        Send a completion request through the gateway.

        Args:
            prompt: Text prompt to complete
            options: Completion options

        Returns:
            CompletionResponse, with cached=True when served from the cache

        Raises:
            RateLimitError: If rate limit exceeded
            ProviderError: Or whatever else the provider or batch raises
        """
        options = options or CompletionOptions(model=self.provider.config.default_model)
        self.total_requests += 1

        if self.config.cache_enabled:
            cached_response = self.cache.lookup(prompt)
            if cached_response is not None:
                self.cached_requests += 1
                return replace(cached_response, cached=True)

        await self._acquire()

        try:
            if self.config.batching_enabled:
                response = await self.batcher.enqueue(prompt, options)
            else:
                response = await self.provider.complete(prompt, options)
        except Exception:
            self.failed_requests += 1
            raise

        if self.config.cache_enabled:
            self.cache.store(prompt, response)

        return response

    async def chat(
        self,
        messages: List[Dict[str, str]],
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResponse:
        """Send a multi-turn chat request. Rate limited, never cached or batched."""
        options = options or CompletionOptions(model=self.provider.config.default_model)
        self.total_requests += 1
        await self._acquire()
        try:
            return await self.provider.chat(messages, options)
        except Exception:
            self.failed_requests += 1
            raise

    async def embeddings(
        self,
        input: Union[str, List[str]],
        options: Optional[Dict[str, Any]] = None,
    ) -> List[List[float]]:
        """Generate embeddings. Rate limited passthrough to the provider."""
        self.total_requests += 1
        await self._acquire()
        try:
            return await self.provider.embeddings(input, options or {})
        except Exception:
            self.failed_requests += 1
            raise

    def clear_cache(self) -> None:
        self.cache.clear()

    def purge_expired_cache(self) -> int:
        """Remove expired cache entries. Returns count removed."""
        return self.cache.purge_expired()

    def clear_queue(self, reason: str = "Queue cleared") -> int:
        """Reject all batched requests that have not been dispatched yet."""
        return self.batcher.clear(reason)

    def get_wait_time_ms(self, weight: float = 1) -> int:
        return self.rate_limiter.get_wait_time_ms(weight)

    def get_metrics(self) -> dict:
        """Get gateway metrics."""
        return {
            "total_requests": self.total_requests,
            "cached_requests": self.cached_requests,
            "rate_limited_requests": self.rate_limited_requests,
            "failed_requests": self.failed_requests,
            "cache_hit_rate": self.cached_requests / max(1, self.total_requests),
            "cache": self.cache.get_stats().to_dict(),
            "batcher": dict(
                self.batcher.get_stats().to_dict(),
                queue_depth=self.batcher.queue_depth,
            ),
            "rate_limiter": {
                "available_tokens": round(self.rate_limiter.available_tokens, 4),
            },
            "provider": {
                "name": self.provider.name,
                "metrics": self.provider.metrics.to_dict(),
            },
        }


def create_gateway(
    provider_type: str = "mock",
    provider_config: Optional[ProviderConfig] = None,
    custom_provider: Optional[Provider] = None,
    config: Optional[Union[GatewayConfig, Mapping[str, Any]]] = None,
) -> Gateway:
    """
    Create a gateway with common defaults.

    Args:
        provider_type: Registered provider name, or "custom"
        provider_config: Provider configuration
        custom_provider: Provider instance for provider_type="custom"
        config: GatewayConfig or a mapping accepted by GatewayConfig.from_dict

    Returns:
        Configured Gateway instance

    Raises:
        ConfigurationError: On an unknown provider or invalid config
    """
    provider = create_provider(provider_type, provider_config, custom_provider)
    if config is not None and not isinstance(config, GatewayConfig):
        config = GatewayConfig.from_dict(config)
    return Gateway(provider=provider, config=config)
