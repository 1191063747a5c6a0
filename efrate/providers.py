"""
LLM Provider interface.

Providers are the adapters that talk to the remote APIs. The gateway only
relies on the `Provider` interface below; concrete adapters are registered
by name and selected once when the gateway is built.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from .exceptions import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-3.5-turbo"


@dataclass
class CompletionOptions:
    """Options for a completion request.

    Keys in `extra` are not interpreted here, only forwarded to the provider.
    """
    model: str = DEFAULT_MODEL
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    stop: Optional[List[str]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "stop": self.stop,
        }
        d.update(self.extra)
        return d


@dataclass
class Usage:
    """Token usage reported by a provider."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class CompletionResponse:
    """Provider response."""
    content: Any
    model: str
    details: Any = None
    usage: Optional[Usage] = None
    cached: bool = False

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "model": self.model,
            "usage": self.usage.to_dict() if self.usage else None,
            "cached": self.cached,
        }


@dataclass
class ProviderConfig:
    """Configuration for an LLM provider."""
    name: str
    default_model: str = DEFAULT_MODEL
    cost_per_1k_input: float = 0.0
    cost_per_1k_output: float = 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "default_model": self.default_model,
            "cost_per_1k_input": self.cost_per_1k_input,
            "cost_per_1k_output": self.cost_per_1k_output,
        }


@dataclass
class ProviderMetrics:
    """Metrics for a provider."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: float = 0.0
    total_tokens_input: int = 0
    total_tokens_output: int = 0
    total_cost: float = 0.0
    last_error: Optional[str] = None

    @property
    def avg_latency_ms(self) -> float:
        if self.successful_requests == 0:
            return 0.0
        return self.total_latency_ms / self.successful_requests

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 1.0
        return self.successful_requests / self.total_requests

    def to_dict(self) -> dict:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "avg_latency_ms": round(self.avg_latency_ms, 2),
            "success_rate": round(self.success_rate, 4),
            "total_tokens_input": self.total_tokens_input,
            "total_tokens_output": self.total_tokens_output,
            "total_cost": round(self.total_cost, 6),
            "last_error": self.last_error,
        }


class Provider(ABC):
    """Abstract base class for LLM providers."""

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.metrics = ProviderMetrics()

    @property
    def name(self) -> str:
        return self.config.name

    async def complete(
        self,
        prompt: str,
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResponse:
        """
        Send a single-prompt completion request.

        The default implementation sends the prompt as one user message.
        """
        return await self.chat([{"role": "user", "content": prompt}], options)

    @abstractmethod
    async def chat(
        self,
        messages: List[Dict[str, str]],
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResponse:
        """
        Send a chat completion request to the provider.

        Args:
            messages: List of message dicts with 'role' and 'content'
            options: Model and sampling options

        Returns:
            CompletionResponse

        Raises:
            ProviderError: If the upstream call fails
        """
        pass

    @abstractmethod
    async def embeddings(
        self,
        input: Union[str, List[str]],
        options: Optional[Dict[str, Any]] = None,
    ) -> List[List[float]]:
        """Generate one embedding vector per input text."""
        pass

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Calculate cost for a request."""
        input_cost = (input_tokens / 1000) * self.config.cost_per_1k_input
        output_cost = (output_tokens / 1000) * self.config.cost_per_1k_output
        return input_cost + output_cost

    def record_success(self, latency_ms: float, usage: Optional[Usage]) -> None:
        """Record a successful request."""
        self.metrics.total_requests += 1
        self.metrics.successful_requests += 1
        self.metrics.total_latency_ms += latency_ms
        if usage is not None:
            self.metrics.total_tokens_input += usage.prompt_tokens
            self.metrics.total_tokens_output += usage.completion_tokens
            self.metrics.total_cost += self.calculate_cost(
                usage.prompt_tokens, usage.completion_tokens,
            )

    def record_failure(self, error: str) -> None:
        """Record a failed request."""
        self.metrics.total_requests += 1
        self.metrics.failed_requests += 1
        self.metrics.last_error = error


class MockProvider(Provider):
    """Mock provider for testing and local development."""

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        response: Optional[str] = None,
        echo: bool = False,
        fail: bool = False,
        latency_ms: float = 0,
    ):
        super().__init__(config or ProviderConfig(name="mock"))
        self.mock_response = response or "Mock response"
        self.echo = echo
        self.should_fail = fail
        self.mock_latency_ms = latency_ms
        self.calls: List[Dict[str, Any]] = []

    async def chat(
        self,
        messages: List[Dict[str, str]],
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResponse:
        """Return mock response."""
        options = options or CompletionOptions(model=self.config.default_model)
        self.calls.append({"type": "chat", "messages": messages, "options": options})
        start_time = time.time()

        if self.mock_latency_ms > 0:
            await asyncio.sleep(self.mock_latency_ms / 1000)

        if self.should_fail:
            self.record_failure("Mock failure")
            raise ProviderError("Mock failure", status=500, data={"error": "mock"})

        content = messages[-1]["content"] if self.echo and messages else self.mock_response
        input_tokens = sum(len(m["content"]) // 4 for m in messages)
        output_tokens = len(content) // 4
        usage = Usage(
            prompt_tokens=input_tokens,
            completion_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        )

        response = CompletionResponse(
            content=content,
            model=options.model,
            details={"provider": self.name, "messages": len(messages)},
            usage=usage,
        )

        latency_ms = (time.time() - start_time) * 1000
        self.record_success(latency_ms, usage)

        return response

    async def embeddings(
        self,
        input: Union[str, List[str]],
        options: Optional[Dict[str, Any]] = None,
    ) -> List[List[float]]:
        texts = [input] if isinstance(input, str) else list(input)
        self.calls.append({"type": "embeddings", "input": texts, "options": options})

        if self.should_fail:
            self.record_failure("Mock failure")
            raise ProviderError("Mock failure", status=500, data={"error": "mock"})

        self.record_success(0.0, None)
        return [[float(len(text)), float(len(text.split()))] for text in texts]


ProviderFactory = Callable[[ProviderConfig], Provider]

_PROVIDER_REGISTRY: Dict[str, ProviderFactory] = {
    "mock": MockProvider,
}


def register_provider(provider_type: str, factory: ProviderFactory) -> None:
    """Make a provider implementation available to `create_provider`."""
    _PROVIDER_REGISTRY[provider_type] = factory


def available_providers() -> List[str]:
    return sorted(_PROVIDER_REGISTRY)


def create_provider(
    provider_type: str,
    config: Optional[ProviderConfig] = None,
    custom_provider: Optional[Provider] = None,
) -> Provider:
    """
    Resolve a provider by type name.

    Args:
        provider_type: Registered provider name, or "custom"
        config: Provider configuration (defaults to one named after the type)
        custom_provider: Provider instance used when provider_type is "custom"

    Returns:
        Provider instance

    Raises:
        ConfigurationError: If the type is unknown or "custom" has no instance
    """
    if provider_type == "custom":
        if custom_provider is None:
            raise ConfigurationError(
                "provider_type 'custom' requires a custom_provider instance"
            )
        return custom_provider

    factory = _PROVIDER_REGISTRY.get(provider_type)
    if factory is None:
        raise ConfigurationError(
            f"Unsupported provider type: {provider_type!r} "
            f"(available: {', '.join(available_providers())}, custom)"
        )

    logger.debug("Creating %s provider", provider_type)
    return factory(config or ProviderConfig(name=provider_type))
