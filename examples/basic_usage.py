#!/usr/bin/env python3
"""
efrate - Basic Usage Example

This example demonstrates caching, fuzzy cache hits, rate limiting
and request batching in front of a mock provider.
"""

import asyncio
import logging

from efrate import (
    BatchConfig,
    CacheConfig,
    GatewayConfig,
    MockProvider,
    ProviderConfig,
    RateLimitConfig,
    RateLimitError,
    create_gateway,
)


async def main():
    logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")

    print("=" * 60)
    print("efrate - Basic Usage Example")
    print("=" * 60)

    provider = MockProvider(ProviderConfig(name="demo"), echo=True, latency_ms=20)

    config = GatewayConfig(
        cache=CacheConfig(ttl_ms=60000, similarity_threshold=0.9),
        rate_limit=RateLimitConfig(units_per_window=5, window_ms=1000, max_wait_ms=500),
        batch=BatchConfig(max_batch_size=4, max_delay_ms=50),
    )
    gateway = create_gateway("custom", custom_provider=provider, config=config)

    # Example 1: Basic completion
    print("\n1. Basic completion...")

    response = await gateway.complete("What is the capital of France?")
    print(f"   Response: {response.content}")
    print(f"   Cached: {response.cached}")

    # Example 2: Cache hits
    print("\n2. Caching demonstration...")

    response = await gateway.complete("  what is the CAPITAL of france?  ")
    print(f"   Normalized repeat - cached: {response.cached}")

    response = await gateway.complete("What is the capitol of France?")
    print(f"   Typo repeat - cached: {response.cached}")

    # Example 3: Batching
    print("\n3. Concurrent prompts are batched...")

    prompts = [f"Summarize chapter {i}" for i in range(1, 5)]
    responses = await asyncio.gather(*(gateway.complete(p) for p in prompts))
    for r in responses:
        print(f"   {r.content}")
    print(f"   Batcher: {gateway.batcher.get_stats().to_dict()}")

    # Example 4: Rate limiting
    print("\n4. Rate limit handling...")

    try:
        for i in range(10):
            await gateway.chat([{"role": "user", "content": f"message {i}"}])
            print(f"   chat {i} ok, {gateway.rate_limiter.available_tokens:.2f} tokens left")
    except RateLimitError as e:
        print(f"   {e}")

    # Example 5: Metrics
    print("\n5. Metrics...")

    metrics = gateway.get_metrics()
    print(f"   Total requests: {metrics['total_requests']}")
    print(f"   Cached requests: {metrics['cached_requests']}")
    print(f"   Rate limited: {metrics['rate_limited_requests']}")

    print("\n" + "=" * 60)
    print("Example complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
