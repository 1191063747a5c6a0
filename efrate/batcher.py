"""
Request batching.

Collects individually submitted prompts and hands them to a batch processor
in groups, bounded by size and by how long the oldest request may wait.
"""

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, List, Optional, Set

from .exceptions import BatchCancelledError, BatchDispatchError, ConfigurationError

logger = logging.getLogger(__name__)

BatchProcessor = Callable[[List[str], List[Any]], Awaitable[List[Any]]]


@dataclass
class BatchConfig:
    """Configuration for request batching."""
    max_batch_size: int = 20
    max_delay_ms: float = 100
    # Advisory only, batches are not split by token count
    max_tokens_per_batch: int = 4096

    def __post_init__(self):
        if self.max_batch_size < 1:
            raise ConfigurationError("max_batch_size must be at least 1")
        if self.max_delay_ms < 0:
            raise ConfigurationError("max_delay_ms must not be negative")
        if self.max_tokens_per_batch < 1:
            raise ConfigurationError("max_tokens_per_batch must be at least 1")

    def to_dict(self) -> dict:
        return {
            "max_batch_size": self.max_batch_size,
            "max_delay_ms": self.max_delay_ms,
            "max_tokens_per_batch": self.max_tokens_per_batch,
        }


@dataclass
class QueuedRequest:
    """A request waiting to be dispatched."""
    id: str
    prompt: str
    options: Any
    future: "asyncio.Future[Any]"
    enqueued_at: float  # loop.time(), seconds


@dataclass
class BatcherStats:
    """Batcher statistics."""
    enqueued_requests: int = 0
    dispatched_batches: int = 0
    dispatched_requests: int = 0
    failed_batches: int = 0
    cancelled_requests: int = 0

    @property
    def avg_batch_size(self) -> float:
        if self.dispatched_batches == 0:
            return 0.0
        return self.dispatched_requests / self.dispatched_batches

    def to_dict(self) -> dict:
        return {
            "enqueued_requests": self.enqueued_requests,
            "dispatched_batches": self.dispatched_batches,
            "dispatched_requests": self.dispatched_requests,
            "failed_batches": self.failed_batches,
            "cancelled_requests": self.cancelled_requests,
            "avg_batch_size": round(self.avg_batch_size, 2),
        }


class RequestBatcher:
    """
    Time and size bounded request batcher.

    The first request into an idle batcher arms a `max_delay_ms` timer; a
    full queue dispatches immediately. Only one batch is in flight at a time.
    Each enqueued request gets a future that is resolved or rejected exactly
    once: with its positional result, with the processor's exception (shared
    by the whole batch), or with BatchCancelledError if cleared first. A
    processor that dies with a non-Exception BaseException still rejects its
    batch, with BatchDispatchError.
    """

    def __init__(
        self,
        process_batch: BatchProcessor,
        config: Optional[BatchConfig] = None,
    ):
        if process_batch is None:
            raise ConfigurationError("process_batch is required")
        self.config = config or BatchConfig()
        self._process_batch = process_batch
        self._queue: Deque[QueuedRequest] = deque()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._processing = False
        self._ids = itertools.count(1)
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._stats = BatcherStats()

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting to be dispatched."""
        return len(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._processing

    def enqueue(self, prompt: str, options: Any = None) -> "asyncio.Future[Any]":
        """
        Add a request to the queue.

        Must be called from a running event loop.

        Args:
            prompt: Prompt to process
            options: Per-request options passed through to the processor

        Returns:
            Future resolved with this request's result
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._queue.append(QueuedRequest(
            id=f"req_{next(self._ids)}",
            prompt=prompt,
            options=options,
            future=future,
            enqueued_at=loop.time(),
        ))
        self._stats.enqueued_requests += 1

        if self._timer is None and not self._processing:
            self._timer = loop.call_later(
                self.config.max_delay_ms / 1000, self._on_timer,
            )

        if len(self._queue) >= self.config.max_batch_size and not self._processing:
            self._cancel_timer()
            self._dispatch()

        return future

    def clear(self, reason: str = "Queue cleared") -> int:
        """
        Reject every queued request that has not been dispatched yet.

        Returns:
            Number of requests rejected
        """
        error = BatchCancelledError(reason)
        cleared = 0
        while self._queue:
            request = self._queue.popleft()
            if not request.future.done():
                request.future.set_exception(error)
            cleared += 1

        self._cancel_timer()
        self._stats.cancelled_requests += cleared
        if cleared:
            logger.warning("Cleared %d queued request(s): %s", cleared, reason)
        return cleared

    def get_stats(self) -> BatcherStats:
        return BatcherStats(
            enqueued_requests=self._stats.enqueued_requests,
            dispatched_batches=self._stats.dispatched_batches,
            dispatched_requests=self._stats.dispatched_requests,
            failed_batches=self._stats.failed_batches,
            cancelled_requests=self._stats.cancelled_requests,
        )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        self._dispatch()

    def _dispatch(self) -> None:
        """Take the oldest requests off the queue and start processing them."""
        if self._processing or not self._queue:
            return

        self._processing = True
        size = min(self.config.max_batch_size, len(self._queue))
        batch = [self._queue.popleft() for _ in range(size)]

        task = asyncio.get_running_loop().create_task(self._run_batch(batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_batch(self, batch: List[QueuedRequest]) -> None:
        self._stats.dispatched_batches += 1
        self._stats.dispatched_requests += len(batch)
        logger.debug(
            "Dispatching batch of %d request(s) (%s..%s), oldest queued %.1f ms",
            len(batch), batch[0].id, batch[-1].id,
            (asyncio.get_running_loop().time() - batch[0].enqueued_at) * 1000,
        )

        try:
            results = await self._process_batch(
                [request.prompt for request in batch],
                [request.options for request in batch],
            )
            if len(results) != len(batch):
                raise BatchDispatchError(
                    f"Batch processor returned {len(results)} results "
                    f"for {len(batch)} requests"
                )
        except asyncio.CancelledError:
            for request in batch:
                request.future.cancel()
            raise
        except Exception as e:
            self._stats.failed_batches += 1
            logger.warning("Batch of %d request(s) failed: %s", len(batch), e)
            for request in batch:
                if not request.future.done():
                    request.future.set_exception(e)
        except BaseException as e:
            self._stats.failed_batches += 1
            error = BatchDispatchError(f"Batch processing aborted: {e!r}")
            error.__cause__ = e
            for request in batch:
                if not request.future.done():
                    request.future.set_exception(error)
            raise
        else:
            for request, result in zip(batch, results):
                if not request.future.done():
                    request.future.set_result(result)
        finally:
            self._processing = False
            if self._queue and self._timer is None:
                self._timer = asyncio.get_running_loop().call_later(0, self._on_timer)
