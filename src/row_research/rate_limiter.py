"""Bounded-concurrency batch runner with per-item retry/backoff."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import structlog
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt

from row_research.errors import RunAbandonedError
from row_research.models.outcome import ItemOutcome

logger = structlog.get_logger()

DEFAULT_CONCURRENCY = 5
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0

RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests")

Processor = Callable[[Any, int], Awaitable[Any]]
ProgressCallback = Callable[[int, int, Any, Any, BaseException | None], None]


def is_rate_limit_error(error: BaseException | None) -> bool:
    if error is None:
        return False
    if getattr(error, "status_code", None) == 429:
        return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def chunk_list(items: Sequence, size: int) -> list[list]:
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class RateLimiter:
    def __init__(
        self,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_retries: int = MAX_RETRIES,
        initial_backoff: float = INITIAL_BACKOFF_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(concurrency)
        self._stopped = False

    def stop(self) -> None:
        """Abandon the current or next run: items not yet started are settled as failed."""
        self._stopped = True
        logger.info("rate_limiter_stopped")

    def backoff_for(self, attempt_number: int, error: BaseException | None) -> float:
        """Delay after failed attempt N (1-based): exponential for rate limits, flat otherwise."""
        if is_rate_limit_error(error):
            return self.initial_backoff * (2 ** (attempt_number - 1))
        return self.initial_backoff

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.backoff_for(retry_state.attempt_number, retry_state.outcome.exception())

    async def process_with_retry(
        self,
        items: Sequence,
        processor: Processor,
        on_progress: ProgressCallback | None = None,
    ) -> list[ItemOutcome]:
        """Run every item; failures are returned as data, never raised.

        Outcomes are in input order regardless of completion order. A stop()
        issued before or during the run applies to it and is cleared once the
        run returns.
        """
        total = len(items)
        completed = 0

        def before_sleep(index: int) -> Callable[[RetryCallState], None]:
            def _log(retry_state: RetryCallState) -> None:
                error = retry_state.outcome.exception()
                logger.warning(
                    "item_retry",
                    index=index,
                    attempt=retry_state.attempt_number,
                    backoff=retry_state.next_action.sleep if retry_state.next_action else None,
                    rate_limited=is_rate_limit_error(error),
                    error=str(error),
                )

            return _log

        async def run(index: int, item: Any) -> ItemOutcome:
            nonlocal completed
            async with self._semaphore:
                if self._stopped:
                    outcome = ItemOutcome(index=index, item=item, error=RunAbandonedError())
                else:
                    outcome = await self._attempt(index, item, processor, before_sleep(index))

                completed += 1
                if on_progress:
                    try:
                        on_progress(completed, total, item, outcome.result, outcome.error)
                    except Exception:
                        logger.exception("progress_callback_error", index=index)
            return outcome

        try:
            return list(await asyncio.gather(*(run(i, item) for i, item in enumerate(items))))
        finally:
            self._stopped = False

    async def _attempt(
        self,
        index: int,
        item: Any,
        processor: Processor,
        before_sleep: Callable[[RetryCallState], None],
    ) -> ItemOutcome:
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=self._wait,
                sleep=self._sleep,
                before_sleep=before_sleep,
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await processor(item, index)
        except Exception as e:
            logger.warning("item_failed", index=index, attempts=attempts, error=str(e))
            return ItemOutcome(index=index, item=item, error=e, attempts=attempts)
        return ItemOutcome(index=index, item=item, result=result, attempts=attempts)

    async def process_all(
        self,
        items: Sequence,
        processor: Processor,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> list:
        """Only the successful results, in input order."""

        def progress(completed: int, total: int, *_: Any) -> None:
            if on_progress:
                on_progress(completed, total)

        outcomes = await self.process_with_retry(items, processor, progress)
        return [o.result for o in outcomes if o.ok]


async def process_in_chunks(
    items: Sequence,
    chunk_size: int,
    processor: Callable[[Any], Awaitable[Any]],
    delay_between_chunks: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list:
    """Run each chunk concurrently, chunks sequentially with a pause between them."""
    chunks = chunk_list(items, chunk_size)
    results: list = []
    for i, chunk in enumerate(chunks):
        results.extend(await asyncio.gather(*(processor(item) for item in chunk)))
        if i < len(chunks) - 1:
            await sleep(delay_between_chunks)
    return results
