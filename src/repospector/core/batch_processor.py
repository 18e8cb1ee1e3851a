"""Bounded-concurrency async batch runner with timeout, retry and partial failure.

Each item runs ``process(item)`` under an ``asyncio.Semaphore``. Every
attempt is bounded by ``asyncio.wait_for``; failed attempts are retried with
exponential backoff unless the error looks permanent (bad credentials,
malformed request). An item that still fails is recorded, never raised, so
one bad item cannot sink the batch.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from loguru import logger

from .exceptions import ConfigError

T = TypeVar("T")
R = TypeVar("R")

NON_RETRYABLE_PATTERNS = [
    re.compile(r"API key", re.I),
    re.compile(r"authentication", re.I),
    re.compile(r"authorization", re.I),
    re.compile(r"forbidden", re.I),
    re.compile(r"bad request", re.I),
    re.compile(r"invalid.*parameter", re.I),
]


def is_non_retryable(error: BaseException) -> bool:
    """True when retrying ``error`` cannot help."""
    message = str(error) or type(error).__name__
    return any(pattern.search(message) for pattern in NON_RETRYABLE_PATTERNS)


@dataclass(frozen=True)
class BatchProgress:
    """Progress snapshot emitted after each item finishes."""

    completed: int  # finished items, successful or not
    failed: int
    total: int
    percentage: int
    active: int = 0


@dataclass
class ItemResult(Generic[R]):
    """Outcome of one item. ``index`` is its position in the input."""

    index: int
    success: bool
    data: R | None = None
    error: str | None = None
    attempts: int = 0
    processing_time: float = 0.0


@dataclass
class BatchResult(Generic[R]):
    """Per-item outcomes, each list in completion order."""

    successful: list[ItemResult[R]] = field(default_factory=list)
    failed: list[ItemResult[R]] = field(default_factory=list)
    duration: float = 0.0

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)


class BatchProcessor:
    """Runs an async function over items with bounded concurrency.

    Example:
        processor = BatchProcessor(max_concurrent=3, timeout=120, retry_attempts=1)
        result = await processor.process(units, review_unit, on_progress)
        for item in result.failed:
            print(units[item.index], item.error)
    """

    def __init__(
        self,
        max_concurrent: int = 3,
        timeout: float = 30.0,
        retry_attempts: int = 2,
        retry_delay: float = 1.0,
    ) -> None:
        """Initialize the processor.

        Args:
            max_concurrent: Maximum items in flight at once
            timeout: Seconds allowed per attempt
            retry_attempts: Extra attempts after the first failure
            retry_delay: Base backoff in seconds, doubled on each retry

        Raises:
            ConfigError: If ``max_concurrent`` < 1 or ``retry_attempts`` < 0
        """
        if max_concurrent < 1:
            raise ConfigError(
                f"max_concurrent must be >= 1, got {max_concurrent}",
                {"max_concurrent": max_concurrent},
            )
        if retry_attempts < 0:
            raise ConfigError(
                f"retry_attempts must be >= 0, got {retry_attempts}",
                {"retry_attempts": retry_attempts},
            )
        self.max_concurrent = max_concurrent
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    async def process(
        self,
        items: Sequence[T],
        process: Callable[[T], Awaitable[R]],
        on_progress: Callable[[BatchProgress], None] | None = None,
    ) -> BatchResult[R]:
        """Process every item, tolerating individual failures.

        Args:
            items: Work items
            process: Async function applied to each item
            on_progress: Called once per finished item; ``completed`` strictly
                increases from 1 to ``len(items)``

        Returns:
            BatchResult with successes and failures in completion order
        """
        result: BatchResult[R] = BatchResult()
        total = len(items)
        if total == 0:
            return result

        semaphore = asyncio.Semaphore(self.max_concurrent)
        state = {"completed": 0, "failed": 0, "active": 0}
        started = time.perf_counter()

        async def run(index: int, item: T) -> None:
            async with semaphore:
                state["active"] += 1
                outcome = await self._run_with_retry(index, item, process)
                state["active"] -= 1

            state["completed"] += 1
            if outcome.success:
                result.successful.append(outcome)
            else:
                state["failed"] += 1
                result.failed.append(outcome)
                logger.warning(
                    f"Batch item {index} failed after {outcome.attempts} attempt(s): "
                    f"{outcome.error}"
                )

            if on_progress is not None:
                on_progress(
                    BatchProgress(
                        completed=state["completed"],
                        failed=state["failed"],
                        total=total,
                        percentage=round(state["completed"] / total * 100),
                        active=state["active"],
                    )
                )

        await asyncio.gather(*(run(i, item) for i, item in enumerate(items)))

        result.duration = time.perf_counter() - started
        logger.debug(
            f"Batch finished: {len(result.successful)} ok, {len(result.failed)} failed "
            f"in {result.duration:.2f}s"
        )
        return result

    async def _run_with_retry(
        self, index: int, item: T, process: Callable[[T], Awaitable[R]]
    ) -> ItemResult[R]:
        started = time.perf_counter()
        last_error: Exception | None = None
        attempts = 0

        for attempt in range(self.retry_attempts + 1):
            attempts = attempt + 1
            try:
                data = await asyncio.wait_for(process(item), timeout=self.timeout)
                return ItemResult(
                    index=index,
                    success=True,
                    data=data,
                    attempts=attempts,
                    processing_time=time.perf_counter() - started,
                )
            except TimeoutError:
                last_error = TimeoutError(f"Operation timed out after {self.timeout}s")
            except Exception as e:
                last_error = e
                if is_non_retryable(e):
                    break

            if attempt < self.retry_attempts:
                delay = self.retry_delay * (2**attempt)
                logger.debug(f"Retrying batch item {index} in {delay:.1f}s: {last_error}")
                await asyncio.sleep(delay)

        return ItemResult(
            index=index,
            success=False,
            error=_describe(last_error),
            attempts=attempts,
            processing_time=time.perf_counter() - started,
        )


def _describe(error: Any) -> str:
    if error is None:
        return "Unknown error"
    return str(error) or type(error).__name__
