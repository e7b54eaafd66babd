"""Base processor for bounded-concurrency pipelines.

Items are processed concurrently under a semaphore and results are handed to
a single consumer task, so ``store_result`` never runs concurrently with
itself. A failing item is reported through ``on_item_error`` and never
cancels its siblings.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")

_sentinel = object()


class BaseProcessor(abc.ABC, Generic[T, R]):
    def __init__(
        self,
        *,
        max_concurrent: int = 4,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_concurrent = max(1, max_concurrent)
        self.logger = logger or logging.getLogger(self.__class__.__name__)

    @abc.abstractmethod
    async def process_single(self, item: T) -> R:
        """Process a single item. Subclasses must implement."""

    @abc.abstractmethod
    async def store_result(self, item: T, result: R) -> None:
        """Record a single result. Subclasses must implement."""

    async def on_item_error(self, item: T, exc: Exception) -> None:
        """Called once per failed item. Default logs and moves on."""
        self.logger.warning("Failed to process item %r: %s", item, exc)

    async def process_batch(self, items: list[T]) -> int:
        """Process a batch of items; returns the number that succeeded."""
        if not items:
            return 0

        results_queue: asyncio.Queue[Any] = asyncio.Queue(
            maxsize=max(1, self.max_concurrent * 2)
        )
        processed = 0
        errors = 0

        async def _consume() -> None:
            while True:
                entry = await results_queue.get()
                try:
                    if entry is _sentinel:
                        return
                    await self.store_result(*entry)
                finally:
                    results_queue.task_done()

        consumer = asyncio.create_task(_consume())
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def _process_one(item: T) -> None:
            nonlocal processed, errors
            async with semaphore:
                try:
                    result = await self.process_single(item)
                except Exception as exc:
                    errors += 1
                    await self.on_item_error(item, exc)
                    return
                await results_queue.put((item, result))
                processed += 1

        tasks = [asyncio.create_task(_process_one(item)) for item in items]
        await asyncio.gather(*tasks, return_exceptions=True)

        await results_queue.join()
        await results_queue.put(_sentinel)
        await consumer

        if errors:
            self.logger.info(
                "Batch complete: %d processed, %d errors", processed, errors
            )

        return processed
