"""Serialized delivery of progress callbacks."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Generic, TypeVar

from bulk_transfer_engine.domain.ports import ProgressCallback

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT")

_STOP = object()


class ProgressNotifier(Generic[PayloadT]):
    """Deliver payloads to one callback from a single consumer task.

    ``notify`` never blocks: when the queue is full the oldest undelivered
    payload is dropped. Synchronous callbacks run in a worker thread and
    every invocation is bounded by ``callback_timeout_seconds``.
    """

    def __init__(
        self,
        callback: ProgressCallback[PayloadT] | None,
        *,
        max_pending: int = 16,
        callback_timeout_seconds: float = 30.0,
    ) -> None:
        self._callback = callback
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=max(1, max_pending))
        self._callback_timeout_seconds = callback_timeout_seconds
        self._consumer: asyncio.Task[None] | None = None
        self.delivered = 0
        self.dropped = 0

    @property
    def enabled(self) -> bool:
        """Whether a callback is configured."""

        return self._callback is not None

    def notify(self, payload: PayloadT) -> None:
        """Queue ``payload`` for delivery."""

        if self._callback is None:
            return
        if self._consumer is None:
            self._consumer = asyncio.create_task(self._consume())
        while True:
            try:
                self._queue.put_nowait(payload)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self._queue.task_done()
                self.dropped += 1
                logger.warning("Progress consumer is behind; dropped one notification.")

    async def aclose(self) -> None:
        """Deliver what is queued, then stop the consumer."""

        consumer = self._consumer
        if consumer is None:
            return
        await self._queue.join()
        self._queue.put_nowait(_STOP)
        await consumer
        self._consumer = None

    async def _consume(self) -> None:
        while True:
            payload = await self._queue.get()
            try:
                if payload is _STOP:
                    return
                await self._deliver(payload)  # type: ignore[arg-type]
            finally:
                self._queue.task_done()

    async def _deliver(self, payload: PayloadT) -> None:
        callback = self._callback
        assert callback is not None
        try:
            if inspect.iscoroutinefunction(callback):
                await asyncio.wait_for(callback(payload), self._callback_timeout_seconds)
            else:
                outcome = await asyncio.wait_for(
                    asyncio.to_thread(callback, payload),
                    self._callback_timeout_seconds,
                )
                if inspect.isawaitable(outcome):
                    await asyncio.wait_for(outcome, self._callback_timeout_seconds)
            self.delivered += 1
        except TimeoutError:
            logger.warning(
                "Progress callback exceeded %.1fs and was abandoned.",
                self._callback_timeout_seconds,
            )
        except Exception:
            logger.exception("Progress callback failed.")


__all__ = ["ProgressNotifier"]
