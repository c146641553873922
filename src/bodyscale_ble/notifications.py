"""Ordered delivery of BLE notifications to a driver."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .protocol.uuids import pretty_print

_LOGGER = logging.getLogger(__name__)

NotificationHandler = Callable[[str, Any], Awaitable[None]]


class NotificationDispatcher:
    """Queues transport callbacks and hands them to a handler one at a time.

    Features:
    - Delivery in arrival order, each notification exactly once
    - Callable from any thread (bleak backends may call from their own)
    - Exceptions raised by the handler are logged and do not stop delivery
    """

    def __init__(self, handler: NotificationHandler, name: str = "driver"):
        """Initialize dispatcher.

        Args:
            handler: Coroutine called with (source, payload) per notification
            name: Label used in log messages
        """
        self._handler = handler
        self.name = name
        self._queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None
        self._pending = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def idle(self) -> bool:
        """Check if nothing is queued or being handled."""
        return self._pending == 0

    def start(self) -> None:
        """Start the consumer task on the running event loop."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._pending = 0
        self._task = self._loop.create_task(self._consume(), name=f"{self.name}-notify")

    async def stop(self) -> None:
        """Stop delivering. Queued notifications are dropped."""
        task, self._task = self._task, None
        self._drop_queued()
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Called from a handler; the consumer exits after this delivery
            return
        task.cancel()
        await asyncio.wait({task})

    def _drop_queued(self) -> None:
        while not self._queue.empty():
            source, _payload = self._queue.get_nowait()
            _LOGGER.debug("%s: dropping queued notification from %s", self.name, source)
            self._pending -= 1
            self._queue.task_done()

    def __call__(self, source: str, payload: Any) -> None:
        """Transport callback: queue one notification."""
        if self._loop is None or self._task is None:
            _LOGGER.debug("%s: dropping notification from %s, not running", self.name, source)
            return
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is self._loop:
            self._enqueue(source, payload)
        else:
            self._loop.call_soon_threadsafe(self._enqueue, source, payload)

    def _enqueue(self, source: str, payload: Any) -> None:
        if self._task is None:
            return
        self._pending += 1
        self._queue.put_nowait((source, payload))

    async def dispatch(self, source: str, payload: Any) -> None:
        """Deliver one notification to the handler.

        Handler exceptions end here: they are logged, never raised.
        """
        try:
            await self._handler(source, payload)
        except asyncio.CancelledError:
            raise
        except Exception:
            _LOGGER.exception(
                "%s: error handling notification from %s", self.name, pretty_print(source)
            )

    async def join(self) -> None:
        """Wait until every queued notification has been handled."""
        if self.running:
            await self._queue.join()

    async def _consume(self) -> None:
        while True:
            source, payload = await self._queue.get()
            try:
                await self.dispatch(source, payload)
            finally:
                self._pending -= 1
                self._queue.task_done()
            if self._task is not asyncio.current_task():
                return
