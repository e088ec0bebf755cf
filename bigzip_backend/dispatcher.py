from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)

Action = Callable[[], None]


class Dispatcher(Protocol):
    def post(self, action: Action) -> None: ...

    async def drain(self) -> None: ...


class SynchronousDispatcher:
    """Applies actions inline. Suitable when every caller already runs on the consuming thread."""

    def post(self, action: Action) -> None:
        action()

    async def drain(self) -> None:
        return None


class QueueDispatcher:
    """Single-consumer queue: every posted action runs on one worker task, in order."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Action] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._worker: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._consume(self._queue))

    def post(self, action: Action) -> None:
        if self._worker is None or self._worker.done():
            self.start()
        loop, queue = self._loop, self._queue
        if loop is None or queue is None:
            raise RuntimeError("Dispatcher worker is not running")

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            queue.put_nowait(action)
        else:
            loop.call_soon_threadsafe(queue.put_nowait, action)

    async def drain(self) -> None:
        if self._queue is None:
            return
        await self._queue.join()

    async def stop(self) -> None:
        worker = self._worker
        if worker is None:
            return
        if self._queue is not None:
            await self._queue.join()
        worker.cancel()
        await asyncio.gather(worker, return_exceptions=True)
        self._worker = None

    async def _consume(self, queue: asyncio.Queue[Action]) -> None:
        while True:
            action = await queue.get()
            try:
                action()
            except Exception:
                logger.exception("Dispatched action failed")
            finally:
                queue.task_done()
