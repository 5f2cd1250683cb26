"""
Display memory: turns a noisy per-frame "worth showing" signal into a
stable on/off decision.

The debounce state has a single owner, an asyncio worker task. Callers
never touch the state; they send their raw signal through a queue and
await the worker's reply. Requests are handled one at a time in the order
they were queued, so the reply to request n depends only on requests 1..n.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class DisplayState(str, Enum):
    QUIET = "quiet"
    ACTIVE = "active"


class DebounceState:
    """
    Two-state debounce.

    A True signal always switches to (or keeps) ACTIVE. A False signal
    while ACTIVE keeps the camera on screen for up to grace_frames more
    frames before dropping to QUIET.
    """

    def __init__(self, grace_frames: int = 0):
        if grace_frames < 0:
            raise ValueError(f"grace_frames must be >= 0, got {grace_frames}")
        self.grace_frames = grace_frames
        self.state = DisplayState.QUIET
        self._grace_left = 0

    def observe(self, raw: bool) -> bool:
        """Feed one raw signal, return the debounced one."""
        if raw:
            self.state = DisplayState.ACTIVE
            self._grace_left = self.grace_frames
            return True

        if self.state is DisplayState.ACTIVE and self._grace_left > 0:
            self._grace_left -= 1
            return True

        self.state = DisplayState.QUIET
        self._grace_left = 0
        return False


class DisplayMemory:
    """
    Actor owning one DebounceState.

    start() spawns the worker on the running loop; submit() starts it on
    demand if nobody did. stop() cancels the worker and fails pending
    requests.
    """

    def __init__(self, grace_frames: int = 0):
        self._debounce = DebounceState(grace_frames)
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the worker task on the running event loop."""
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(self._run(), name="display-memory")
        logger.debug("Display memory worker started")

    async def stop(self) -> None:
        """Stop the worker. Requests still queued are cancelled."""
        task, queue = self._task, self._queue
        self._task = None
        self._queue = None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        while queue is not None and not queue.empty():
            _, future = queue.get_nowait()
            if not future.done():
                future.cancel()
        logger.debug("Display memory worker stopped")

    async def submit(self, raw: bool) -> bool:
        """
        Send the raw signal for the current frame and wait for the
        debounced decision.
        """
        if not self.running:
            self.start()

        future = asyncio.get_running_loop().create_future()
        # put_nowait: the request's place in line is fixed at call time.
        self._queue.put_nowait((bool(raw), future))
        return await future

    async def _run(self) -> None:
        queue = self._queue
        while True:
            raw, future = await queue.get()
            try:
                if future.cancelled():
                    # The caller went away; its signal still counts.
                    self._debounce.observe(raw)
                    continue
                future.set_result(self._debounce.observe(raw))
            finally:
                queue.task_done()
