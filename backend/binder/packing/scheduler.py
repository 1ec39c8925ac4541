"""Debounced, cancellable driver for a packing session's steps."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .session import PackingSession

logger = logging.getLogger(__name__)

StepListener = Callable[[PackingSession], None]


class _DebouncedStep:
    """One kind of step: at most one armed timer and one running task."""

    def __init__(
        self,
        name: str,
        delay: float,
        run: Callable[[], Awaitable[bool]],
        on_done: Callable[[bool], None],
    ) -> None:
        self.name = name
        self.delay = delay
        self._run = run
        self._on_done = on_done
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._rerun = False

    @property
    def busy(self) -> bool:
        return self._timer is not None or self._task is not None

    def schedule(self) -> None:
        """(Re)arm the timer. A step that has not started yet is dropped."""
        if self._task is not None:
            self._rerun = True
            return
        self.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.delay, self._fire)

    def ensure(self) -> None:
        """Arm the timer unless a step is already pending or running."""
        if not self.busy:
            self.schedule()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        self._timer = None
        self._task = asyncio.get_running_loop().create_task(self._execute())

    async def _execute(self) -> None:
        progressed = False
        try:
            progressed = await self._run()
        except asyncio.CancelledError:
            self._task = None
            raise
        except Exception:  # noqa: BLE001
            logger.exception("%s step failed; retrying after the debounce interval", self.name)
            progressed = True
        self._task = None
        if self._rerun:
            self._rerun = False
            self.schedule()
        try:
            self._on_done(progressed)
        except Exception:  # noqa: BLE001
            logger.exception("%s step follow-up failed", self.name)

    async def stop(self) -> None:
        self.cancel()
        self._rerun = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


class Scheduler:
    """Single cooperative loop per session.

    Every edit re-arms both debounce timers. The partition timer runs one
    partitioner step at a time until the cursor reaches the end of the
    sequence; the sync timer runs one upload at a time while any chunk needs
    one. A step that is already running is allowed to finish and the
    session's generation check discards whatever it produced for a
    superseded sequence.
    """

    def __init__(
        self,
        session: PackingSession,
        *,
        partition_delay: float = 0.1,
        sync_delay: float = 1.0,
        on_step: Optional[StepListener] = None,
    ) -> None:
        self.session = session
        self._on_step = on_step
        self._partition = _DebouncedStep(
            "partition", partition_delay, self._partition_once, self._after_partition
        )
        self._sync = _DebouncedStep("sync", sync_delay, self._sync_once, self._after_sync)
        self._started = False

    @property
    def busy(self) -> bool:
        return self._partition.busy or self._sync.busy

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.session.add_listener(self.notify_changed)
        self._partition.schedule()
        self._sync.schedule()

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self.session.remove_listener(self.notify_changed)
        await self._partition.stop()
        await self._sync.stop()

    def notify_changed(self) -> None:
        if self._started:
            self._partition.schedule()
            self._sync.schedule()

    async def wait_idle(self, poll: float = 0.01, timeout: Optional[float] = None) -> None:
        """Wait until no step is armed or running."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self.busy:
            if deadline is not None and loop.time() > deadline:
                raise asyncio.TimeoutError("scheduler did not settle")
            await asyncio.sleep(poll)

    # ------------------------------------------------------------------
    # Step bodies
    # ------------------------------------------------------------------

    async def _partition_once(self) -> bool:
        if not self.session.fully_packed:
            return await self.session.partition_step()
        return await self.session.recompress_step()

    def _after_partition(self, progressed: bool) -> None:
        if not self._started:
            return
        self._notify_step()
        if progressed or not self.session.fully_packed:
            self._partition.ensure()
        if progressed:
            self._sync.ensure()

    async def _sync_once(self) -> bool:
        return await self.session.sync_step() is not None

    def _after_sync(self, attempted: bool) -> None:
        if not self._started:
            return
        if attempted:
            self._notify_step()
        if self.session.sync_driver.pending(self.session.store) is not None:
            self._sync.ensure()

    def _notify_step(self) -> None:
        if self._on_step is None:
            return
        try:
            self._on_step(self.session)
        except Exception:  # noqa: BLE001
            logger.exception("Step listener failed for book %s", self.session.book_id)
