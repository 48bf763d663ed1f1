"""Single-consumer progress stream for a long-running scan.

A run is an ``asyncio`` task executing the producer plus a queue the task
writes progress into. The consumer reads the queue in emission order. The
listener, the task and the scope lock all live exactly as long as the
``events()`` block (or the ``start()`` call built on it).
"""

import asyncio
import inspect
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional, Union

from ..errors import ConflictError, ScanCancelledError
from ..logging import get_logger
from ..models.scan import ScanProgress, ScanSummary
from .locks import LocalScanLock, ScanLock

logger = get_logger(__name__)

Report = Callable[[Union[ScanProgress, dict]], None]
Producer = Callable[[Report], Awaitable[ScanSummary]]
ProgressCallback = Callable[[ScanProgress], Union[None, Awaitable[None]]]

_END = object()

_ABANDONED = (ScanCancelledError, asyncio.CancelledError, GeneratorExit)


class ScanState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class _Run:
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    task: Optional[asyncio.Task] = None
    last_percentage: Optional[float] = None
    detached: bool = False
    cancel_requested: bool = False
    finished: bool = False
    delivered: int = 0
    dropped: int = 0


class ScanSession:
    """Consumer side of one run.

    Iterate it for progress events, then await ``result()`` for the
    summary. Iteration ends when the producer finishes, fails or is
    cancelled.
    """

    def __init__(self, run: _Run):
        self._run = run
        self._exhausted = False

    def __aiter__(self) -> "ScanSession":
        return self

    async def __anext__(self) -> ScanProgress:
        if self._exhausted:
            raise StopAsyncIteration
        item = await self._run.queue.get()
        if item is _END:
            self._exhausted = True
            raise StopAsyncIteration
        self._run.delivered += 1
        return item

    async def result(self) -> ScanSummary:
        """Wait for the producer and return its summary.

        Raises:
            ScanCancelledError: The run was cancelled, even if the producer
                returned a summary anyway
            Exception: Whatever the producer raised
        """
        task = self._run.task
        await asyncio.wait([task])
        if task.cancelled() or self._run.cancel_requested:
            raise ScanCancelledError("Scan cancelled")
        return task.result()


class ProgressChannel:
    """Streams progress from one producer to one consumer per scope.

    A second ``start()`` while a run holds the scope lock raises
    ``ConflictError``; nothing is queued or stacked.
    """

    def __init__(self, scope: str = "default", lock: Optional[ScanLock] = None):
        self.scope = scope
        self.lock = lock or LocalScanLock()
        self.state = ScanState.IDLE
        self.last_error: Optional[BaseException] = None
        self._run: Optional[_Run] = None

    @property
    def is_running(self) -> bool:
        return self.state == ScanState.RUNNING

    @property
    def has_listener(self) -> bool:
        return self._run is not None and not self._run.detached

    async def start(self, producer: Producer, on_progress: Optional[ProgressCallback] = None) -> ScanSummary:
        """Run ``producer`` and deliver its progress to ``on_progress``.

        Returns:
            The producer's summary

        Raises:
            ConflictError: A scan is already running in this scope
            ScanCancelledError: ``cancel()`` was called during the run
        """
        async with self.events(producer) as session:
            async for progress in session:
                if on_progress is not None:
                    outcome = on_progress(progress)
                    if inspect.isawaitable(outcome):
                        await outcome
            return await session.result()

    @asynccontextmanager
    async def events(self, producer: Producer) -> AsyncIterator[ScanSession]:
        """Start a run and yield its session; leaving the block ends the run."""
        run = await self._begin(producer)
        error: Optional[BaseException] = None
        try:
            yield ScanSession(run)
        except BaseException as e:
            error = e
            raise
        finally:
            await self._finish(run, error)

    def cancel(self) -> None:
        """Cancel the current run. Safe to call any number of times."""
        run = self._run
        if run is None or run.cancel_requested or run.finished or run.task.done():
            return
        run.cancel_requested = True
        run.task.cancel()
        logger.info("scan_cancel_requested", scope=self.scope)

    async def _begin(self, producer: Producer) -> _Run:
        if self.is_running:
            raise ConflictError(f"A scan is already running for {self.scope}")
        if not await self.lock.acquire(self.scope):
            raise ConflictError(f"A scan is already running for {self.scope}")

        run = _Run()
        self._run = run
        self.state = ScanState.RUNNING
        self.last_error = None

        run.task = asyncio.create_task(producer(self._reporter(run)))
        # Runs even if the task is cancelled before it starts.
        run.task.add_done_callback(lambda _: run.queue.put_nowait(_END))
        logger.info("scan_started", scope=self.scope)
        return run

    def _reporter(self, run: _Run) -> Report:
        def report(progress: Union[ScanProgress, dict]) -> None:
            if run.detached:
                return
            if not isinstance(progress, ScanProgress):
                progress = ScanProgress.model_validate(progress)
            if run.last_percentage is not None and progress.percentage < run.last_percentage:
                run.dropped += 1
                logger.debug(
                    "scan_progress_out_of_order",
                    scope=self.scope,
                    percentage=progress.percentage,
                    last_percentage=run.last_percentage,
                )
                return
            run.last_percentage = progress.percentage
            run.queue.put_nowait(progress)

        return report

    async def _finish(self, run: _Run, error: Optional[BaseException]) -> None:
        if run.finished:
            return
        run.finished = True
        run.detached = True

        try:
            task = run.task
            if not task.done():
                task.cancel()
                await asyncio.wait([task])

            task_error = None if task.cancelled() else task.exception()
            if run.cancel_requested or isinstance(error, _ABANDONED):
                self.state = ScanState.CANCELLED
            elif error is not None or task_error is not None:
                self.state = ScanState.FAILED
                self.last_error = error or task_error
            elif task.cancelled():
                # Consumer left the block before the producer finished.
                self.state = ScanState.CANCELLED
            else:
                self.state = ScanState.COMPLETED
        finally:
            if self._run is run:
                self._run = None
            await self.lock.release(self.scope)

        logger.info(
            "scan_finished",
            scope=self.scope,
            state=self.state.value,
            delivered=run.delivered,
            dropped=run.dropped,
        )
