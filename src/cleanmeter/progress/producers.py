"""Adapters that turn scan engines into channel producers."""

import asyncio
import threading
from typing import Callable, Union

from ..errors import ScanCancelledError
from ..models.scan import ScanProgress, ScanSummary
from .channel import Producer, Report

# report(progress) and a stop flag the engine should poll between phases
BlockingScan = Callable[[Callable[[Union[ScanProgress, dict]], None], threading.Event], ScanSummary]


def threaded(scan: BlockingScan) -> Producer:
    """Run a blocking scan engine in a worker thread.

    Progress reported from the worker is handed to the event loop with
    ``call_soon_threadsafe``, so it reaches the channel in emission order.
    Once the run ends the stop flag is set and further reports raise
    ``ScanCancelledError`` inside the worker.
    """

    async def producer(report: Report) -> ScanSummary:
        loop = asyncio.get_running_loop()
        stop = threading.Event()

        def report_from_thread(progress: Union[ScanProgress, dict]) -> None:
            if stop.is_set():
                raise ScanCancelledError("Scan cancelled")
            try:
                loop.call_soon_threadsafe(report, progress)
            except RuntimeError as e:
                # loop already closed
                raise ScanCancelledError("Scan cancelled") from e

        try:
            return await asyncio.to_thread(scan, report_from_thread, stop)
        finally:
            stop.set()

    return producer
