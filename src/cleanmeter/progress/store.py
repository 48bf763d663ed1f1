"""Consumer-side scan state driven by a progress channel."""

import asyncio
import inspect
from typing import Optional

from ..errors import ConflictError, ScanCancelledError
from ..logging import get_logger
from ..models.scan import ScanProgress, ScanSummary
from .channel import ProgressCallback, ProgressChannel, Producer

logger = get_logger(__name__)


class ScanStore:
    """State a scan screen renders from.

    ``scan_results`` is only ever replaced by a completed scan. A cancelled
    or conflicting scan puts every field back to its pre-scan value.
    """

    def __init__(self, channel: ProgressChannel):
        self.channel = channel
        self.scan_results: Optional[ScanSummary] = None
        self.is_scanning = False
        self.scan_progress = 0.0
        self.scan_phase = ""
        self.error: Optional[str] = None

    async def start_scan(
        self,
        producer: Producer,
        on_progress: Optional[ProgressCallback] = None
    ) -> Optional[ScanSummary]:
        """Run a scan and record its outcome.

        ``on_progress`` sees each event after the store has applied it.
        Producer failures are recorded in ``error`` and yield None.
        """
        snapshot = self._snapshot()
        self.is_scanning = True
        self.scan_progress = 0.0
        self.scan_phase = ""
        self.error = None

        async def apply(progress: ScanProgress) -> None:
            self.set_scan_progress(progress)
            if on_progress is not None:
                outcome = on_progress(progress)
                if inspect.isawaitable(outcome):
                    await outcome

        try:
            results = await self.channel.start(producer, apply)
        except (ScanCancelledError, asyncio.CancelledError, ConflictError):
            self._restore(snapshot)
            raise
        except Exception as e:
            logger.error("scan_failed", scope=self.channel.scope, error=str(e))
            self.is_scanning = False
            self.error = str(e) or "Scan failed"
            return None

        self.scan_results = results
        self.is_scanning = False
        self.scan_progress = 100.0
        self.scan_phase = "Complete"
        return results

    def set_scan_progress(self, progress: ScanProgress) -> None:
        self.scan_progress = progress.percentage
        self.scan_phase = progress.phase

    def cancel(self) -> None:
        self.channel.cancel()

    def reset(self) -> None:
        self.scan_results = None
        self.scan_progress = 0.0
        self.scan_phase = ""
        self.error = None

    def _snapshot(self) -> dict:
        return {
            "scan_results": self.scan_results,
            "is_scanning": self.is_scanning,
            "scan_progress": self.scan_progress,
            "scan_phase": self.scan_phase,
            "error": self.error,
        }

    def _restore(self, snapshot: dict) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)
