"""Tests for the consumer-side scan store."""

import asyncio

import pytest

from cleanmeter.errors import ConflictError, ScanCancelledError
from cleanmeter.models.scan import ScanCategory, ScanSummary
from cleanmeter.progress import ProgressChannel, ScanStore


def make_producer(size, gate=None, error=None):
    async def producer(report):
        report({"percentage": 25, "phase": "Scanning caches"})
        report({"percentage": 75, "phase": "Scanning logs"})
        if gate is not None:
            await gate.wait()
        if error is not None:
            raise error
        return ScanSummary.from_categories([
            ScanCategory(id="cache", type="cache", name="Caches", size=size, item_count=1),
        ])

    return producer


@pytest.fixture
def scan_store():
    return ScanStore(ProgressChannel(scope="user-1"))


class TestScanStore:
    """Test scan state transitions."""

    @pytest.mark.asyncio
    async def test_completed_scan(self, scan_store):
        phases = []
        original = scan_store.set_scan_progress

        def record(progress):
            original(progress)
            phases.append((scan_store.is_scanning, scan_store.scan_phase))

        scan_store.set_scan_progress = record

        results = await scan_store.start_scan(make_producer(100))

        assert results.total_space == 100
        assert scan_store.scan_results is results
        assert scan_store.scan_progress == 100.0
        assert scan_store.scan_phase == "Complete"
        assert not scan_store.is_scanning
        assert phases == [(True, "Scanning caches"), (True, "Scanning logs")]

    @pytest.mark.asyncio
    async def test_failed_scan_records_error(self, scan_store):
        await scan_store.start_scan(make_producer(100))

        results = await scan_store.start_scan(make_producer(5, error=OSError("permission denied")))

        assert results is None
        assert scan_store.error == "permission denied"
        assert not scan_store.is_scanning
        # Previous results survive a failed rescan
        assert scan_store.scan_results.total_space == 100

    @pytest.mark.asyncio
    async def test_cancelled_scan_restores_previous_state(self, scan_store):
        await scan_store.start_scan(make_producer(100))
        gate = asyncio.Event()
        task = asyncio.create_task(scan_store.start_scan(make_producer(5, gate=gate)))
        while scan_store.scan_progress < 75:
            await asyncio.sleep(0)
        assert scan_store.is_scanning

        scan_store.cancel()

        with pytest.raises(ScanCancelledError):
            await task
        assert not scan_store.is_scanning
        assert scan_store.scan_progress == 100.0
        assert scan_store.scan_phase == "Complete"
        assert scan_store.scan_results.total_space == 100

    @pytest.mark.asyncio
    async def test_summary_after_cancel_is_not_committed(self, scan_store):
        await scan_store.start_scan(make_producer(100))
        started = asyncio.Event()

        async def producer(report):
            report({"percentage": 40, "phase": "Scanning caches"})
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                return ScanSummary(total_space=7)

        task = asyncio.create_task(scan_store.start_scan(producer))
        await started.wait()

        scan_store.cancel()

        with pytest.raises(ScanCancelledError):
            await task
        assert scan_store.scan_results.total_space == 100
        assert scan_store.scan_phase == "Complete"
        assert not scan_store.is_scanning

    @pytest.mark.asyncio
    async def test_on_progress_sees_applied_state(self, scan_store):
        seen = []

        def on_progress(progress):
            seen.append((progress.percentage, scan_store.scan_progress, scan_store.scan_phase))

        await scan_store.start_scan(make_producer(100), on_progress)

        assert seen == [
            (25.0, 25.0, "Scanning caches"),
            (75.0, 75.0, "Scanning logs"),
        ]

    @pytest.mark.asyncio
    async def test_async_on_progress(self, scan_store):
        phases = []

        async def on_progress(progress):
            await asyncio.sleep(0)
            phases.append(progress.phase)

        results = await scan_store.start_scan(make_producer(100), on_progress=on_progress)

        assert phases == ["Scanning caches", "Scanning logs"]
        assert results.total_space == 100

    @pytest.mark.asyncio
    async def test_conflicting_scan_leaves_running_state(self, scan_store):
        gate = asyncio.Event()
        task = asyncio.create_task(scan_store.start_scan(make_producer(5, gate=gate)))
        while not scan_store.channel.is_running:
            await asyncio.sleep(0)
        other = ScanStore(scan_store.channel)

        with pytest.raises(ConflictError):
            await other.start_scan(make_producer(7))

        assert not other.is_scanning
        gate.set()
        assert (await task).total_space == 5

    def test_reset(self, scan_store):
        scan_store.scan_progress = 40.0
        scan_store.error = "boom"

        scan_store.reset()

        assert scan_store.scan_results is None
        assert scan_store.scan_progress == 0.0
        assert scan_store.error is None
