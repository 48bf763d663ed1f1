"""Tests for the scan progress channel."""

import asyncio

import pytest

from cleanmeter.errors import ConflictError, ScanCancelledError
from cleanmeter.models.scan import ScanCategory, ScanProgress, ScanSummary
from cleanmeter.progress import LocalScanLock, ProgressChannel, ScanState


def summary():
    return ScanSummary.from_categories([
        ScanCategory(id="cache", type="cache", name="Caches", size=2048, item_count=3),
    ])


class FakeScan:
    """Producer that reports scripted progress, optionally pausing on a gate."""

    def __init__(self, percentages=(10, 50, 100), gate=None, error=None):
        self.percentages = percentages
        self.gate = gate
        self.error = error
        self.started = asyncio.Event()
        self.cancelled = False

    async def __call__(self, report):
        self.started.set()
        try:
            for pct in self.percentages:
                report({"percentage": pct, "phase": f"phase {pct}"})
                await asyncio.sleep(0)
            if self.gate is not None:
                await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return summary()


@pytest.fixture
def channel():
    return ProgressChannel(scope="user-1")


class TestProgressDelivery:
    """Test event ordering and completion."""

    @pytest.mark.asyncio
    async def test_events_arrive_in_order(self, channel):
        received = []

        result = await channel.start(FakeScan(), received.append)

        assert [p.percentage for p in received] == [10, 50, 100]
        assert all(isinstance(p, ScanProgress) for p in received)
        assert result.total_space == 2048
        assert channel.state == ScanState.COMPLETED
        assert not channel.has_listener

    @pytest.mark.asyncio
    async def test_async_callback(self, channel):
        received = []

        async def on_progress(progress):
            await asyncio.sleep(0)
            received.append(progress.phase)

        await channel.start(FakeScan(percentages=(5, 95)), on_progress)

        assert received == ["phase 5", "phase 95"]

    @pytest.mark.asyncio
    async def test_no_callback(self, channel):
        result = await channel.start(FakeScan())

        assert result.item_count == 3

    @pytest.mark.asyncio
    async def test_out_of_order_events_are_dropped(self, channel):
        received = []

        await channel.start(FakeScan(percentages=(10, 40, 30, 40, 80)), received.append)

        assert [p.percentage for p in received] == [10, 40, 40, 80]

    @pytest.mark.asyncio
    async def test_events_session(self, channel):
        async with channel.events(FakeScan()) as session:
            assert channel.is_running
            assert channel.has_listener
            seen = [progress.percentage async for progress in session]
            result = await session.result()

        assert seen == [10, 50, 100]
        assert result.breakdown["cache"].name == "Caches"
        assert channel.state == ScanState.COMPLETED

    @pytest.mark.asyncio
    async def test_channel_is_reusable(self, channel):
        await channel.start(FakeScan())
        received = []

        await channel.start(FakeScan(percentages=(1,)), received.append)

        assert [p.percentage for p in received] == [1]

    @pytest.mark.asyncio
    async def test_failed_run_leaves_no_listener_for_next_run(self, channel):
        with pytest.raises(OSError):
            await channel.start(FakeScan(percentages=(10, 60), error=OSError("disk gone")))
        assert not channel.has_listener
        received = []

        result = await channel.start(FakeScan(percentages=(5, 100)), received.append)

        assert [p.percentage for p in received] == [5, 100]
        assert [p.phase for p in received] == ["phase 5", "phase 100"]
        assert result.total_space == 2048
        assert channel.state == ScanState.COMPLETED
        assert not channel.has_listener


class TestFailures:
    """Test producer and consumer failures."""

    @pytest.mark.asyncio
    async def test_producer_error_propagates(self, channel):
        with pytest.raises(OSError, match="disk gone"):
            await channel.start(FakeScan(error=OSError("disk gone")))

        assert channel.state == ScanState.FAILED
        assert isinstance(channel.last_error, OSError)
        assert not channel.lock.is_held("user-1")

    @pytest.mark.asyncio
    async def test_callback_error_stops_producer(self, channel):
        gate = asyncio.Event()
        scan = FakeScan(percentages=(10,), gate=gate)

        def on_progress(progress):
            raise ValueError("render failed")

        with pytest.raises(ValueError):
            await channel.start(scan, on_progress)

        assert scan.cancelled
        assert channel.state == ScanState.FAILED
        assert not channel.has_listener


class TestCancellation:
    """Test cancelling a running scan."""

    @pytest.mark.asyncio
    async def test_cancel_stops_producer(self, channel):
        gate = asyncio.Event()
        scan = FakeScan(percentages=(10,), gate=gate)
        task = asyncio.create_task(channel.start(scan))
        await scan.started.wait()

        channel.cancel()

        with pytest.raises(ScanCancelledError):
            await task
        assert scan.cancelled
        assert channel.state == ScanState.CANCELLED
        assert not channel.lock.is_held("user-1")

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, channel):
        gate = asyncio.Event()
        scan = FakeScan(percentages=(), gate=gate)
        task = asyncio.create_task(channel.start(scan))
        await scan.started.wait()

        channel.cancel()
        channel.cancel()

        with pytest.raises(ScanCancelledError):
            await task
        channel.cancel()
        assert channel.state == ScanState.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_without_run(self, channel):
        channel.cancel()

        assert channel.state == ScanState.IDLE

    @pytest.mark.asyncio
    async def test_cancel_from_callback(self, channel):
        gate = asyncio.Event()
        scan = FakeScan(percentages=(10, 20), gate=gate)
        received = []

        def on_progress(progress):
            received.append(progress.percentage)
            channel.cancel()

        with pytest.raises(ScanCancelledError):
            await channel.start(scan, on_progress)

        assert received[0] == 10
        assert channel.state == ScanState.CANCELLED

    @pytest.mark.asyncio
    async def test_summary_returned_after_cancel_is_discarded(self, channel):
        started = asyncio.Event()

        async def producer(report):
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                return ScanSummary(total_space=7)

        task = asyncio.create_task(channel.start(producer))
        await started.wait()

        channel.cancel()

        with pytest.raises(ScanCancelledError):
            await task
        assert channel.state == ScanState.CANCELLED
        assert not channel.lock.is_held("user-1")

    @pytest.mark.asyncio
    async def test_leaving_session_early_cancels(self, channel):
        gate = asyncio.Event()
        scan = FakeScan(percentages=(10,), gate=gate)

        async with channel.events(scan) as session:
            async for progress in session:
                break

        assert scan.cancelled
        assert channel.state == ScanState.CANCELLED
        assert not channel.lock.is_held("user-1")

    @pytest.mark.asyncio
    async def test_no_events_after_cancel(self, channel):
        gate = asyncio.Event()
        reports = []

        async def producer(report):
            reports.append(report)
            await gate.wait()
            return summary()

        task = asyncio.create_task(channel.start(producer))
        while not reports:
            await asyncio.sleep(0)
        channel.cancel()
        with pytest.raises(ScanCancelledError):
            await task

        # A late report from a producer that ignored cancellation goes nowhere
        reports[0]({"percentage": 99, "phase": "late"})
        assert channel.state == ScanState.CANCELLED


class TestConflicts:
    """Test concurrent starts."""

    @pytest.mark.asyncio
    async def test_second_start_conflicts(self, channel):
        gate = asyncio.Event()
        scan = FakeScan(percentages=(10,), gate=gate)
        task = asyncio.create_task(channel.start(scan))
        await scan.started.wait()

        with pytest.raises(ConflictError):
            await channel.start(FakeScan())

        gate.set()
        result = await task
        assert result.total_space == 2048
        assert channel.state == ScanState.COMPLETED

    @pytest.mark.asyncio
    async def test_shared_lock_guards_scope_across_channels(self):
        lock = LocalScanLock()
        first = ProgressChannel(scope="user-1", lock=lock)
        second = ProgressChannel(scope="user-1", lock=lock)
        other_scope = ProgressChannel(scope="user-2", lock=lock)
        gate = asyncio.Event()
        scan = FakeScan(percentages=(), gate=gate)
        task = asyncio.create_task(first.start(scan))
        await scan.started.wait()

        with pytest.raises(ConflictError):
            await second.start(FakeScan())
        assert second.state == ScanState.IDLE

        await other_scope.start(FakeScan())
        gate.set()
        await task
        assert not lock.is_held("user-1")
