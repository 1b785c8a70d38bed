"""
Tests for the pending request table and its deadline reaper.
"""

import asyncio

import pytest

from teteatete.errors import TimedOut, TransportClosed
from teteatete.pending import PendingRequestTable

RECIPIENT = "ab" * 32


class TestPendingRequestTable:
    """Tests for registration, resolution and expiry."""

    @pytest.mark.asyncio
    async def test_resolve_completes_future(self):
        table = PendingRequestTable()
        entry = table.register("req-1", RECIPIENT, timeout=5)

        assert "req-1" in table
        assert table.resolve("req-1", "done")
        assert await entry.future == "done"
        assert "req-1" not in table

    @pytest.mark.asyncio
    async def test_second_completion_is_noop(self):
        table = PendingRequestTable()
        entry = table.register("req-1", RECIPIENT, timeout=5)

        assert table.resolve("req-1", "first")
        assert not table.resolve("req-1", "second")
        assert not table.reject("req-1", TimedOut(5))
        assert entry.future.result() == "first"

    @pytest.mark.asyncio
    async def test_unknown_id(self):
        table = PendingRequestTable()

        assert not table.resolve("missing", None)
        assert not table.reject("missing", TimedOut(1))
        assert table.get("missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_registration_rejected(self):
        table = PendingRequestTable()
        table.register("req-1", RECIPIENT, timeout=5)

        with pytest.raises(ValueError):
            table.register("req-1", RECIPIENT, timeout=5)

    @pytest.mark.asyncio
    async def test_expire_respects_deadline(self):
        table = PendingRequestTable()
        entry = table.register("req-1", RECIPIENT, timeout=10)

        assert table.expire(entry.deadline - 0.001) == 0
        assert "req-1" in table

        assert table.expire(entry.deadline) == 1
        assert isinstance(entry.future.exception(), TimedOut)
        assert "req-1" not in table

    @pytest.mark.asyncio
    async def test_reject_all(self):
        table = PendingRequestTable()
        entries = [table.register(f"req-{i}", RECIPIENT, timeout=10) for i in range(3)]

        assert table.reject_all(lambda: TransportClosed("closed")) == 3
        assert len(table) == 0
        for entry in entries:
            assert isinstance(entry.future.exception(), TransportClosed)

    @pytest.mark.asyncio
    async def test_discard_leaves_future_pending(self):
        table = PendingRequestTable()
        entry = table.register("req-1", RECIPIENT, timeout=10)

        table.discard("req-1")

        assert len(table) == 0
        assert not entry.future.done()

    @pytest.mark.asyncio
    async def test_next_deadline(self):
        table = PendingRequestTable()
        assert table.next_deadline() is None

        late = table.register("late", RECIPIENT, timeout=10)
        early = table.register("early", RECIPIENT, timeout=1)

        assert table.next_deadline() == early.deadline
        assert table.next_deadline() < late.deadline


class TestReaper:
    """Tests for the background expiry task."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(5)
    async def test_times_out_no_earlier_than_deadline(self):
        table = PendingRequestTable()
        table.start()
        try:
            loop = asyncio.get_running_loop()
            started = loop.time()
            entry = table.register("req-1", RECIPIENT, timeout=0.1)

            with pytest.raises(TimedOut) as exc_info:
                await entry.future

            assert loop.time() - started >= 0.1
            assert exc_info.value.timeout == 0.1
            assert "req-1" not in table
        finally:
            await table.stop()

    @pytest.mark.asyncio
    @pytest.mark.timeout(5)
    async def test_shorter_deadline_wakes_reaper(self):
        """A request registered after a long one still expires on time."""
        table = PendingRequestTable()
        table.start()
        try:
            long_entry = table.register("long", RECIPIENT, timeout=60)
            await asyncio.sleep(0.01)
            short_entry = table.register("short", RECIPIENT, timeout=0.05)

            with pytest.raises(TimedOut):
                await asyncio.wait_for(short_entry.future, timeout=1)
            assert not long_entry.done
        finally:
            await table.stop()

    @pytest.mark.asyncio
    async def test_resolved_before_deadline_is_not_expired(self):
        table = PendingRequestTable()
        table.start()
        try:
            entry = table.register("req-1", RECIPIENT, timeout=0.05)
            table.resolve("req-1", "ok")
            await asyncio.sleep(0.1)

            assert entry.future.result() == "ok"
        finally:
            await table.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        table = PendingRequestTable()
        await table.stop()
        table.start()
        await table.stop()
        await table.stop()
