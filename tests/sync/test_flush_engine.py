"""Tests for gated queue flushing."""

import asyncio

import pytest

from boqsync.config import BoqSyncConfig
from boqsync.error_handling import StorageError
from boqsync.models import EntityKind, new_submission
from boqsync.storage.queue import SubmissionQueue
from boqsync.sync.flush import FlushEngine


def make_engine(config, store, client, cache, credentials, clock):
    return FlushEngine(config, store, client, cache, credentials, clock=clock)


@pytest.fixture
def engine(config, store, client, cache, credentials, clock):
    return make_engine(config, store, client, cache, credentials, clock)


def queue_shops(store, *names):
    entries = [new_submission(EntityKind.SHOP, {"name": name}) for name in names]
    for entry in entries:
        store.enqueue(entry)
    return entries


class TestDrain:
    """Test what a pass delivers and what it keeps."""

    @pytest.mark.asyncio
    async def test_partial_success_keeps_failures_in_order(self, engine, store, server):
        entries = queue_shops(store, "Shop 0", "Shop 1", "Shop 2", "Shop 3")
        server.failing_names = {"Shop 1", "Shop 3"}

        outcome = await engine.maybe_flush()

        assert outcome.ran is True
        assert outcome.delivered == 2
        assert outcome.retained == 2
        assert store.pending(EntityKind.SHOP) == (entries[1], entries[3])

    @pytest.mark.asyncio
    async def test_shops_are_sent_before_materials(self, engine, store, server):
        store.enqueue(new_submission(EntityKind.MATERIAL, {"name": "Cement"}))
        queue_shops(store, "Acme Hardware")

        await engine.maybe_flush()

        creates = [call for call in server.calls if call[0] == "POST"]
        assert creates == [("POST", "/shops"), ("POST", "/materials")]
        assert store.is_empty

    @pytest.mark.asyncio
    async def test_delivery_refreshes_pending_list(self, engine, store, cache):
        queue_shops(store, "Acme Hardware")

        await engine.maybe_flush()

        assert [e.name for e in cache.pending_shops] == ["Acme Hardware"]
        assert cache.pending_shops[0].entity_id.startswith("srv-")

    @pytest.mark.asyncio
    async def test_total_failure_keeps_everything(self, engine, store, server):
        entries = queue_shops(store, "Acme Hardware", "Bolt Depot")
        server.offline = True

        outcome = await engine.maybe_flush()

        assert outcome.ran is True
        assert outcome.delivered == 0
        assert store.pending(EntityKind.SHOP) == tuple(entries)


class TestGate:
    """Test the cooldown, attempt ceiling and credential checks."""

    @pytest.mark.asyncio
    async def test_second_trigger_within_cooldown_is_skipped(self, engine, store, server, clock):
        queue_shops(store, "Acme Hardware")
        server.error_status = 500

        first = await engine.maybe_flush()
        calls_after_first = len(server.calls)
        clock.advance(4.9)
        second = await engine.maybe_flush()

        assert first.ran is True
        assert second.ran is False
        assert second.skipped_reason == "cooldown"
        assert len(server.calls) == calls_after_first
        assert engine.session.attempt_count == 1

        clock.advance(0.1)
        third = await engine.maybe_flush()
        assert third.ran is True
        assert server.calls_to("POST", "/shops") == 2

    @pytest.mark.asyncio
    async def test_attempt_ceiling_stops_network_calls(
        self, tmp_path, client, cache, credentials, clock, server,
    ):
        config = BoqSyncConfig(
            api_base_url="http://testserver/api",
            data_dir=tmp_path / "ceiling",
            flush_max_attempts=3,
        )
        store = SubmissionQueue(config)
        engine = make_engine(config, store, client, cache, credentials, clock)
        queue_shops(store, "Acme Hardware")
        server.offline = True

        for _ in range(3):
            assert (await engine.maybe_flush()).ran is True
            clock.advance(60)

        calls = len(server.calls)
        outcome = await engine.maybe_flush()

        assert outcome.ran is False
        assert outcome.skipped_reason == "attempt ceiling reached"
        assert len(server.calls) == calls
        assert store.count() == 1

    @pytest.mark.asyncio
    async def test_missing_credential_does_not_burn_attempt(self, engine, store, server, credentials):
        queue_shops(store, "Acme Hardware")
        credentials.token = None

        outcome = await engine.maybe_flush()

        assert outcome.skipped_reason == "no credential"
        assert engine.session.attempt_count == 0
        assert engine.session.last_flush_time is None
        assert server.calls == []

    @pytest.mark.asyncio
    async def test_empty_queue_does_not_burn_attempt(self, engine, server):
        outcome = await engine.maybe_flush()

        assert outcome.skipped_reason == "queue empty"
        assert engine.session.attempt_count == 0
        assert server.calls == []

    @pytest.mark.asyncio
    async def test_attempt_sets_last_flush_time(self, engine, store, clock):
        queue_shops(store, "Acme Hardware")

        await engine.maybe_flush()

        assert engine.session.last_flush_time == clock.now
        assert engine.get_session_info()["attempt_count"] == 1


class TestConcurrency:
    """Test flushes against concurrent triggers and queue changes."""

    @pytest.mark.asyncio
    async def test_trigger_during_flush_is_a_no_op(self, engine, store, server):
        queue_shops(store, "Acme Hardware")
        server.hold = asyncio.Event()

        task = asyncio.create_task(engine.maybe_flush())
        await server.received.wait()
        assert engine.in_flight is True

        overlapping = await engine.maybe_flush()
        server.hold.set()
        outcome = await task

        assert overlapping.skipped_reason == "in flight"
        assert outcome.delivered == 1
        assert engine.in_flight is False
        assert server.calls_to("POST", "/shops") == 1

    @pytest.mark.asyncio
    async def test_entry_queued_during_flush_is_kept(self, engine, store, server):
        queue_shops(store, "Acme Hardware")
        server.hold = asyncio.Event()

        task = asyncio.create_task(engine.maybe_flush())
        await server.received.wait()
        late = new_submission(EntityKind.SHOP, {"name": "Late Shop"})
        store.enqueue(late)
        server.hold.set()
        outcome = await task

        assert outcome.delivered == 1
        assert store.pending(EntityKind.SHOP) == (late,)

    @pytest.mark.asyncio
    async def test_entry_discarded_during_flush_is_not_sent(self, engine, store, server):
        _, second = queue_shops(store, "Acme Hardware", "Bolt Depot")
        server.hold = asyncio.Event()

        task = asyncio.create_task(engine.maybe_flush())
        await server.received.wait()
        store.discard(second.local_id)
        server.hold.set()
        outcome = await task

        assert outcome.delivered == 1
        assert server.calls_to("POST", "/shops") == 1
        assert store.is_empty

    @pytest.mark.asyncio
    async def test_cancelled_flush_keeps_only_undelivered_entries(
        self, engine, store, server, config,
    ):
        _, second = queue_shops(store, "Acme Hardware", "Bolt Depot")
        server.held_names = {"Bolt Depot"}

        task = asyncio.create_task(engine.maybe_flush())
        await server.held.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        delivered = [r["name"] for r in server.records["shops"].values()]
        assert delivered == ["Acme Hardware"]
        assert store.pending(EntityKind.SHOP) == (second,)
        assert SubmissionQueue(config).pending(EntityKind.SHOP) == (second,)
        assert engine.in_flight is False

    @pytest.mark.asyncio
    async def test_in_flight_flag_clears_after_storage_failure(self, engine, store, monkeypatch):
        queue_shops(store, "Acme Hardware")

        def broken_replace(kind, retained):
            raise StorageError("disk full")

        monkeypatch.setattr(store, "replace", broken_replace)

        with pytest.raises(StorageError):
            await engine.maybe_flush()

        assert engine.in_flight is False
