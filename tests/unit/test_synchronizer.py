# =============================================================================
# tests/unit/test_synchronizer.py
# Unit Tests for the Synchronizer
# =============================================================================

import threading
import time
from datetime import datetime

import pytest

from upp_core.config import CriticalRead
from upp_core.offline import EventKind, LocalStore, PushHandler, SyncPhase, Synchronizer


@pytest.fixture
def synchronizer(store, backend, monitor, channel):
    sync = Synchronizer(store, backend, monitor, channel, sync_interval=60)
    yield sync
    sync.close()


def queue_three(queue):
    return [
        queue.enqueue("CREATE", "orders", {"id": "o-1", "client_name": "Ama"}),
        queue.enqueue("UPDATE", "orders", {"id": "o-1", "status": "printing"}),
        queue.enqueue("DELETE", "orders", {"id": "o-1"}),
    ]


class TestDrain:
    """Test FIFO replay of queued operations"""

    def test_replays_in_enqueue_order(self, synchronizer, queue, backend):
        ids = queue_three(queue)

        report = synchronizer.sync_all()

        assert report.success
        assert report.synced == 3
        assert report.remaining == 0
        assert backend.applied_ids == ids
        assert [call[0] for call in backend.calls] == ["CREATE", "UPDATE", "DELETE"]
        assert queue.count() == 0

    def test_stops_at_first_failure_and_resumes(self, synchronizer, queue, backend):
        ids = queue_three(queue)
        backend.fail_ids = {ids[1]}

        report = synchronizer.sync_all()

        assert not report.success
        assert report.synced == 1
        assert report.remaining == 2
        assert report.failed_operation == ids[1]
        assert backend.applied_ids == [ids[0]]
        assert [op.id for op in queue.pending()] == ids[1:]

        backend.fail_ids = set()
        retry = synchronizer.sync_all()

        assert retry.success
        assert backend.applied_ids == ids

    def test_failure_does_not_update_last_sync_time(self, synchronizer, queue, backend):
        ids = queue_three(queue)
        backend.fail_ids = {ids[0]}

        synchronizer.sync_all()

        assert synchronizer.last_sync_time is None

    def test_success_records_last_sync_time(self, synchronizer, store):
        before = datetime.now()

        synchronizer.sync_all()

        assert synchronizer.last_sync_time >= before
        assert store.get_setting("last_sync_time") is not None

    def test_empty_queue_is_a_successful_cycle(self, synchronizer):
        report = synchronizer.sync_all()

        assert report.success
        assert report.synced == 0

    def test_phase_returns_to_idle(self, synchronizer, queue, backend):
        ids = queue_three(queue)
        backend.fail_ids = {ids[2]}

        synchronizer.sync_all()

        assert synchronizer.phase == SyncPhase.IDLE


class TestUnreadableQueue:
    """Test cycles whose queue cannot be read cleanly"""

    def insert_corrupt_row(self, store, op_id="broken"):
        with store.transaction() as conn:
            conn.execute(
                "INSERT INTO sync_queue (op_id, operation, table_name, data_json, enqueued_at) "
                "VALUES (?, ?, ?, ?, ?)",
                [op_id, "CREATE", "orders", "{not json", datetime.now().isoformat()],
            )

    def test_corrupt_row_fails_the_cycle(self, synchronizer, queue, store, backend, channel):
        first = queue.enqueue("CREATE", "orders", {"id": "o-1", "client_name": "Ama"})
        self.insert_corrupt_row(store)
        queue.enqueue("CREATE", "orders", {"id": "o-2", "client_name": "Kofi"})
        events = channel.subscribe("test")
        refreshed = []
        synchronizer.register_refresh("offline_orders", lambda: refreshed.append(1) or [{"id": 1}])

        report = synchronizer.sync_all()

        assert not report.success
        assert report.synced == 1
        assert report.failed_operation == "broken"
        assert "Could not read sync queue" in report.error
        assert report.remaining == 2
        assert backend.applied_ids == [first]
        assert synchronizer.last_sync_time is None
        assert refreshed == []
        assert EventKind.SYNC_FAILED in [event.kind for event in events.drain()]

    def test_corrupt_row_at_head_is_reported(self, synchronizer, queue, store, backend):
        self.insert_corrupt_row(store)
        queue.enqueue("CREATE", "orders", {"client_name": "Ama"})

        report = synchronizer.sync_all()

        assert not report.success
        assert report.synced == 0
        assert backend.calls == []
        assert queue.count() == 2

    def test_degraded_store_is_not_a_successful_cycle(self, tmp_path, backend, monitor, channel):
        broken = LocalStore(tmp_path)
        sync = Synchronizer(broken, backend, monitor, channel)

        report = sync.sync_all()

        assert not report.success
        assert report.error is not None
        assert sync.last_sync_time is None
        sync.close()


class TestSkips:
    """Test cycles that do not run"""

    def test_offline_skips(self, synchronizer, queue, probe, backend):
        queue_three(queue)
        probe.online = False

        report = synchronizer.sync_all()

        assert report.skipped
        assert report.reason == "offline"
        assert backend.calls == []
        assert queue.count() == 3

    def test_no_backend_keeps_queue(self, store, monitor, channel, queue):
        queue_three(queue)
        sync = Synchronizer(store, None, monitor, channel)

        report = sync.sync_all()

        assert report.skipped
        assert report.reason == "no_backend"
        assert queue.count() == 3
        sync.close()

    def test_concurrent_sync_is_skipped(self, store, monitor, channel, queue, blocking_backend):
        queue.enqueue("CREATE", "orders", {"client_name": "Ama"})
        sync = Synchronizer(store, blocking_backend, monitor, channel)
        results = {}

        worker = threading.Thread(target=lambda: results.setdefault("first", sync.sync_all()))
        worker.start()
        assert blocking_backend.entered.wait(timeout=2)

        assert sync.is_syncing
        second = sync.sync_all()

        blocking_backend.release.set()
        worker.join(timeout=5)

        assert second.skipped
        assert second.reason == "in_progress"
        assert results["first"].synced == 1
        assert len(blocking_backend.calls) == 1
        assert not sync.is_syncing
        sync.close()


class TestRefresh:
    """Test critical reads refreshed after a successful drain"""

    def test_registered_reads_are_cached(self, synchronizer, backend, store):
        backend.tables["orders"] = [{"id": "o-1"}, {"id": "o-2"}]
        synchronizer.register_critical_reads([CriticalRead("orders", "offline_orders", limit=1)])

        report = synchronizer.sync_all()

        assert report.refreshed == ["offline_orders"]
        assert store.get("offline_orders") == [{"id": "o-1"}]

    def test_empty_result_keeps_cached_value(self, synchronizer, store):
        store.set("offline_orders", [{"id": "old"}])
        synchronizer.register_refresh("offline_orders", lambda: [])

        report = synchronizer.sync_all()

        assert report.refreshed == []
        assert store.get("offline_orders") == [{"id": "old"}]

    def test_failed_refresh_is_skipped(self, synchronizer, store):
        def broken():
            raise ConnectionError("down")

        synchronizer.register_refresh("offline_a", broken)
        synchronizer.register_refresh("offline_b", lambda: [{"id": 1}])

        report = synchronizer.sync_all()

        assert report.success
        assert report.refreshed == ["offline_b"]

    def test_no_refresh_after_failed_drain(self, synchronizer, queue, backend):
        ids = queue_three(queue)
        backend.fail_ids = {ids[0]}
        calls = []
        synchronizer.register_refresh("offline_orders", lambda: calls.append(1) or [{"id": 1}])

        synchronizer.sync_all()

        assert calls == []

    def test_register_refresh_replaces_existing_key(self, synchronizer):
        synchronizer.register_refresh("k", lambda: [1])
        synchronizer.register_refresh("k", lambda: [2])

        assert synchronizer.refresh_keys == ["k"]


class TestEvents:
    """Test channel-driven sync triggers"""

    def test_reconnect_triggers_exactly_one_sync(self, synchronizer, monitor, probe, queue, backend):
        monitor.check_connection()
        synchronizer.process_events()

        probe.online = False
        monitor.check_connection()
        queue_three(queue)

        probe.online = True
        monitor.check_connection()
        monitor.check_connection()
        reports = synchronizer.process_events()

        assert len(reports) == 1
        assert reports[0].trigger == EventKind.CONNECTIVITY_ONLINE.value
        assert reports[0].synced == 3
        assert synchronizer.process_events() == []

    def test_background_sync_tag_requests_sync(self, synchronizer, channel, queue):
        queue.enqueue("CREATE", "orders", {"client_name": "Ama"})

        assert PushHandler(channel).handle_background_sync("sync-offline-queue")
        reports = synchronizer.process_events()

        assert [r.synced for r in reports] == [1]

    def test_cycle_publishes_started_and_completed(self, synchronizer, channel, queue):
        sub = channel.subscribe("test", kinds=[EventKind.SYNC_STARTED, EventKind.SYNC_COMPLETED])
        queue.enqueue("CREATE", "orders", {"client_name": "Ama"})

        synchronizer.sync_all()

        events = sub.drain()
        assert [e.kind for e in events] == [EventKind.SYNC_STARTED, EventKind.SYNC_COMPLETED]
        assert events[1].payload["synced"] == 1

    def test_failed_cycle_publishes_failure(self, synchronizer, channel, queue, backend):
        sub = channel.subscribe("test", kinds=[EventKind.SYNC_FAILED])
        ids = queue_three(queue)
        backend.fail_ids = {ids[0]}

        synchronizer.sync_all()

        events = sub.drain()
        assert len(events) == 1
        assert events[0].payload["failed_operation"] == ids[0]

    def test_listener_thread_handles_reconnect(self, synchronizer, monitor, probe, queue, backend):
        probe.online = False
        monitor.check_connection()
        queue.enqueue("CREATE", "orders", {"client_name": "Ama"})
        synchronizer.start()

        probe.online = True
        monitor.check_connection()

        deadline = time.time() + 3
        while queue.count() and time.time() < deadline:
            time.sleep(0.02)
        synchronizer.stop()

        assert queue.count() == 0
        assert len(backend.calls) == 1

    def test_status_display(self, synchronizer):
        synchronizer.sync_all()

        status = synchronizer.get_status_display()

        assert status["phase"] == "idle"
        assert status["cycles"] == 1
        assert status["last_sync"] is not None
        assert status["pending_count"] == 0
