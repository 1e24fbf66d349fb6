# =============================================================================
# tests/integration/test_offline_roundtrip.py
# Integration Tests for the full offline -> online cycle
# =============================================================================

import time

import pytest

from upp_core.config import CriticalRead, OfflineSettings
from upp_core.offline import EventKind, OfflineContext, OfflineService


@pytest.fixture
def live_context(tmp_path, backend, probe):
    """Context with background threads running and one critical read"""
    settings = OfflineSettings(
        db_path=tmp_path / "live.db",
        connectivity_check_interval=0.05,
        sync_interval=60,
        critical_reads=[CriticalRead("orders", "offline_orders", order_by="created_at")],
    )
    context = OfflineContext.create(settings, backend=backend, probe=probe)
    yield context
    context.shutdown()


def wait_for(condition, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if condition():
            return True
        time.sleep(0.02)
    return condition()


class TestOfflineRoundTrip:
    """Test a session that loses and regains connectivity"""

    def test_queued_writes_replay_after_reconnect(self, live_context, backend, probe):
        backend.tables["orders"] = [{"id": "o-1", "client_name": "Ama", "status": "new"}]
        service = OfflineService(live_context)

        # Warm the cache while online
        first = service.fetch_table("orders")
        assert not first.from_cache

        live_context.start()
        probe.online = False
        assert wait_for(lambda: live_context.monitor.status.value == "offline")

        # Reads come from cache, writes are queued
        cached = service.fetch_table("orders")
        assert cached.from_cache
        assert cached.data == [{"id": "o-1", "client_name": "Ama", "status": "new"}]

        service.mutate("UPDATE", "orders", {"id": "o-1", "status": "printing"})
        service.mutate("CREATE", "orders", {"id": "o-2", "client_name": "Kofi"})
        assert service.pending_count == 2
        assert backend.calls == []

        # Reconnect: the monitor thread notices, the synchronizer drains
        probe.online = True
        assert wait_for(lambda: service.pending_count == 0)

        assert [call[0] for call in backend.calls] == ["UPDATE", "CREATE"]
        statuses = {row["id"]: row.get("status") for row in backend.tables["orders"]}
        assert statuses["o-1"] == "printing"

        # The critical read is refreshed with the post-sync rows
        assert wait_for(
            lambda: {row["id"] for row in live_context.store.get("offline_orders") or []} == {"o-1", "o-2"}
        )
        assert service.last_sync_time is not None

    def test_partial_failure_keeps_tail_for_next_cycle(self, live_context, backend, probe):
        service = OfflineService(live_context)
        probe.online = False

        ids = [
            service.mutate("CREATE", "orders", {"id": f"o-{n}", "client_name": f"Client {n}"}).data
            for n in range(3)
        ]
        backend.fail_ids = {ids[1]}
        probe.online = True

        report = service.sync()
        assert report.synced == 1
        assert [op.id for op in live_context.queue.pending()] == ids[1:]

        backend.fail_ids = set()
        report = service.sync()
        assert report.synced == 2
        assert backend.applied_ids == ids

    def test_ui_sees_sync_notifications(self, live_context, probe):
        service = OfflineService(live_context)
        probe.online = False
        service.mutate("CREATE", "orders", {"client_name": "Ama"})
        service.drain_notifications()

        probe.online = True
        service.sync()

        kinds = [event.kind for event in service.drain_notifications()]
        assert EventKind.SYNC_COMPLETED in kinds

    def test_queue_survives_restart(self, tmp_path, backend, probe):
        settings = OfflineSettings(db_path=tmp_path / "restart.db", critical_reads=[])
        probe.online = False

        first = OfflineContext.create(settings, backend=backend, probe=probe)
        OfflineService(first).mutate("CREATE", "orders", {"client_name": "Ama"})
        first.shutdown()

        second = OfflineContext.create(settings, backend=backend, probe=probe)
        service = OfflineService(second)
        assert service.pending_count == 1

        probe.online = True
        assert service.sync().synced == 1
        second.shutdown()
