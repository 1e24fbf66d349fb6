# =============================================================================
# upp_core/offline/service.py
# OfflineService - the UI-facing façade
# =============================================================================
"""
OfflineService - the single API UI code uses for offline-aware data access.

Usage:
------
from upp_core.offline import OfflineContext, OfflineService

service = OfflineService(OfflineContext.create())

result = service.fetch_table("orders", order_by="created_at", limit=100)
df = result.to_dataframe()            # result.from_cache tells if it is stale

service.mutate("UPDATE", "orders", {"id": "o-1", "status": "done"})
print(f"{service.pending_count} changes pending sync")
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

import pandas as pd

from upp_core.errors import StorageQuotaError
from upp_core.offline.cache import FetchResult
from upp_core.offline.channel import ChannelEvent, EventKind
from upp_core.offline.context import OfflineContext
from upp_core.offline.local_store import OperationType, to_json_safe
from upp_core.offline.mutation_queue import coerce_operation_type
from upp_core.offline.synchronizer import SyncReport
from upp_core.services import BaseService, ServiceResult

QUEUE_FAILED_MESSAGE = "Changes may not be saved offline"
QUEUED_OFFLINE_MESSAGE = "Offline: change queued for sync."
QUEUED_AFTER_ERROR_MESSAGE = "Request queued for sync due to network error."
UI_NOTIFICATION_LIMIT = 100


class OfflineService(BaseService):
    """
    Façade over an OfflineContext.

    Operations: fetch_with_fallback, queue_operation, mutate, sync; status:
    is_online, pending_count, last_sync_time.

    One instance per browser session. close() (or dropping the instance)
    detaches its notification subscription from the shared channel.
    """

    UI_EVENT_KINDS = (
        EventKind.NOTIFICATION,
        EventKind.STORAGE_FAILURE,
        EventKind.SYNC_COMPLETED,
        EventKind.SYNC_FAILED,
        EventKind.CONNECTIVITY_ONLINE,
        EventKind.CONNECTIVITY_OFFLINE,
    )

    def __init__(self, context: OfflineContext):
        super().__init__()
        self.context = context
        self._ui_subscription = context.channel.subscribe(
            "ui", kinds=self.UI_EVENT_KINDS, maxsize=UI_NOTIFICATION_LIMIT
        )

    def close(self) -> None:
        """Stop receiving notifications for this session."""
        self._ui_subscription.close()

    # =========================================================================
    # STATUS
    # =========================================================================

    @property
    def is_online(self) -> bool:
        return self.context.monitor.is_online()

    @property
    def pending_count(self) -> int:
        return self.context.queue.count()

    @property
    def last_sync_time(self) -> Optional[datetime]:
        return self.context.synchronizer.last_sync_time

    @property
    def is_syncing(self) -> bool:
        return self.context.synchronizer.is_syncing

    @property
    def cache_enabled(self) -> bool:
        return self.context.store.available

    def is_stale(self, storage_key: str) -> bool:
        """True when the cached entry is missing or older than stale_after_seconds."""
        return self.context.store.is_stale(storage_key, self.context.settings.stale_after_seconds)

    def stale_keys(self) -> List[str]:
        return [key for key in self.context.store.keys() if self.is_stale(key)]

    # =========================================================================
    # READS
    # =========================================================================

    def fetch_with_fallback(self, remote_fetch_fn: Callable[[], Any], storage_key: str) -> FetchResult:
        """Remote read with cache fallback; see CacheAsideFetcher."""
        return self.context.fetcher.fetch_with_fallback(remote_fetch_fn, storage_key)

    def fetch_table(
        self,
        table: str,
        storage_key: Optional[str] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> FetchResult:
        """Select a whole table through the backend, cached under `offline_<table>`."""
        backend = self.context.backend
        key = storage_key or f"offline_{table}"
        if backend is None:
            return self.fetch_with_fallback(self._no_backend, key)
        return self.fetch_with_fallback(
            lambda: backend.select(table, order_by=order_by, limit=limit), key
        )

    @staticmethod
    def _no_backend():
        raise ConnectionError("No remote backend configured")

    # =========================================================================
    # WRITES
    # =========================================================================

    def queue_operation(
        self,
        op_type: Union[str, OperationType],
        table: str,
        data: Dict[str, Any],
    ) -> ServiceResult:
        """
        Queue a mutation for later replay.

        Returns:
            ServiceResult.ok(operation_id), or a failed result when the store
            could not persist the change. Malformed payloads raise.
        """
        op_id = self.context.queue.enqueue(op_type, table, data)
        if op_id is None:
            error = self.context.store.last_error
            code = error.code if error is not None else StorageQuotaError.default_code
            return ServiceResult.fail(QUEUE_FAILED_MESSAGE, error_code=code, metadata={"table": table})
        return ServiceResult.ok(op_id, metadata={"queued": True, "pending": self.pending_count})

    def mutate(
        self,
        op_type: Union[str, OperationType],
        table: str,
        data: Dict[str, Any],
    ) -> ServiceResult:
        """
        Apply a mutation remotely when possible, otherwise queue it.

        Returns:
            ok(remote result) with metadata queued=False when applied remotely;
            ok(operation id) with queued=True and a `message` when queued;
            a failed result when it could neither be applied nor queued.
        """
        op_type = coerce_operation_type(op_type)
        if isinstance(data, dict):
            data = to_json_safe(data)
        self.context.schemas.validate(op_type, table, data)

        backend = self.context.backend
        message = QUEUED_OFFLINE_MESSAGE
        if backend is not None and self.is_online:
            try:
                remote = backend.execute(op_type, table, data)
                return ServiceResult.ok(remote, metadata={"queued": False})
            except Exception as e:
                self.logger.error(f"{op_type.value} on {table} failed: {e}")
                message = QUEUED_AFTER_ERROR_MESSAGE

        result = self.queue_operation(op_type, table, data)
        if result:
            result.metadata["message"] = message
        return result

    # =========================================================================
    # SYNC
    # =========================================================================

    def sync(self) -> SyncReport:
        """Drain the queue now (no-op if offline or a sync is running)."""
        with self.log_operation("Manual sync"):
            return self.context.synchronizer.sync_all(trigger="manual")

    def request_sync(self) -> None:
        """Ask the background synchronizer to run a cycle."""
        self.context.channel.emit(EventKind.SYNC_REQUESTED, source="ui")

    # =========================================================================
    # UI HELPERS
    # =========================================================================

    def drain_notifications(self) -> List[ChannelEvent]:
        """Events the UI should surface since the last call."""
        return self._ui_subscription.drain()

    def pending_operations_frame(self) -> pd.DataFrame:
        """Queued operations as a DataFrame for display."""
        ops = self.context.queue.pending()
        columns = ["id", "type", "table", "enqueued_at"]
        if not ops:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame(
            [
                {"id": op.id, "type": op.type.value, "table": op.table, "enqueued_at": op.enqueued_at}
                for op in ops
            ],
            columns=columns,
        )

    def get_status_display(self) -> Dict[str, Any]:
        """Combined connection, queue and storage status."""
        last = self.last_sync_time
        return {
            "is_online": self.is_online,
            "is_syncing": self.is_syncing,
            "pending_count": self.pending_count,
            "last_sync": last.isoformat() if last else None,
            "cache_enabled": self.cache_enabled,
            "stale_keys": self.stale_keys(),
            "storage": self.context.store.storage_size(),
            "connection": self.context.monitor.get_status_display(),
        }
