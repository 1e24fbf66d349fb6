# =============================================================================
# upp_core/offline/synchronizer.py
# Drains the mutation queue and refreshes cached reads
# =============================================================================
"""
Synchronizer - replays queued mutations against the remote backend.

Per cycle:
    IDLE -> DRAINING -> SUCCESS -> REFRESHING -> IDLE
                     -> PARTIAL_FAILURE -> IDLE

- The drain is strictly FIFO and sequential. The first failed operation stops
  it; that operation and everything behind it stay queued for the next cycle.
- Only one cycle runs at a time. A sync requested while a cycle is running
  returns a skipped report immediately (it is not queued).
- Cycles are triggered by CONNECTIVITY_ONLINE / SYNC_REQUESTED channel events,
  by the periodic timer, or directly by callers.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
import logging

from upp_core.config.settings import CriticalRead
from upp_core.logging import LogContext
from upp_core.offline.channel import ChannelEvent, EventKind, NotificationChannel
from upp_core.offline.connectivity import ConnectivityMonitor
from upp_core.offline.local_store import LocalStore
from upp_core.offline.remote import RemoteBackend

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "last_sync_time"


class SyncPhase(Enum):
    """Synchronizer state within a cycle."""
    IDLE = "idle"
    DRAINING = "draining"
    SUCCESS = "success"
    REFRESHING = "refreshing"
    PARTIAL_FAILURE = "partial_failure"


@dataclass
class SyncReport:
    """Outcome of one sync_all() call."""
    trigger: str
    skipped: bool = False
    reason: Optional[str] = None
    synced: int = 0
    remaining: int = 0
    failed_operation: Optional[str] = None
    error: Optional[str] = None
    refreshed: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return not self.skipped and self.failed_operation is None and self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger": self.trigger,
            "skipped": self.skipped,
            "reason": self.reason,
            "synced": self.synced,
            "remaining": self.remaining,
            "failed_operation": self.failed_operation,
            "error": self.error,
            "refreshed": list(self.refreshed),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class RefreshTask:
    """A read re-run after every successful drain to repopulate the cache."""
    storage_key: str
    fetch: Callable[[], Any]


class Synchronizer:
    """
    Drains the mutation queue when online and keeps critical reads fresh.

    Usage:
        sync = Synchronizer(store, backend, monitor, channel)
        sync.register_critical_reads(settings.critical_reads)
        sync.start()          # reconnect listener + periodic refresh
        report = sync.sync_all()
    """

    SYNC_INTERVAL = 300         # Seconds between periodic full refreshes
    EVENT_POLL_TIMEOUT = 0.5    # Listener wake-up interval when idle

    def __init__(
        self,
        store: LocalStore,
        backend: Optional[RemoteBackend],
        monitor: Optional[ConnectivityMonitor],
        channel: NotificationChannel,
        sync_interval: Optional[float] = None,
    ):
        self.store = store
        self.backend = backend
        self.monitor = monitor
        self.channel = channel
        self.sync_interval = sync_interval or self.SYNC_INTERVAL

        self.phase = SyncPhase.IDLE
        self.last_report: Optional[SyncReport] = None
        self.cycles = 0
        self.total_synced = 0

        self._refresh_tasks: List[RefreshTask] = []
        self._drain_lock = threading.Lock()
        self._stop = threading.Event()
        self._listener_thread: Optional[threading.Thread] = None
        self._timer_thread: Optional[threading.Thread] = None
        self._subscription = channel.subscribe(
            "synchronizer",
            kinds=[EventKind.CONNECTIVITY_ONLINE, EventKind.SYNC_REQUESTED],
        )

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_syncing(self) -> bool:
        return self._drain_lock.locked()

    @property
    def last_sync_time(self) -> Optional[datetime]:
        raw = self.store.get_setting(LAST_SYNC_KEY)
        return datetime.fromisoformat(raw) if raw else None

    @property
    def refresh_keys(self) -> List[str]:
        return [task.storage_key for task in self._refresh_tasks]

    # =========================================================================
    # REFRESH REGISTRY
    # =========================================================================

    def register_refresh(self, storage_key: str, fetch_fn: Callable[[], Any]) -> None:
        """Register (or replace) a read re-run after every successful drain."""
        self._refresh_tasks = [t for t in self._refresh_tasks if t.storage_key != storage_key]
        self._refresh_tasks.append(RefreshTask(storage_key, fetch_fn))

    def register_critical_reads(self, reads: Iterable[CriticalRead]) -> None:
        """Register backend selects for the given tables."""
        if self.backend is None:
            return
        for read in reads:
            self.register_refresh(
                read.storage_key,
                lambda read=read: self.backend.select(read.table, order_by=read.order_by, limit=read.limit),
            )

    # =========================================================================
    # SYNC CYCLE
    # =========================================================================

    def sync_all(self, trigger: str = "manual") -> SyncReport:
        """
        Run one sync cycle.

        Returns:
            SyncReport; `skipped` is set when a cycle was already running,
            the client is offline, or no backend is configured.
        """
        if not self._drain_lock.acquire(blocking=False):
            logger.debug(f"Sync already in progress; {trigger} request skipped")
            return self._skipped(trigger, "in_progress")

        try:
            if self.backend is None:
                return self._skipped(trigger, "no_backend")
            if self.monitor is not None and not self.monitor.is_online():
                logger.info("Cannot sync - offline")
                return self._skipped(trigger, "offline")
            return self._run_cycle(trigger)
        finally:
            self.phase = SyncPhase.IDLE
            self._drain_lock.release()

    def _skipped(self, trigger: str, reason: str) -> SyncReport:
        return SyncReport(trigger=trigger, skipped=True, reason=reason, finished_at=datetime.now())

    def _set_phase(self, phase: SyncPhase) -> None:
        logger.debug(f"Sync phase: {self.phase.value} -> {phase.value}")
        self.phase = phase

    def _run_cycle(self, trigger: str) -> SyncReport:
        report = SyncReport(trigger=trigger)
        self.cycles += 1
        self.channel.emit(EventKind.SYNC_STARTED, source="synchronizer", trigger=trigger)

        with LogContext(logger, f"Sync cycle ({trigger})"):
            self._set_phase(SyncPhase.DRAINING)
            self._drain(report)

            if report.failed_operation is not None or report.error is not None:
                self._set_phase(SyncPhase.PARTIAL_FAILURE)
                report.remaining = self.store.count_ops()
                report.finished_at = datetime.now()
                logger.warning(
                    f"Sync halted: {report.synced} synced, {report.remaining} still pending ({report.error})"
                )
                self.channel.emit(EventKind.SYNC_FAILED, source="synchronizer", **report.to_dict())
                self._finish(report)
                return report

            self._set_phase(SyncPhase.SUCCESS)
            self._set_phase(SyncPhase.REFRESHING)
            self._refresh(report)

            now = datetime.now()
            self.store.set_setting(LAST_SYNC_KEY, now.isoformat())
            report.remaining = self.store.count_ops()
            report.finished_at = now

        logger.info(f"Sync complete: {report.synced} operation(s), {len(report.refreshed)} read(s) refreshed")
        self.channel.emit(EventKind.SYNC_COMPLETED, source="synchronizer", **report.to_dict())
        self._finish(report)
        return report

    def _finish(self, report: SyncReport) -> None:
        self.total_synced += report.synced
        self.last_report = report
        if report.synced:
            self.channel.emit(EventKind.QUEUE_CHANGED, source="synchronizer", pending=report.remaining)

    def _drain(self, report: SyncReport) -> None:
        queued = self.store.read_queue()
        pending = queued.value or []
        if pending:
            logger.info(f"Syncing {len(pending)} queued operation(s)")

        for op in pending:
            try:
                self.backend.apply(op)
            except Exception as e:
                logger.error(f"Failed to sync {op.type.value} on {op.table} ({op.id}): {e}")
                report.failed_operation = op.id
                report.error = str(e)
                return

            removed = self.store.remove_op(op.id)
            if not removed:
                # Replayed but still queued: stop so it is not replayed behind later ops
                report.failed_operation = op.id
                report.error = f"Could not remove synced operation: {removed.error}"
                return

            report.synced += 1
            logger.debug(f"Synced {op.type.value} on {op.table}")

        if not queued:
            # Unreadable queue or row: everything from that point stays queued
            error = queued.error
            report.failed_operation = error.details.get("key") if error is not None else None
            report.error = f"Could not read sync queue: {error}"

    def _refresh(self, report: SyncReport) -> None:
        for task in list(self._refresh_tasks):
            try:
                data = task.fetch()
            except Exception as e:
                logger.warning(f"Could not refresh {task.storage_key}: {e}")
                continue

            if data is None or (hasattr(data, "__len__") and len(data) == 0):
                logger.debug(f"Skipping empty refresh for {task.storage_key}")
                continue

            if self.store.set(task.storage_key, data):
                report.refreshed.append(task.storage_key)

    # =========================================================================
    # EVENT HANDLING & BACKGROUND THREADS
    # =========================================================================

    def handle_event(self, event: ChannelEvent) -> Optional[SyncReport]:
        if event.kind in (EventKind.CONNECTIVITY_ONLINE, EventKind.SYNC_REQUESTED):
            if event.kind == EventKind.CONNECTIVITY_ONLINE:
                logger.info("Connection restored, triggering sync")
            return self.sync_all(trigger=event.kind.value)
        return None

    def process_events(self) -> List[SyncReport]:
        """Handle every pending channel event on the calling thread."""
        reports = []
        for event in self._subscription.drain():
            report = self.handle_event(event)
            if report is not None:
                reports.append(report)
        return reports

    def start(self) -> None:
        """Start the reconnect listener and the periodic refresh timer."""
        if self.running:
            return

        self._stop.clear()
        self._listener_thread = threading.Thread(
            target=self._listen_loop, daemon=True, name="SyncListener"
        )
        self._timer_thread = threading.Thread(
            target=self._timer_loop, daemon=True, name="SyncTimer"
        )
        self._listener_thread.start()
        self._timer_thread.start()
        logger.info("Synchronizer started")

    def stop(self) -> None:
        """Stop background threads. An in-flight cycle runs to completion first."""
        self._stop.set()
        for thread in (self._listener_thread, self._timer_thread):
            if thread is not None:
                thread.join(timeout=10)
        self._listener_thread = None
        self._timer_thread = None
        logger.info("Synchronizer stopped")

    def close(self) -> None:
        self.stop()
        self._subscription.close()

    @property
    def running(self) -> bool:
        return self._listener_thread is not None and self._listener_thread.is_alive()

    def _listen_loop(self) -> None:
        while not self._stop.is_set():
            event = self._subscription.get(timeout=self.EVENT_POLL_TIMEOUT)
            if event is None:
                continue
            try:
                self.handle_event(event)
            except Exception as e:
                logger.error(f"Sync error: {e}", exc_info=True)

    def _timer_loop(self) -> None:
        while not self._stop.wait(timeout=self.sync_interval):
            try:
                self.sync_all(trigger="periodic")
            except Exception as e:
                logger.error(f"Sync error: {e}", exc_info=True)

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        last = self.last_sync_time
        return {
            "phase": self.phase.value,
            "is_syncing": self.is_syncing,
            "pending_count": self.store.count_ops(),
            "last_sync": last.isoformat() if last else None,
            "cycles": self.cycles,
            "total_synced": self.total_synced,
            "last_report": self.last_report.to_dict() if self.last_report else None,
        }
