# =============================================================================
# upp_core/offline/context.py
# Explicitly constructed wiring of the offline components
# =============================================================================

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import logging

from upp_core.config import OfflineSettings, load_settings
from upp_core.offline.cache import CacheAsideFetcher
from upp_core.offline.channel import NotificationChannel
from upp_core.offline.connectivity import ConnectivityMonitor, NetworkProbe, Probe
from upp_core.offline.local_store import LocalStore
from upp_core.offline.mutation_queue import MutationQueue
from upp_core.offline.payloads import SchemaRegistry
from upp_core.offline.push import PushHandler
from upp_core.offline.remote import RemoteBackend, SupabaseBackend
from upp_core.offline.synchronizer import Synchronizer

logger = logging.getLogger(__name__)


@dataclass
class OfflineContext:
    """
    Every offline component, built once and passed by reference.

    Nothing here is a process-wide singleton: each context owns its own store
    connection, channel and threads. The Streamlit app keeps one per process
    through st.cache_resource; tests build one per test.
    """
    settings: OfflineSettings
    channel: NotificationChannel
    store: LocalStore
    monitor: ConnectivityMonitor
    queue: MutationQueue
    fetcher: CacheAsideFetcher
    synchronizer: Synchronizer
    push: PushHandler
    schemas: SchemaRegistry
    backend: Optional[RemoteBackend] = None

    @classmethod
    def create(
        cls,
        settings: Optional[OfflineSettings] = None,
        backend: Optional[RemoteBackend] = None,
        probe: Optional[Probe] = None,
        channel: Optional[NotificationChannel] = None,
        schemas: Optional[SchemaRegistry] = None,
    ) -> OfflineContext:
        """
        Build and initialize a context.

        Args:
            settings: Offline settings (default: load_settings())
            backend: Remote backend (default: Supabase from settings, if configured)
            probe: Connectivity probe (default: NetworkProbe for the backend host)
            channel: Notification channel (default: a new one)
            schemas: Payload schemas (default: a registry of the built-in tables)
        """
        settings = settings or load_settings()
        channel = channel or NotificationChannel()
        schemas = schemas or SchemaRegistry()

        store = LocalStore(settings.db_path, max_store_bytes=settings.max_store_bytes)
        if not store.initialize():
            logger.warning("Offline cache disabled: reads will always go remote")

        if backend is None:
            backend = SupabaseBackend.from_settings(settings)

        monitor = ConnectivityMonitor(
            channel,
            probe=probe or NetworkProbe(
                settings.supabase_url, settings.supabase_key, timeout=settings.connection_timeout
            ),
            check_interval=settings.connectivity_check_interval,
        )

        synchronizer = Synchronizer(
            store, backend, monitor, channel, sync_interval=settings.sync_interval
        )
        synchronizer.register_critical_reads(settings.critical_reads)

        context = cls(
            settings=settings,
            channel=channel,
            store=store,
            monitor=monitor,
            queue=MutationQueue(store, channel, schemas),
            fetcher=CacheAsideFetcher(store, monitor),
            synchronizer=synchronizer,
            push=PushHandler(channel),
            schemas=schemas,
            backend=backend,
        )
        logger.info(f"Offline context ready (store={settings.db_path}, backend={'yes' if backend else 'no'})")
        return context

    def start(self) -> None:
        """Start connectivity monitoring and background sync."""
        self.monitor.start_monitoring()
        self.synchronizer.start()

    def shutdown(self) -> None:
        """Stop background threads and close the store."""
        self.synchronizer.close()
        self.monitor.stop_monitoring()
        self.store.close()
        logger.info("Offline context shut down")
