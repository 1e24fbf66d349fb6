# =============================================================================
# upp_core/offline/__init__.py
# Offline-First Data Cache and Sync Queue
# =============================================================================
"""
Offline-First Module

Lets the dashboard keep working against cached records when the network is
gone, and replays queued writes once it is back.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                         OfflineService                           │
│        fetch_with_fallback · queue_operation · mutate · sync     │
└─────────────────────────────────────────────────────────────────┘
             │                    │                     │
             ▼                    ▼                     ▼
   ┌──────────────────┐  ┌──────────────────┐  ┌──────────────────┐
   │ CacheAsideFetcher│  │  MutationQueue   │  │   Synchronizer   │
   └──────────────────┘  └──────────────────┘  └──────────────────┘
             │                    │                │         │
             ▼                    ▼                ▼         ▼
   ┌──────────────────────────────────────┐  ┌──────────────────┐
   │        LocalStore (SQLite)           │  │ RemoteBackend    │
   │  cache_entries · sync_queue · meta   │  │ (Supabase)       │
   └──────────────────────────────────────┘  └──────────────────┘

   ConnectivityMonitor ──► NotificationChannel ──► Synchronizer / UI
   PushHandler ─────────►

Usage:
------
from upp_core.offline import OfflineContext, OfflineService

context = OfflineContext.create()
context.start()
service = OfflineService(context)

result = service.fetch_table("orders")
print(service.is_online, service.pending_count, service.last_sync_time)
"""

from upp_core.offline.channel import (
    ChannelEvent,
    EventKind,
    NotificationChannel,
    Subscription,
)

from upp_core.offline.local_store import (
    CachedEntry,
    LocalStore,
    OperationType,
    QueuedOperation,
    StoreResult,
)

from upp_core.offline.connectivity import (
    ConnectionStatus,
    ConnectivityMonitor,
    NetworkProbe,
)

from upp_core.offline.cache import (
    CacheAsideFetcher,
    FetchResult,
)

from upp_core.offline.payloads import (
    TableSchema,
    SchemaRegistry,
    validate_payload,
)

from upp_core.offline.mutation_queue import MutationQueue

from upp_core.offline.remote import (
    RemoteBackend,
    SupabaseBackend,
)

from upp_core.offline.synchronizer import (
    SyncPhase,
    SyncReport,
    Synchronizer,
)

from upp_core.offline.push import (
    PushHandler,
    PushNotification,
    parse_push_message,
)

from upp_core.offline.context import OfflineContext
from upp_core.offline.service import OfflineService

__all__ = [
    # Channel
    "ChannelEvent",
    "EventKind",
    "NotificationChannel",
    "Subscription",
    # Local store
    "CachedEntry",
    "LocalStore",
    "OperationType",
    "QueuedOperation",
    "StoreResult",
    # Connectivity
    "ConnectionStatus",
    "ConnectivityMonitor",
    "NetworkProbe",
    # Cache-aside reads
    "CacheAsideFetcher",
    "FetchResult",
    # Mutation queue
    "TableSchema",
    "SchemaRegistry",
    "validate_payload",
    "MutationQueue",
    # Remote
    "RemoteBackend",
    "SupabaseBackend",
    # Sync
    "SyncPhase",
    "SyncReport",
    "Synchronizer",
    # Push
    "PushHandler",
    "PushNotification",
    "parse_push_message",
    # Wiring / façade (main API)
    "OfflineContext",
    "OfflineService",
]
