# =============================================================================
# upp_core/offline/remote.py
# Remote backend adapters (Supabase)
# =============================================================================
"""
RemoteBackend - the opaque remote side of the offline layer.

Reads are `select(table, ...)`; mutations are create/update/delete with a row
payload. Any failure surfaces as RemoteOperationError, which is the only
signal the fetch wrapper and synchronizer react to.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging

from upp_core.errors import RemoteOperationError
from upp_core.offline.local_store import OperationType, QueuedOperation

logger = logging.getLogger(__name__)


class RemoteBackend(ABC):
    """Abstract remote data source/sink."""

    @abstractmethod
    def select(
        self,
        table: str,
        order_by: Optional[str] = None,
        ascending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch rows from a table."""

    @abstractmethod
    def create(self, table: str, data: Dict[str, Any]) -> Any:
        """Insert a row."""

    @abstractmethod
    def update(self, table: str, data: Dict[str, Any]) -> Any:
        """Update the row identified by data['id']."""

    @abstractmethod
    def delete(self, table: str, data: Dict[str, Any]) -> Any:
        """Delete the row identified by data['id']."""

    def execute(self, op_type: OperationType, table: str, data: Dict[str, Any]) -> Any:
        """Dispatch a mutation by type."""
        handlers = {
            OperationType.CREATE: self.create,
            OperationType.UPDATE: self.update,
            OperationType.DELETE: self.delete,
        }
        return handlers[op_type](table, data)

    def apply(self, op: QueuedOperation) -> Any:
        """Replay a queued operation against this backend."""
        return self.execute(op.type, op.table, op.data)


class SupabaseBackend(RemoteBackend):
    """
    Supabase implementation of RemoteBackend.

    Usage:
        backend = SupabaseBackend.from_credentials(url, key)
        rows = backend.select("orders", order_by="created_at", limit=100)
    """

    BATCH_SIZE = 1000  # Supabase caps a single select at 1000 rows

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_credentials(cls, url: str, key: str) -> SupabaseBackend:
        from supabase import create_client

        return cls(create_client(url, key))

    @classmethod
    def from_settings(cls, settings) -> Optional[SupabaseBackend]:
        """Build a backend from OfflineSettings; None when credentials are missing."""
        if not settings.has_backend:
            logger.warning("Supabase credentials not configured; remote backend disabled")
            return None
        try:
            return cls.from_credentials(settings.supabase_url, settings.supabase_key)
        except Exception as e:
            logger.error(f"Failed to initialize Supabase client: {e}")
            return None

    def select(
        self,
        table: str,
        order_by: Optional[str] = None,
        ascending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        try:
            if limit:
                query = self.client.table(table).select("*")
                if order_by:
                    query = query.order(order_by, desc=not ascending)
                return list(query.limit(limit).execute().data or [])

            all_data: List[Dict[str, Any]] = []
            offset = 0
            while True:
                query = self.client.table(table).select("*")
                if order_by:
                    query = query.order(order_by, desc=not ascending)
                response = query.range(offset, offset + self.BATCH_SIZE - 1).execute()
                batch = response.data or []
                all_data.extend(batch)
                if len(batch) < self.BATCH_SIZE:
                    break
                offset += self.BATCH_SIZE
            return all_data

        except Exception as e:
            raise RemoteOperationError(
                f"Error fetching data from {table}: {e}", table=table, operation="SELECT"
            ) from e

    def create(self, table: str, data: Dict[str, Any]) -> Any:
        try:
            return self.client.table(table).insert(data).execute().data
        except Exception as e:
            raise RemoteOperationError(
                f"Insert into {table} failed: {e}", table=table, operation="CREATE"
            ) from e

    def update(self, table: str, data: Dict[str, Any]) -> Any:
        changes = {k: v for k, v in data.items() if k != "id"}
        try:
            return self.client.table(table).update(changes).eq("id", data["id"]).execute().data
        except Exception as e:
            raise RemoteOperationError(
                f"Update on {table} failed: {e}", table=table, operation="UPDATE"
            ) from e

    def delete(self, table: str, data: Dict[str, Any]) -> Any:
        try:
            return self.client.table(table).delete().eq("id", data["id"]).execute().data
        except Exception as e:
            raise RemoteOperationError(
                f"Delete on {table} failed: {e}", table=table, operation="DELETE"
            ) from e
