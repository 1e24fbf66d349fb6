# =============================================================================
# upp_core/offline/cache.py
# Cache-aside fetch wrapper
# =============================================================================

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Optional
import logging

import pandas as pd

from upp_core.offline.connectivity import ConnectivityMonitor
from upp_core.offline.local_store import LocalStore

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """
    Data returned by fetch_with_fallback.

    `data is None and from_cache` means nothing is available offline.
    """
    data: Any
    from_cache: bool

    @property
    def available(self) -> bool:
        return self.data is not None

    def to_dataframe(self) -> pd.DataFrame:
        """Row lists (or a single row dict) as a DataFrame; empty when no data."""
        if self.data is None:
            return pd.DataFrame()
        if isinstance(self.data, pd.DataFrame):
            return self.data
        if isinstance(self.data, dict):
            return pd.DataFrame([self.data])
        return pd.DataFrame(list(self.data))


class CacheAsideFetcher:
    """
    Wraps remote reads, storing every success and serving the last stored
    value when the remote call fails or the client is offline. Never retries.
    """

    def __init__(self, store: LocalStore, monitor: Optional[ConnectivityMonitor] = None):
        self.store = store
        self.monitor = monitor

    def fetch_with_fallback(self, remote_fetch_fn: Callable[[], Any], storage_key: str) -> FetchResult:
        """
        Args:
            remote_fetch_fn: Zero-argument remote read
            storage_key: Cache key for the result

        Returns:
            FetchResult(data, from_cache)
        """
        if self.monitor is not None and not self.monitor.is_online():
            logger.debug(f"Offline, serving {storage_key} from cache")
            return self._from_cache(storage_key)

        try:
            data = remote_fetch_fn()
        except Exception as e:
            logger.warning(f"Fetch failed for {storage_key}, using cache: {e}")
            return self._from_cache(storage_key)

        result = self.store.set(storage_key, data)
        if not result:
            logger.warning(f"Could not cache {storage_key}: {result.error}")
        return FetchResult(data=data, from_cache=False)

    def _from_cache(self, storage_key: str) -> FetchResult:
        cached = self.store.get(storage_key)
        if cached is None:
            logger.info(f"No offline data available for {storage_key}")
        return FetchResult(data=cached, from_cache=True)
