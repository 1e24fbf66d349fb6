# =============================================================================
# upp_core/offline/connectivity.py
# Connection Status Detection and Monitoring
# =============================================================================
"""
ConnectivityMonitor - Detects online/offline state and announces transitions.

Features:
- Live check on every is_online() call (via a pluggable probe)
- Platform transition events via notify_online()/notify_offline()
- Periodic background re-check for platforms without reliable events
- Exactly one channel event per real transition
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Sequence, Tuple
from urllib.parse import urlparse
import logging

import requests

from upp_core.offline.channel import EventKind, NotificationChannel

logger = logging.getLogger(__name__)

Probe = Callable[[], bool]


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    forced_offline: bool = False
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    last_transition: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class NetworkProbe:
    """
    Default reachability probe.

    Internet is checked with a TCP connect to well-known DNS resolvers. When a
    Supabase URL is configured, its auth health endpoint must answer too.
    """

    HOSTS: Sequence[Tuple[str, int]] = (
        ("8.8.8.8", 53),        # Google DNS
        ("1.1.1.1", 53),        # Cloudflare DNS
        ("208.67.222.222", 53), # OpenDNS
    )

    def __init__(self, backend_url: Optional[str] = None, backend_key: Optional[str] = None, timeout: float = 5):
        self.backend_url = backend_url.rstrip("/") if backend_url else None
        self.backend_key = backend_key
        self.timeout = timeout
        self.last_error: Optional[str] = None

    def __call__(self) -> bool:
        if not self._check_internet():
            self.last_error = "No internet connectivity"
            return False
        if self.backend_url and not self._check_backend():
            return False
        self.last_error = None
        return True

    def _check_internet(self) -> bool:
        for host, port in self.HOSTS:
            try:
                with socket.create_connection((host, port), timeout=self.timeout):
                    return True
            except OSError:
                continue
        return False

    def _check_backend(self) -> bool:
        headers = {"apikey": self.backend_key} if self.backend_key else {}
        try:
            response = requests.get(
                f"{self.backend_url}/auth/v1/health",
                headers=headers,
                timeout=self.timeout,
            )
            # Any HTTP answer below 500 means the host is reachable
            return response.status_code < 500
        except requests.exceptions.RequestException as e:
            self.last_error = str(e)
            logger.debug(f"Backend check failed for {urlparse(self.backend_url).hostname}: {e}")
            return False


class ConnectivityMonitor:
    """
    Tracks online/offline status and publishes transitions on the channel.

    Usage:
        monitor = ConnectivityMonitor(channel, probe=NetworkProbe(url, key))
        monitor.start_monitoring()
        if monitor.is_online():
            ...
    """

    CHECK_INTERVAL = 10  # Seconds between background checks

    def __init__(
        self,
        channel: NotificationChannel,
        probe: Optional[Probe] = None,
        check_interval: Optional[float] = None,
    ):
        self.channel = channel
        self.probe = probe or NetworkProbe()
        self.check_interval = check_interval or self.CHECK_INTERVAL
        self._state = ConnectionState()
        self._state_lock = threading.Lock()
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    def is_online(self) -> bool:
        """Read the live signal and record any transition."""
        return self.check_connection() == ConnectionStatus.ONLINE

    def is_offline(self) -> bool:
        return not self.is_online()

    def check_connection(self) -> ConnectionStatus:
        """Run the probe once and update state."""
        if self._state.forced_offline:
            online = False
            error = "Forced offline"
        else:
            try:
                online = bool(self.probe())
                error = None if online else getattr(self.probe, "last_error", None) or "Probe reported offline"
            except Exception as e:
                logger.error(f"Error in connection probe: {e}")
                online = False
                error = str(e)

        return self._apply(online, error)

    def _apply(self, online: bool, error: Optional[str] = None) -> ConnectionStatus:
        new_status = ConnectionStatus.ONLINE if online else ConnectionStatus.OFFLINE
        now = datetime.now()

        with self._state_lock:
            old_status = self._state.status
            self._state.status = new_status
            self._state.last_check = now
            if online:
                self._state.last_online = now
                self._state.consecutive_failures = 0
                self._state.error_message = None
            else:
                self._state.consecutive_failures += 1
                self._state.error_message = error
            changed = old_status != new_status
            if changed:
                self._state.last_transition = now

        # UNKNOWN -> OFFLINE is silent; UNKNOWN -> ONLINE is announced (startup drain)
        if changed and not (old_status == ConnectionStatus.UNKNOWN and not online):
            logger.info(f"Connection status changed: {old_status.value} -> {new_status.value}")
            self.channel.emit(
                EventKind.CONNECTIVITY_ONLINE if online else EventKind.CONNECTIVITY_OFFLINE,
                source="connectivity",
                previous=old_status.value,
            )
        return new_status

    # =========================================================================
    # PLATFORM EVENTS
    # =========================================================================

    def notify_online(self) -> None:
        """Platform reported connectivity restored."""
        if self._state.forced_offline:
            return
        self._apply(True)

    def notify_offline(self) -> None:
        """Platform reported connectivity lost."""
        self._apply(False, "Platform reported offline")

    def force_offline(self, enabled: bool = True) -> None:
        """Force offline mode (user preference or tests)."""
        self._state.forced_offline = enabled
        if enabled:
            self._apply(False, "Forced offline")
            logger.info("Forced offline mode")
        else:
            logger.info("Forced offline mode cleared")
            self.check_connection()

    # =========================================================================
    # BACKGROUND MONITORING
    # =========================================================================

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectivityMonitor",
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
        self._monitor_thread = None
        logger.debug("Connection monitoring stopped")

    @property
    def monitoring(self) -> bool:
        return self._monitor_thread is not None and self._monitor_thread.is_alive()

    def _monitoring_loop(self) -> None:
        while not self._stop_monitoring.is_set():
            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

            if self._stop_monitoring.wait(timeout=self.check_interval):
                break

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        state = self._state
        return {
            "status": state.status.value,
            "is_online": state.status == ConnectionStatus.ONLINE,
            "forced_offline": state.forced_offline,
            "last_check": state.last_check.isoformat() if state.last_check else None,
            "last_online": state.last_online.isoformat() if state.last_online else None,
            "failures": state.consecutive_failures,
            "error": state.error_message,
        }
