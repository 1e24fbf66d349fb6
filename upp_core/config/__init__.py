from .settings import (
    OfflineSettings,
    CriticalRead,
    DEFAULT_CRITICAL_READS,
    load_settings,
)

__all__ = [
    "OfflineSettings",
    "CriticalRead",
    "DEFAULT_CRITICAL_READS",
    "load_settings",
]
