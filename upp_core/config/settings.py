"""
Configuration for the offline cache and synchronization layer.

Settings come from three places, later ones winning:
  1. Dataclass defaults below
  2. `.streamlit/secrets.toml` ([supabase] url/key, optional [offline] table)
  3. Environment variables (SUPABASE_URL, SUPABASE_KEY, UPP_*)
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import toml

from upp_core.errors import ConfigurationError
from upp_core.logging import get_logger

logger = get_logger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent.parent
DEFAULT_SECRETS_PATH = PROJECT_ROOT / ".streamlit" / "secrets.toml"
DEFAULT_DB_PATH = PROJECT_ROOT / "local_data" / "upp_offline.db"


@dataclass(frozen=True)
class CriticalRead:
    """A remote table refreshed into the cache after every successful sync."""
    table: str
    storage_key: str
    order_by: Optional[str] = None
    limit: Optional[int] = None


DEFAULT_CRITICAL_READS: List[CriticalRead] = [
    CriticalRead("orders", "offline_orders", order_by="created_at", limit=100),
    CriticalRead("expenses", "offline_expenses", order_by="created_at", limit=100),
    CriticalRead("profiles", "offline_profiles"),
    CriticalRead("products", "offline_products"),
    CriticalRead("invoices", "offline_invoices", order_by="created_at", limit=50),
]


@dataclass
class OfflineSettings:
    """Configuration for the offline layer."""

    # ==================== STORAGE ====================
    db_path: Path = DEFAULT_DB_PATH
    max_store_bytes: Optional[int] = None   # None = no quota beyond the disk
    stale_after_seconds: int = 3600         # OfflineService.is_stale(); never evicts

    # ==================== TIMERS (seconds) ====================
    connectivity_check_interval: float = 10
    sync_interval: float = 300
    connection_timeout: float = 5

    # ==================== BACKEND ====================
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    critical_reads: List[CriticalRead] = field(
        default_factory=lambda: list(DEFAULT_CRITICAL_READS)
    )

    def __post_init__(self):
        self.db_path = Path(self.db_path)
        self.validate()

    @property
    def has_backend(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def validate(self) -> None:
        """Raise ConfigurationError for values the layer cannot work with."""
        for name in ("connectivity_check_interval", "sync_interval", "connection_timeout"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(
                    f"{name} must be a positive number, got {value!r}",
                    config_key=name,
                    expected_type="positive number",
                )
        if self.max_store_bytes is not None and (
            not isinstance(self.max_store_bytes, int) or self.max_store_bytes <= 0
        ):
            raise ConfigurationError(
                f"max_store_bytes must be a positive integer, got {self.max_store_bytes!r}",
                config_key="max_store_bytes",
                expected_type="positive int",
            )
        if self.stale_after_seconds <= 0:
            raise ConfigurationError(
                "stale_after_seconds must be positive",
                config_key="stale_after_seconds",
                expected_type="positive int",
            )

    def with_overrides(self, **overrides: Any) -> OfflineSettings:
        return replace(self, **overrides)


# Environment variable -> (setting name, parser)
ENV_OVERRIDES = {
    "SUPABASE_URL": ("supabase_url", str),
    "SUPABASE_KEY": ("supabase_key", str),
    "UPP_OFFLINE_DB": ("db_path", Path),
    "UPP_SYNC_INTERVAL": ("sync_interval", float),
    "UPP_CONNECTIVITY_INTERVAL": ("connectivity_check_interval", float),
    "UPP_CONNECTION_TIMEOUT": ("connection_timeout", float),
    "UPP_MAX_STORE_BYTES": ("max_store_bytes", int),
}


def _read_secrets(secrets_path: Path) -> Dict[str, Any]:
    if not secrets_path.exists():
        logger.debug(f"No secrets file at {secrets_path}")
        return {}
    try:
        return toml.load(secrets_path)
    except (toml.TomlDecodeError, OSError) as e:
        raise ConfigurationError(
            f"Could not read secrets file: {e}",
            config_key=str(secrets_path),
        ) from e


def _values_from_secrets(secrets: Mapping[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}

    supabase = secrets.get("supabase", {})
    if "url" in supabase:
        values["supabase_url"] = supabase["url"]
    if "key" in supabase:
        values["supabase_key"] = supabase["key"]

    known = {f.name for f in fields(OfflineSettings)}
    for key, value in secrets.get("offline", {}).items():
        if key == "critical_reads":
            values[key] = [CriticalRead(**entry) for entry in value]
        elif key in known:
            values[key] = value
        else:
            logger.warning(f"Ignoring unknown [offline] setting: {key}")

    return values


def _values_from_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for env_name, (setting, parser) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            values[setting] = parser(raw)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid value for {env_name}: {raw!r}",
                config_key=env_name,
                expected_type=parser.__name__,
            ) from e
    return values


def load_settings(
    secrets_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> OfflineSettings:
    """
    Build OfflineSettings from secrets.toml and the environment.

    Args:
        secrets_path: Path to secrets.toml (default: .streamlit/secrets.toml)
        environ: Environment mapping (default: os.environ)
        **overrides: Explicit values, applied last

    Returns:
        Validated OfflineSettings
    """
    values = _values_from_secrets(_read_secrets(Path(secrets_path or DEFAULT_SECRETS_PATH)))
    values.update(_values_from_env(os.environ if environ is None else environ))
    values.update(overrides)

    try:
        settings = OfflineSettings(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid offline settings: {e}") from e

    logger.debug(
        f"Offline settings loaded: db={settings.db_path}, backend={'yes' if settings.has_backend else 'no'}"
    )
    return settings
