# =============================================================================
# upp_core/ui/__init__.py
# Streamlit components for the offline layer
# =============================================================================

from .offline_indicator import (
    render_offline_indicator,
    render_notifications,
    event_message,
    format_last_sync,
    format_pending,
)

__all__ = [
    "render_offline_indicator",
    "render_notifications",
    "event_message",
    "format_last_sync",
    "format_pending",
]
