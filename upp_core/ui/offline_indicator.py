# =============================================================================
# upp_core/ui/offline_indicator.py - Sidebar Offline Status & Sync Controls
# =============================================================================
"""
Sidebar widgets that surface the offline layer: connection badge, pending
change count, last sync time, a manual sync button and toasts for channel
notifications. Call render_offline_indicator() once per page run.
"""
from __future__ import annotations
from datetime import datetime
from typing import Optional

import streamlit as st

from upp_core.errors import ErrorContext, safe_execute
from upp_core.offline import ChannelEvent, EventKind, OfflineService


def _badge(color: str, icon: str, title: str, subtitle: str) -> str:
    return f"""
    <div style='
        margin: 0.5rem 0;
        padding: 0.75rem;
        border-radius: 10px;
        background: rgba({color}, 0.1);
        border: 1px solid rgba({color}, 0.25);
    '>
        <div style='display: flex; align-items: center; gap: 0.5rem;'>
            <span style='font-size: 1rem;'>{icon}</span>
            <span style='color: rgb({color}); font-size: 0.8rem; font-weight: 600;'>{title}</span>
        </div>
        <div style='color: #94a3b8; font-size: 0.75rem; margin-top: 0.5rem;'>{subtitle}</div>
    </div>
    """


def format_last_sync(last_sync: Optional[datetime]) -> str:
    if last_sync is None:
        return "Never synced"
    return f"Last sync {last_sync.strftime('%Y-%m-%d %H:%M')}"


def format_pending(count: int) -> str:
    if count == 0:
        return "All changes synced"
    return f"{count} change{'s' if count != 1 else ''} pending sync"


def event_message(event: ChannelEvent) -> Optional[str]:
    """Toast text for a channel event, or None when it should stay silent."""
    payload = event.payload
    if event.kind == EventKind.NOTIFICATION:
        return f"{payload.get('title')}: {payload.get('body')}"
    if event.kind == EventKind.STORAGE_FAILURE:
        return payload.get("message") or "Changes may not be saved offline"
    if event.kind == EventKind.SYNC_COMPLETED and payload.get("synced"):
        return f"Synced {payload['synced']} offline change(s)"
    if event.kind == EventKind.SYNC_FAILED:
        return f"Sync stopped: {payload.get('remaining', 0)} change(s) still pending"
    if event.kind == EventKind.CONNECTIVITY_OFFLINE:
        return "You are offline. Changes will be queued."
    if event.kind == EventKind.CONNECTIVITY_ONLINE:
        return "Back online"
    return None


def render_notifications(service: OfflineService) -> None:
    for event in service.drain_notifications():
        message = event_message(event)
        if message:
            st.toast(message)


def render_offline_indicator(service: OfflineService, show_queue: bool = False) -> None:
    """
    Renders connection and sync status in the sidebar.

    Args:
        service: OfflineService for this session
        show_queue: Also list pending operations in an expander
    """
    status = service.get_status_display()
    pending = status["pending_count"]

    if status["is_online"]:
        st.sidebar.markdown(
            _badge("34, 197, 94", "🟢", "Online", format_pending(pending)),
            unsafe_allow_html=True,
        )
    else:
        st.sidebar.markdown(
            _badge("234, 179, 8", "🟡", "Offline Mode", format_pending(pending)),
            unsafe_allow_html=True,
        )

    if not status["cache_enabled"]:
        st.sidebar.warning("Offline cache unavailable. Data will not be kept offline.")

    stale = status.get("stale_keys") or []
    if stale:
        st.sidebar.caption(f"{len(stale)} cached dataset(s) may be out of date")

    st.sidebar.caption(format_last_sync(service.last_sync_time))

    sync_disabled = status["is_syncing"] or not status["is_online"] or pending == 0
    if st.sidebar.button("🔄 Sync Now", use_container_width=True, disabled=sync_disabled, key="offline_sync_btn"):
        with ErrorContext("Syncing pending changes"):
            report = service.sync()
            if report.skipped:
                st.sidebar.info(f"Sync skipped ({report.reason})")
            elif report.success:
                st.sidebar.success(f"Synced {report.synced} change(s)")
            else:
                st.sidebar.error(f"Sync stopped: {report.error}")

    if show_queue and pending:
        frame = safe_execute(
            service.pending_operations_frame,
            default=None,
            error_message="Could not read pending changes",
        )
        if frame is not None:
            with st.sidebar.expander("Pending changes"):
                st.dataframe(frame, use_container_width=True, hide_index=True)

    render_notifications(service)
