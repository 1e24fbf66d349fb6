# =============================================================================
# upp_core/offline/push.py
# Push message and background-sync handling
# =============================================================================
"""
Push deliveries and background-sync tags arrive from the platform; this module
turns them into channel events. A NOTIFICATION event is displayed by the UI, a
SYNC_REQUESTED event wakes the synchronizer.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
import logging

from upp_core.offline.channel import EventKind, NotificationChannel

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Universal Printing Press"
DEFAULT_BODY = "You have a new notification"
DEFAULT_TAG = "upp-notification"
BACKGROUND_SYNC_TAG = "sync-offline-queue"


@dataclass
class PushNotification:
    """A displayable notification decoded from a push payload."""
    title: str = DEFAULT_TITLE
    body: str = DEFAULT_BODY
    tag: str = DEFAULT_TAG
    url: str = "/"
    notification_id: Optional[str] = None
    badge_count: Optional[int] = None
    actions: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "tag": self.tag,
            "url": self.url,
            "notification_id": self.notification_id,
            "badge_count": self.badge_count,
            "actions": list(self.actions),
        }


def _parse_badge(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-numeric badge count: {value!r}")
        return None


def parse_push_message(raw: Union[str, bytes, Dict[str, Any], None]) -> PushNotification:
    """
    Decode a push payload.

    JSON objects map onto PushNotification fields; anything else that is not
    JSON becomes the body of a "New Notification".
    """
    if raw is None:
        return PushNotification()

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except ValueError:
            return PushNotification(title="New Notification", body=raw)
        if not isinstance(data, dict):
            return PushNotification(title="New Notification", body=str(data))
    else:
        data = raw

    nested = data.get("data") if isinstance(data.get("data"), dict) else {}
    badge = data.get("badgeCount", data.get("badge_count"))

    return PushNotification(
        title=data.get("title") or DEFAULT_TITLE,
        body=data.get("body") or DEFAULT_BODY,
        tag=data.get("tag") or DEFAULT_TAG,
        url=data.get("url") or nested.get("url") or "/",
        notification_id=data.get("id") or nested.get("notificationId"),
        badge_count=_parse_badge(badge),
        actions=list(data.get("actions") or []),
    )


class PushHandler:
    """Publishes push deliveries and background-sync requests on the channel."""

    def __init__(self, channel: NotificationChannel):
        self.channel = channel

    def handle_push(self, raw: Union[str, bytes, Dict[str, Any], None]) -> PushNotification:
        notification = parse_push_message(raw)
        logger.info(f"Push received: {notification.title}")
        self.channel.emit(EventKind.NOTIFICATION, source="push", **notification.to_dict())
        return notification

    def handle_background_sync(self, tag: str) -> bool:
        """Request a sync for the offline-queue tag. Returns True if handled."""
        if tag != BACKGROUND_SYNC_TAG:
            logger.debug(f"Ignoring background sync tag: {tag}")
            return False
        logger.info(f"Background sync: {tag}")
        self.channel.emit(EventKind.SYNC_REQUESTED, source="push", tag=tag)
        return True

    def show_notification(self, title: str, body: str = DEFAULT_BODY, url: str = "/") -> PushNotification:
        """Publish a locally generated notification (e.g. 'Sync complete')."""
        notification = PushNotification(title=title, body=body, url=url)
        self.channel.emit(EventKind.NOTIFICATION, source="local", **notification.to_dict())
        return notification
