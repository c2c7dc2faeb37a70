"""Admin notification feed."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from . import datastore as ds

logger = logging.getLogger(__name__)

FEED_SIZE = 10


class NotificationFeed:
    """Newest-first window over the most recent notifications.

    Seeded from the store, then kept current by :meth:`apply_insert` as new
    rows arrive. Events missed while nothing was listening only show up on
    the next :meth:`load`.
    """

    def __init__(self, items: Optional[Iterable[Dict[str, Any]]] = None, size: int = FEED_SIZE):
        self.size = size
        self.items: List[Dict[str, Any]] = list(items or [])[:size]

    @classmethod
    def load(cls, size: int = FEED_SIZE) -> "NotificationFeed":
        return cls(ds.recent_notifications(size), size=size)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.items if not n.get("read"))

    def apply_insert(self, notification: Dict[str, Any]) -> None:
        """Prepend a row delivered by the live insert subscription.

        Called by the admin front end for each pushed notification; the HTTP
        routes only ever load a fresh feed. Repeated deliveries are ignored.
        """
        if any(n.get("id") == notification.get("id") for n in self.items):
            return
        self.items = [notification] + self.items[: self.size - 1]

    def mark_read(self, notification_id: Any) -> bool:
        """Mark one notification read in the store and the feed."""
        ds.mark_notifications_read([notification_id])
        changed = False
        for n in self.items:
            if str(n.get("id")) == str(notification_id) and not n.get("read"):
                n["read"] = True
                changed = True
        return changed

    def mark_all_read(self) -> int:
        unread = [n.get("id") for n in self.items if not n.get("read")]
        if not unread:
            return 0
        ds.mark_notifications_read(unread)
        for n in self.items:
            n["read"] = True
        return len(unread)

    def to_dict(self) -> Dict[str, Any]:
        return {"notifications": list(self.items), "unread_count": self.unread_count}


def create_signup_notification(profile: Dict[str, Any]) -> Dict[str, Any]:
    name = profile.get("full_name") or profile.get("email")
    message = f"New user signed up: {name}"
    logger.info("admin_notification type=signup user=%s", profile.get("id"))
    return ds.insert_notification(
        "new_user",
        message,
        user_id=profile.get("id"),
        user_email=profile.get("email"),
        user_name=profile.get("full_name"),
    )
