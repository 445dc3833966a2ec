"""
Notification Module

Derived, never-persisted notices shown to staff. Read state is tracked
outside by notification id and merged in on display.
"""

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Iterable, List, Set


class NotificationSeverity(Enum):
    """Severity levels, lowest first"""
    INFO = "info"
    WARNING = "warning"
    ALERT = "alert"


@dataclass(frozen=True)
class Notification:
    """Point-in-time notice about an account"""
    id: str
    title: str
    message: str
    severity: NotificationSeverity
    date: date
    read: bool = False

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.severity.value,
            "date": self.date.isoformat(),
            "read": self.read,
        }


def merge_read_state(notifications: Iterable[Notification], read_ids: Set[str]) -> List[Notification]:
    """Mark notifications whose id has been read"""
    return [
        replace(n, read=True) if n.id in read_ids and not n.read else n
        for n in notifications
    ]


def sort_notifications(notifications: Iterable[Notification]) -> List[Notification]:
    """
    Display order: unread before read; within the same read state, alerts
    first, then newest date first.
    """
    return sorted(
        notifications,
        key=lambda n: (
            n.read,
            n.severity != NotificationSeverity.ALERT,
            -n.date.toordinal(),
        ),
    )
