"""
Notification Queue Module

Decides what to tell whom and whether: renders kind-specific messages for a
task, suppresses repeats of the same (task, kind) inside the dedup window and
queues the rest. Delivery is a separate concern handled by channel providers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Any, Union, TYPE_CHECKING
import logging
import uuid

import requests

from .clock import Clock, SystemClock
from .errors import NotFoundError, TaskflowError
from .storage import StorageInterface, StorageRecord, parse_datetime
from .templates import coerce_enum

if TYPE_CHECKING:
    from .assignment import EmployeeDirectory
    from .tasks import Task


logger = logging.getLogger("taskflow.notifications")


class NotificationKind(Enum):
    """Message kinds"""
    TASK_ASSIGNED = "task_assigned"
    REMINDER_50 = "reminder_50"
    REMINDER_80 = "reminder_80"
    OVERDUE = "overdue"
    COMPLETED = "completed"
    PENALTY = "penalty"


class NotificationStatus(Enum):
    """Delivery status"""
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


MESSAGE_TEMPLATES = {
    NotificationKind.TASK_ASSIGNED: (
        "📋 New Task: {title}\n"
        "Domain: {domain}\n"
        "Deadline: {deadline}\n"
        "Steps: {steps_total}\n"
        "Priority: {priority}"
    ),
    NotificationKind.REMINDER_50: (
        "⏰ Reminder: {title}\n"
        "{threshold}% of time has elapsed\n"
        "{hours_left}h remaining\n"
        "Deadline: {deadline}"
    ),
    NotificationKind.REMINDER_80: (
        "⚠️ URGENT: {title}\n"
        "{threshold}% of time has elapsed!\n"
        "Only {hours_left}h remaining\n"
        "Deadline: {deadline}"
    ),
    NotificationKind.OVERDUE: (
        "🔴 OVERDUE: {title}\n"
        "Deadline was: {deadline}\n"
        "Overdue by: {hours_overdue}h\n"
        "Please complete ASAP!"
    ),
    NotificationKind.COMPLETED: (
        "✅ Completed: {title}\n"
        "Completed by: {completed_by}"
    ),
    NotificationKind.PENALTY: (
        "⚠️ Penalty Notice for task: {title}\n"
        "Action required by management"
    ),
}


class DeliveryError(TaskflowError):
    """Raised by a channel provider when a message could not be delivered"""
    pass


@dataclass
class Notification(StorageRecord):
    """Outbound message"""
    kind: NotificationKind
    message_text: str
    task_id: Optional[str] = None
    recipient_id: Optional[str] = None
    recipient_name: str = "Unknown"
    recipient_phone: Optional[str] = None
    status: NotificationStatus = NotificationStatus.QUEUED
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    attempts: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        data = dict(data)
        data['kind'] = NotificationKind(data['kind'])
        data['status'] = NotificationStatus(data['status'])
        data['sent_at'] = parse_datetime(data.get('sent_at'))
        return super().from_dict(data)


def _format_deadline(deadline: Optional[datetime]) -> str:
    if deadline is None:
        return "none"
    return deadline.strftime("%Y-%m-%d %H:%M UTC")


class NotificationQueue:
    """Deduplicated outbound notification queue"""

    def __init__(
        self,
        storage: StorageInterface,
        clock: Optional[Clock] = None,
        directory: Optional['EmployeeDirectory'] = None,
        dedup_window_hours: float = 4,
        reminder_thresholds: Optional[Dict[NotificationKind, float]] = None
    ):
        self.storage = storage
        self.clock = clock or SystemClock()
        self.directory = directory
        self.dedup_window = timedelta(hours=dedup_window_hours)
        self.reminder_thresholds = reminder_thresholds or {
            NotificationKind.REMINDER_50: 50,
            NotificationKind.REMINDER_80: 80,
        }
        self.table_name = "notifications"

    def enqueue(self, task: 'Task', kind: Union[NotificationKind, str]) -> Optional[Notification]:
        """
        Queue a message about a task.

        Returns None when a notification of the same kind for the same task
        was created inside the dedup window.
        """
        kind = coerce_enum(NotificationKind, kind, "kind")
        now = self.clock.now()

        if self.was_recently_queued(task.id, kind, now):
            logger.debug("Suppressed duplicate %s notification for task %s", kind.value, task.id)
            return None

        recipient_name, recipient_phone = self._resolve_recipient(task)
        notification = Notification(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            kind=kind,
            message_text=self.render(task, kind, now),
            task_id=task.id,
            recipient_id=task.assignee_id,
            recipient_name=recipient_name,
            recipient_phone=recipient_phone
        )
        self.storage.save(self.table_name, notification.id, notification.to_dict())
        logger.debug("Queued %s notification for task %s to %s", kind.value, task.id, recipient_name)
        return notification

    def was_recently_queued(self, task_id: str, kind: NotificationKind,
                            now: Optional[datetime] = None) -> bool:
        """Check whether (task, kind) was queued inside the dedup window"""
        now = now or self.clock.now()
        cutoff = now - self.dedup_window
        existing = self.storage.find(self.table_name, {"task_id": task_id, "kind": kind.value})
        for data in existing:
            if parse_datetime(data["created_at"]) > cutoff:
                return True
        return False

    def render(self, task: 'Task', kind: NotificationKind, now: Optional[datetime] = None) -> str:
        """Render the message text for a task"""
        now = now or self.clock.now()
        remaining = task.hours_remaining(now)
        values = {
            "title": task.title,
            "domain": task.domain.value,
            "priority": task.priority.value,
            "deadline": _format_deadline(task.deadline),
            "steps_total": task.steps_total,
            "hours_left": f"{max(remaining, 0):.1f}" if remaining is not None else "-",
            "hours_overdue": f"{task.hours_overdue(now):.1f}",
            "completed_by": task.completed_by or "Unknown",
            "threshold": f"{self.reminder_thresholds.get(kind, 0):g}",
        }
        return MESSAGE_TEMPLATES[kind].format(**values)

    def get_notification(self, notification_id: str) -> Notification:
        data = self.storage.load(self.table_name, notification_id)
        if not data:
            raise NotFoundError("notification", notification_id)
        return Notification.from_dict(data)

    def list_notifications(
        self,
        status: Optional[Union[NotificationStatus, str]] = None,
        task_id: Optional[str] = None,
        recipient_name: Optional[str] = None,
        kind: Optional[Union[NotificationKind, str]] = None,
        limit: Optional[int] = None
    ) -> List[Notification]:
        """List notifications, newest first"""
        filters: Dict[str, Any] = {}
        if status is not None:
            filters["status"] = coerce_enum(NotificationStatus, status, "status").value
        if task_id is not None:
            filters["task_id"] = task_id
        if kind is not None:
            filters["kind"] = coerce_enum(NotificationKind, kind, "kind").value

        notifications = [Notification.from_dict(row) for row in self.storage.find(self.table_name, filters)]
        if recipient_name:
            needle = recipient_name.lower()
            notifications = [n for n in notifications if needle in (n.recipient_name or "").lower()]

        notifications.sort(key=lambda n: n.created_at, reverse=True)
        return notifications[:limit] if limit else notifications

    def queued(self, limit: Optional[int] = None) -> List[Notification]:
        """Queued notifications, oldest first"""
        notifications = [
            Notification.from_dict(row)
            for row in self.storage.find(self.table_name, {"status": NotificationStatus.QUEUED.value})
        ]
        notifications.sort(key=lambda n: n.created_at)
        return notifications[:limit] if limit else notifications

    def queued_count(self) -> int:
        return len(self.storage.find(self.table_name, {"status": NotificationStatus.QUEUED.value}))

    def mark_sent(self, notification_id: str) -> Notification:
        notification = self.get_notification(notification_id)
        notification.status = NotificationStatus.SENT
        notification.sent_at = self.clock.now()
        notification.error_message = None
        return self._save(notification)

    def mark_failed(self, notification_id: str, error: str) -> Notification:
        notification = self.get_notification(notification_id)
        notification.status = NotificationStatus.FAILED
        notification.error_message = error
        return self._save(notification)

    def mark_skipped(self, notification_id: str, reason: str) -> Notification:
        notification = self.get_notification(notification_id)
        notification.status = NotificationStatus.SKIPPED
        notification.error_message = reason
        return self._save(notification)

    def _save(self, notification: Notification) -> Notification:
        notification.updated_at = self.clock.now()
        self.storage.save(self.table_name, notification.id, notification.to_dict())
        return notification

    def _resolve_recipient(self, task: 'Task'):
        name = task.assignee_name
        phone = None
        if task.assignee_id and self.directory is not None:
            employee = self.directory.get_employee(task.assignee_id)
            if employee is not None:
                name = name or employee.name
                phone = employee.contact_phone
        return name or "Unknown", phone


class ChannelProvider(ABC):
    """Abstract base class for notification channel providers"""

    @abstractmethod
    async def send(self, notification: Notification) -> bool:
        """Deliver a notification; return False or raise DeliveryError on failure"""
        pass


class LogChannelProvider(ChannelProvider):
    """Logs notifications instead of sending them"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("taskflow.notifications.delivery")

    async def send(self, notification: Notification) -> bool:
        self.logger.info(
            "%s to %s (%s): %s",
            notification.kind.value, notification.recipient_name,
            notification.recipient_phone, notification.message_text.replace("\n", " | ")
        )
        return True


class WebhookChannelProvider(ChannelProvider):
    """Posts notifications to an HTTP gateway (WhatsApp/SMS bridge)"""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    async def send(self, notification: Notification) -> bool:
        """Send notification via webhook POST"""
        payload = {
            "notification_id": notification.id,
            "kind": notification.kind.value,
            "task_id": notification.task_id,
            "recipient_id": notification.recipient_id,
            "recipient_name": notification.recipient_name,
            "recipient_phone": notification.recipient_phone,
            "message": notification.message_text,
            "timestamp": notification.created_at.isoformat(),
        }
        try:
            response = requests.post(
                self.url,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"}
            )
        except requests.RequestException as e:
            raise DeliveryError(f"webhook request failed: {e}")

        if response.status_code >= 300:
            raise DeliveryError(f"webhook returned HTTP {response.status_code}")
        return True


class NotificationDispatcher:
    """Drains queued notifications through a channel provider"""

    def __init__(self, queue: NotificationQueue, provider: Optional[ChannelProvider] = None):
        self.queue = queue
        self.provider = provider or LogChannelProvider()

    async def dispatch_queued(self, limit: Optional[int] = None) -> Dict[str, int]:
        """Send queued notifications and record the outcome of each"""
        results = {"attempted": 0, "sent": 0, "failed": 0, "skipped": 0}

        for notification in self.queue.queued(limit):
            if not notification.recipient_phone:
                self.queue.mark_skipped(notification.id, "no recipient contact")
                results["skipped"] += 1
                continue

            results["attempted"] += 1
            notification.attempts += 1
            self.queue._save(notification)
            try:
                delivered = await self.provider.send(notification)
                error = None if delivered else "provider rejected the message"
            except DeliveryError as e:
                delivered = False
                error = e.message

            if delivered:
                self.queue.mark_sent(notification.id)
                results["sent"] += 1
            else:
                self.queue.mark_failed(notification.id, error)
                results["failed"] += 1
                logger.warning("Delivery of notification %s failed: %s", notification.id, error)

        return results
