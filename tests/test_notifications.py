"""
Tests for the notification queue, channel providers and dispatcher
"""

import asyncio
import random
from unittest.mock import Mock, patch

import pytest
import requests

from taskflow.assignment import Employee
from taskflow.clock import ManualClock
from taskflow.config import TaskflowConfig
from taskflow.notifications import (
    ChannelProvider, DeliveryError, LogChannelProvider, NotificationDispatcher,
    NotificationKind, NotificationStatus, WebhookChannelProvider
)
from taskflow.storage import InMemoryStorage
from taskflow.system import TaskflowSystem


class RecordingProvider(ChannelProvider):
    """Collects notifications; fails for configured recipients"""

    def __init__(self, failing=()):
        self.sent = []
        self.failing = set(failing)

    async def send(self, notification):
        if notification.recipient_id in self.failing:
            raise DeliveryError("gateway down")
        self.sent.append(notification)
        return True


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def provider():
    return RecordingProvider()


@pytest.fixture
def system(clock, provider):
    system = TaskflowSystem(
        config=TaskflowConfig(database_url="memory://"),
        storage=InMemoryStorage(), clock=clock, rng=random.Random(5), provider=provider
    )
    system.directory.register_employee(
        Employee("emp_1", "Amal", department="Sales", business_phone="+966500000001")
    )
    system.directory.register_employee(
        Employee("emp_2", "Badr", department="Sales", personal_phone="+966500000002")
    )
    system.directory.register_employee(Employee("emp_3", "Chen", department="Sales"))
    return system


@pytest.fixture
def queue(system):
    return system.notifications


@pytest.fixture
def task(system):
    return system.task_manager.create_standalone_task(
        "Follow up", "sales", sla_hours=10, steps=["Call", "Email"],
        assignee_id="emp_1", assignee_name="Amal"
    )


class TestQueue:
    """Rendering, recipients and deduplication"""

    def test_assignment_message(self, queue, task):
        notification = queue.list_notifications(task_id=task.id)[0]
        assert notification.kind == NotificationKind.TASK_ASSIGNED
        assert notification.status == NotificationStatus.QUEUED
        assert notification.recipient_name == "Amal"
        assert notification.recipient_phone == "+966500000001"
        assert "New Task: Follow up" in notification.message_text
        assert "Steps: 2" in notification.message_text
        assert "Deadline: 2024-01-01 18:00 UTC" in notification.message_text

    def test_reminder_mentions_threshold(self, queue, task, clock):
        clock.advance(hours=8)
        notification = queue.enqueue(task, NotificationKind.REMINDER_80)
        assert "80% of time has elapsed" in notification.message_text
        assert "Only 2.0h remaining" in notification.message_text

    def test_duplicate_inside_window_suppressed(self, queue, task, clock):
        assert queue.enqueue(task, "overdue") is not None
        clock.advance(hours=3, minutes=59)
        assert queue.enqueue(task, "overdue") is None
        assert queue.was_recently_queued(task.id, NotificationKind.OVERDUE)

    def test_requeued_after_window(self, queue, task, clock):
        queue.enqueue(task, "overdue")
        clock.advance(hours=4)
        assert queue.enqueue(task, "overdue") is not None
        assert len(queue.list_notifications(task_id=task.id, kind="overdue")) == 2

    def test_dedup_is_per_kind(self, queue, task):
        assert queue.enqueue(task, "reminder_50") is not None
        assert queue.enqueue(task, "reminder_80") is not None

    def test_unassigned_task_has_unknown_recipient(self, queue, system):
        task = system.task_manager.create_standalone_task("Orphan", "hr")
        notification = queue.enqueue(task, "overdue")
        assert notification.recipient_name == "Unknown"
        assert notification.recipient_phone is None

    def test_personal_phone_fallback(self, system, queue):
        task = system.task_manager.create_standalone_task("B task", "sales", assignee_id="emp_2")
        assert queue.list_notifications(task_id=task.id)[0].recipient_phone == "+966500000002"

    def test_recipient_name_filter(self, queue, task):
        assert len(queue.list_notifications(recipient_name="ama")) == 1
        assert queue.list_notifications(recipient_name="zed") == []


class TestDispatcher:
    """Draining the queue"""

    def test_sends_queued(self, system, queue, task, provider, clock):
        results = asyncio.run(system.dispatcher.dispatch_queued())

        assert results == {"attempted": 1, "sent": 1, "failed": 0, "skipped": 0}
        assert [n.task_id for n in provider.sent] == [task.id]
        sent = queue.list_notifications(task_id=task.id)[0]
        assert sent.status == NotificationStatus.SENT
        assert sent.sent_at == clock.now()
        assert sent.attempts == 1
        assert queue.queued_count() == 0

    def test_missing_contact_is_skipped(self, system, queue):
        task = system.task_manager.create_standalone_task("C task", "sales", assignee_id="emp_3")
        results = asyncio.run(system.dispatcher.dispatch_queued())

        assert results["skipped"] == 1
        assert queue.list_notifications(task_id=task.id)[0].status == NotificationStatus.SKIPPED

    def test_failure_is_recorded(self, system, queue):
        dispatcher = NotificationDispatcher(queue, RecordingProvider(failing={"emp_2"}))
        task = system.task_manager.create_standalone_task("B task", "sales", assignee_id="emp_2")

        results = asyncio.run(dispatcher.dispatch_queued())
        assert results["failed"] == 1

        failed = queue.list_notifications(task_id=task.id)[0]
        assert failed.status == NotificationStatus.FAILED
        assert failed.error_message == "gateway down"

    def test_log_provider(self, queue, task):
        notification = queue.list_notifications(task_id=task.id)[0]
        logger = Mock()
        assert asyncio.run(LogChannelProvider(logger).send(notification)) is True
        logger.info.assert_called_once()


class TestWebhookProvider:
    """HTTP gateway delivery"""

    def test_posts_payload(self, queue, task):
        notification = queue.list_notifications(task_id=task.id)[0]
        provider = WebhookChannelProvider("https://gateway.example/send", timeout=2.0)

        with patch("taskflow.notifications.requests.post") as post:
            post.return_value = Mock(status_code=200)
            assert asyncio.run(provider.send(notification)) is True

        args, kwargs = post.call_args
        assert args[0] == "https://gateway.example/send"
        assert kwargs["timeout"] == 2.0
        assert kwargs["json"]["recipient_phone"] == "+966500000001"
        assert kwargs["json"]["kind"] == "task_assigned"

    def test_http_error_raises_delivery_error(self, queue, task):
        notification = queue.list_notifications(task_id=task.id)[0]
        provider = WebhookChannelProvider("https://gateway.example/send")

        with patch("taskflow.notifications.requests.post") as post:
            post.return_value = Mock(status_code=502)
            with pytest.raises(DeliveryError, match="HTTP 502"):
                asyncio.run(provider.send(notification))

    def test_connection_error_raises_delivery_error(self, queue, task):
        notification = queue.list_notifications(task_id=task.id)[0]
        provider = WebhookChannelProvider("https://gateway.example/send")

        with patch("taskflow.notifications.requests.post",
                   side_effect=requests.ConnectionError("refused")):
            with pytest.raises(DeliveryError, match="refused"):
                asyncio.run(provider.send(notification))
