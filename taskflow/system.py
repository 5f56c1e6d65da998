"""
Taskflow System Module

Composition root: wires every engine component to one storage backend, one
clock and one employee directory, taking tunables from TaskflowConfig.
"""

from decimal import Decimal
from typing import Optional
import random

from .activity import ActivityLog
from .assignment import AssignmentResolver, EmployeeDirectory, StorageEmployeeDirectory
from .clock import Clock, SystemClock
from .config import TaskflowConfig, get_config
from .factory import TaskFactory
from .notifications import (
    NotificationQueue, NotificationDispatcher, NotificationKind,
    ChannelProvider, LogChannelProvider, WebhookChannelProvider
)
from .penalties import PenaltyCalculator, default_rules
from .reporting import DashboardReporter
from .sla import SLAScanner, SLATracker
from .stats import StatsAggregator
from .storage import StorageInterface, create_storage
from .tasks import TaskManager
from .templates import TemplateManager
from .workflows import WorkflowEngine


class TaskflowSystem:
    """Workflow engine with all components initialized"""

    def __init__(
        self,
        config: Optional[TaskflowConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Clock] = None,
        directory: Optional[EmployeeDirectory] = None,
        rng: Optional[random.Random] = None,
        provider: Optional[ChannelProvider] = None
    ):
        self.config = config or get_config()
        cfg = self.config

        self.storage = storage or create_storage(cfg.database_url, cfg.storage_timeout_seconds)
        self.clock = clock or SystemClock()
        self.directory = directory or StorageEmployeeDirectory(self.storage)

        self.activity = ActivityLog(self.storage, self.clock)
        self.templates = TemplateManager(self.storage, self.clock, cfg.default_sla_hours)
        self.resolver = AssignmentResolver(self.directory, self.storage, rng)
        self.notifications = NotificationQueue(
            self.storage, self.clock, self.directory,
            dedup_window_hours=cfg.notification_dedup_hours,
            reminder_thresholds={
                NotificationKind.REMINDER_50: cfg.reminder_first_percent,
                NotificationKind.REMINDER_80: cfg.reminder_second_percent,
            }
        )
        self.stats = StatsAggregator(self.storage, self.clock)
        self.penalties = PenaltyCalculator(
            self.storage, self.clock, self.stats, self.notifications,
            rules=default_rules(
                Decimal(cfg.penalty_minor_amount),
                Decimal(cfg.penalty_moderate_amount),
                Decimal(cfg.penalty_severe_amount),
                cfg.penalty_minor_max_hours,
                cfg.penalty_moderate_max_hours
            ),
            cancelled_overdue_amount=Decimal(cfg.penalty_cancelled_overdue_amount)
        )
        self.factory = TaskFactory(
            self.storage, self.templates, self.resolver, self.activity, self.clock,
            self.notifications, cfg.default_sla_hours
        )
        self.task_manager = TaskManager(
            self.storage, self.factory, self.activity, self.clock,
            notifications=self.notifications,
            penalties=self.penalties,
            stats=self.stats,
            directory=self.directory
        )
        self.workflow_engine = WorkflowEngine(
            self.storage, self.templates, self.factory, self.task_manager, self.clock
        )
        # Terminal task transitions feed the stage barrier
        self.task_manager.advancer = self.workflow_engine.advance

        self.sla_scanner = SLAScanner(
            self.storage, self.task_manager, self.penalties, self.notifications, self.clock,
            first_reminder_percent=cfg.reminder_first_percent,
            second_reminder_percent=cfg.reminder_second_percent
        )
        if provider is None:
            if cfg.notification_webhook_url:
                provider = WebhookChannelProvider(
                    cfg.notification_webhook_url, cfg.notification_webhook_timeout
                )
            else:
                provider = LogChannelProvider()
        self.dispatcher = NotificationDispatcher(self.notifications, provider)
        self.reporter = DashboardReporter(
            self.task_manager, self.workflow_engine, self.stats, self.activity, self.clock,
            leaderboard_limit=cfg.leaderboard_limit,
            activity_feed_limit=cfg.activity_feed_limit
        )

    def create_tracker(self) -> SLATracker:
        """Background SLA loop configured from settings"""
        return SLATracker(
            self.sla_scanner,
            interval_seconds=self.config.sla_scan_interval_seconds,
            run_on_start=self.config.sla_scan_on_start,
            dispatcher=self.dispatcher
        )

    def close(self) -> None:
        self.storage.close()
