"""
SLA Scanner Module

Periodic deadline scan over open tasks. Each task is classified against its
deadline (overdue, second reminder, first reminder, on track) and the
matching side effects are applied. Every side effect is idempotent, so a
cycle can be re-run at any time.
"""

from enum import Enum
from datetime import datetime
from typing import Dict, List, Optional, Any
import asyncio
import logging
import threading
import uuid

from .clock import Clock, SystemClock
from .errors import StorageUnavailableError
from .logging_config import log_action
from .notifications import NotificationDispatcher, NotificationKind, NotificationQueue
from .penalties import PenaltyCalculator
from .storage import StorageInterface
from .tasks import Task, TaskManager, TaskStatus


logger = logging.getLogger("taskflow.sla")


class SLAState(Enum):
    """Deadline classification of one task"""
    ON_TRACK = "on_track"
    FIRST_REMINDER = "first_reminder"
    SECOND_REMINDER = "second_reminder"
    OVERDUE = "overdue"


class SLAScanner:
    """One scan cycle over all open tasks with a deadline"""

    def __init__(
        self,
        storage: StorageInterface,
        tasks: TaskManager,
        penalties: PenaltyCalculator,
        notifications: NotificationQueue,
        clock: Optional[Clock] = None,
        first_reminder_percent: float = 50,
        second_reminder_percent: float = 80
    ):
        self.storage = storage
        self.tasks = tasks
        self.penalties = penalties
        self.notifications = notifications
        self.clock = clock or SystemClock()
        self.first_reminder_percent = first_reminder_percent
        self.second_reminder_percent = second_reminder_percent
        self._scan_lock = threading.Lock()

    def classify(self, task: Task, now: datetime) -> SLAState:
        """First matching rule wins: overdue, then second reminder, then first"""
        remaining = task.hours_remaining(now)
        if remaining is None:
            return SLAState.ON_TRACK
        if remaining <= 0:
            return SLAState.OVERDUE

        percent = task.percent_elapsed(now)
        if percent >= self.second_reminder_percent:
            return SLAState.SECOND_REMINDER
        if percent >= self.first_reminder_percent:
            return SLAState.FIRST_REMINDER
        return SLAState.ON_TRACK

    def scan(self) -> Optional[Dict[str, Any]]:
        """
        Run one cycle.

        Returns a summary of counts, or None when another cycle is already in
        flight. A storage failure aborts the cycle; it is logged and reported
        in the summary, never raised.
        """
        if not self._scan_lock.acquire(blocking=False):
            logger.info("SLA scan already in progress, skipping")
            return None
        try:
            return self._run_cycle()
        finally:
            self._scan_lock.release()

    def _run_cycle(self) -> Dict[str, Any]:
        cycle_id = str(uuid.uuid4())
        results = {
            "scanned": 0,
            "overdue": 0,
            "second_reminders": 0,
            "first_reminders": 0,
            "penalties": 0,
            "notifications": 0,
            "aborted": False,
        }

        try:
            now = self.clock.now()
            for task in self._open_tasks_with_deadline():
                # Each task commits on its own; a failure rolls back only the task in hand
                with self.storage.atomic():
                    self._process(task.id, now, results)
        except StorageUnavailableError as e:
            results["aborted"] = True
            log_action(
                logger, "error", f"SLA scan aborted: {e}",
                action="sla_scan", resource="tasks", correlation_id=cycle_id,
                extra={"scanned": results["scanned"]}
            )
            return results

        if results["overdue"] or results["notifications"] or results["penalties"]:
            log_action(
                logger, "info",
                f"SLA scan: {results['scanned']} tasks, {results['overdue']} newly overdue, "
                f"{results['penalties']} penalties, {results['notifications']} notifications",
                action="sla_scan", resource="tasks", correlation_id=cycle_id, extra=results
            )
        return results

    def _open_tasks_with_deadline(self) -> List[Task]:
        tasks = [
            Task.from_dict(row) for row in self.storage.load_all(self.tasks.table_name)
        ]
        tasks = [t for t in tasks if t.is_open and t.deadline is not None]
        tasks.sort(key=lambda t: t.deadline)
        return tasks

    def _process(self, task_id: str, now: datetime, results: Dict[str, Any]) -> None:
        # Re-read inside the transaction; a request may have closed the task meanwhile
        task = self.tasks.find_task(task_id)
        if task is None or task.is_terminal or task.deadline is None:
            return
        results["scanned"] += 1

        state = self.classify(task, now)
        if state == SLAState.OVERDUE:
            if task.status != TaskStatus.OVERDUE:
                task = self.tasks.mark_overdue(task.id)
                results["overdue"] += 1
            if self.penalties.evaluate_task(task) is not None:
                results["penalties"] += 1
            if self.notifications.enqueue(task, NotificationKind.OVERDUE) is not None:
                results["notifications"] += 1
        elif state == SLAState.SECOND_REMINDER:
            if self.notifications.enqueue(task, NotificationKind.REMINDER_80) is not None:
                results["second_reminders"] += 1
                results["notifications"] += 1
        elif state == SLAState.FIRST_REMINDER:
            if self.notifications.enqueue(task, NotificationKind.REMINDER_50) is not None:
                results["first_reminders"] += 1
                results["notifications"] += 1


class SLATracker:
    """Runs the scanner (and optionally notification delivery) on a background thread"""

    def __init__(self, scanner: SLAScanner, interval_seconds: float = 300,
                 run_on_start: bool = True,
                 dispatcher: Optional[NotificationDispatcher] = None):
        self.scanner = scanner
        self.interval_seconds = interval_seconds
        self.run_on_start = run_on_start
        self.dispatcher = dispatcher
        self.running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the background loop"""
        if self.running:
            return
        self.running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="sla-tracker")
        self._thread.daemon = True
        self._thread.start()
        logger.info("SLA tracker started (every %ss)", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop and wait for the current cycle to finish"""
        self.running = False
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("SLA tracker stopped")

    def is_running(self) -> bool:
        return self.running

    def run_cycle(self) -> Optional[Dict[str, Any]]:
        """One scan plus delivery of whatever is queued"""
        results = self.scanner.scan()
        if self.dispatcher is not None:
            delivery = asyncio.run(self.dispatcher.dispatch_queued())
            if delivery["attempted"] or delivery["skipped"]:
                logger.info("Notification delivery: %s", delivery)
        return results

    def _run(self) -> None:
        if self.run_on_start:
            self._safe_cycle()
        while not self._stop_event.wait(self.interval_seconds):
            self._safe_cycle()

    def _safe_cycle(self) -> None:
        try:
            self.run_cycle()
        except Exception:
            # Keep the loop alive; the next cycle retries from scratch
            logger.exception("SLA tracker cycle failed")
