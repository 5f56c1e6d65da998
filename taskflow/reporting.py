"""
Dashboard Reporting Module

Read-only aggregates over tasks, instances, activity and employee stats.
"""

from typing import Dict, List, Optional, Any, Union
import logging

from .activity import ActivityLog
from .clock import Clock, SystemClock
from .stats import StatsAggregator, EmployeeStats
from .tasks import Task, TaskManager, TaskStatus
from .templates import Domain, coerce_enum
from .workflows import WorkflowEngine, InstanceStatus


logger = logging.getLogger("taskflow.reporting")


class DashboardReporter:
    """Builds dashboard views"""

    def __init__(
        self,
        tasks: TaskManager,
        workflows: WorkflowEngine,
        stats: StatsAggregator,
        activity: ActivityLog,
        clock: Optional[Clock] = None,
        leaderboard_limit: int = 50,
        activity_feed_limit: int = 30
    ):
        self.tasks = tasks
        self.workflows = workflows
        self.stats = stats
        self.activity = activity
        self.clock = clock or SystemClock()
        self.leaderboard_limit = leaderboard_limit
        self.activity_feed_limit = activity_feed_limit

    def domain_overview(self) -> Dict[str, Dict[str, int]]:
        """Per-domain active/overdue/completed/total counts and completion rate"""
        now = self.clock.now()
        overview = {
            domain.value: {"active": 0, "overdue": 0, "completed": 0, "total": 0, "completion_rate": 0}
            for domain in Domain
        }

        for task in self.tasks.list_tasks():
            row = overview[task.domain.value]
            row["total"] += 1
            if task.status == TaskStatus.COMPLETED:
                row["completed"] += 1
            if task.is_open:
                row["active"] += 1
                if task.is_past_deadline(now):
                    row["overdue"] += 1

        for row in overview.values():
            row["completion_rate"] = round(row["completed"] / (row["total"] or 1) * 100)
        return overview

    def domain_detail(self, domain: Union[Domain, str], limit: int = 50) -> Dict[str, Any]:
        """Open tasks, active instances and overdue tasks of one domain"""
        domain = coerce_enum(Domain, domain, "domain")
        now = self.clock.now()
        tasks = self.tasks.list_tasks(domain=domain)
        open_tasks = [t for t in tasks if t.is_open]
        return {
            "domain": domain.value,
            "tasks": open_tasks[:limit],
            "instances": self.workflows.list_instances(
                status=InstanceStatus.ACTIVE, domain=domain, limit=limit
            ),
            "overdue": [
                t for t in open_tasks
                if t.status == TaskStatus.OVERDUE or t.is_past_deadline(now)
            ],
        }

    def leaderboard(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Employees ranked by tasks completed"""
        board = []
        for rank, stats in enumerate(self.stats.leaderboard(limit or self.leaderboard_limit), start=1):
            board.append({
                "rank": rank,
                "employee_id": stats.employee_id,
                "employee_name": stats.employee_name,
                "tasks_completed": stats.tasks_completed,
                "tasks_on_time": stats.tasks_on_time,
                "tasks_overdue": stats.tasks_overdue,
                "on_time_rate": stats.on_time_rate,
                "avg_completion_hours": round(stats.avg_completion_hours, 1),
                "total_penalties": stats.total_penalties,
                "current_streak": stats.current_streak,
                "best_streak": stats.best_streak,
            })
        return board

    def employee_stats(self, employee_id: str) -> EmployeeStats:
        """Stats for one employee, zeroed when they have no history"""
        return self.stats.get_or_default(employee_id)

    def entity_journey(self, entity_type: str, entity_id: str) -> List[Dict[str, Any]]:
        """Every workflow run against one business entity with its tasks, oldest first"""
        instances = self.workflows.list_instances(entity_type=entity_type, entity_id=entity_id)
        journey = []
        for instance in sorted(instances, key=lambda i: i.created_at):
            journey.append({
                "instance": instance,
                "workflow_name": instance.workflow_name,
                "tasks": self.tasks.tasks_for_instance(instance.id),
            })
        return journey

    def recent_activity(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Activity feed across all tasks, newest first"""
        titles: Dict[str, Optional[Task]] = {}
        feed = []
        for entry in self.activity.recent(limit or self.activity_feed_limit):
            if entry.task_id not in titles:
                titles[entry.task_id] = self.tasks.find_task(entry.task_id)
            task = titles[entry.task_id]
            feed.append({
                "task_id": entry.task_id,
                "task_title": task.title if task else None,
                "domain": task.domain.value if task else None,
                "action": entry.action,
                "actor": entry.actor,
                "details": entry.details,
                "created_at": entry.created_at,
            })
        return feed
