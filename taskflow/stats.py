"""
Employee Statistics Module

Incremental per-employee rollup updated on task completion and on penalty
approval. Rows are never recomputed from scratch.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Any, Union, TYPE_CHECKING
import logging

from .clock import Clock, SystemClock
from .storage import StorageInterface, StorageRecord

if TYPE_CHECKING:
    from .tasks import Task


logger = logging.getLogger("taskflow.stats")


@dataclass
class EmployeeStats(StorageRecord):
    """Cumulative counters for one employee; id is the employee id"""
    employee_name: Optional[str] = None
    tasks_completed: int = 0
    tasks_on_time: int = 0
    tasks_overdue: int = 0
    # Carried for downstream policies; the engine does not derive streaks
    current_streak: int = 0
    best_streak: int = 0
    total_penalties: Decimal = Decimal("0")
    avg_completion_hours: float = 0.0

    @property
    def employee_id(self) -> str:
        return self.id

    @property
    def on_time_rate(self) -> int:
        """Percentage of completed tasks finished by their deadline"""
        if not self.tasks_completed:
            return 0
        return round(self.tasks_on_time / self.tasks_completed * 100)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EmployeeStats':
        data = dict(data)
        data['total_penalties'] = Decimal(data.get('total_penalties', "0"))
        return super().from_dict(data)


class StatsAggregator:
    """Maintains EmployeeStats rows"""

    def __init__(self, storage: StorageInterface, clock: Optional[Clock] = None):
        self.storage = storage
        self.clock = clock or SystemClock()
        self.table_name = "employee_stats"

    def record_completion(self, task: 'Task') -> Optional[EmployeeStats]:
        """Fold one completed task into its assignee's stats"""
        if not task.assignee_id or task.completed_at is None:
            return None

        on_time = task.deadline is not None and task.completed_at <= task.deadline
        late = task.deadline is not None and task.completed_at > task.deadline
        if task.started_at is not None:
            hours = (task.completed_at - task.started_at).total_seconds() / 3600
        else:
            hours = 0.0

        with self.storage.atomic():
            stats = self._load_or_new(task.assignee_id, task.assignee_name)
            previous_n = stats.tasks_completed
            stats.avg_completion_hours = (stats.avg_completion_hours * previous_n + hours) / (previous_n + 1)
            stats.tasks_completed = previous_n + 1
            if on_time:
                stats.tasks_on_time += 1
            if late:
                stats.tasks_overdue += 1
            self._save(stats)

        logger.debug("Stats for %s: %d completed", stats.id, stats.tasks_completed)
        return stats

    def add_penalty(self, employee_id: str, employee_name: Optional[str],
                    amount: Union[Decimal, str]) -> EmployeeStats:
        """Add an approved penalty to the employee's total"""
        with self.storage.atomic():
            stats = self._load_or_new(employee_id, employee_name)
            stats.total_penalties += Decimal(amount)
            self._save(stats)
        return stats

    def get_stats(self, employee_id: str) -> Optional[EmployeeStats]:
        data = self.storage.load(self.table_name, employee_id)
        return EmployeeStats.from_dict(data) if data else None

    def get_or_default(self, employee_id: str) -> EmployeeStats:
        """Stats row, or a zeroed one (not persisted) for employees with no history"""
        stats = self.get_stats(employee_id)
        if stats is None:
            now = self.clock.now()
            stats = EmployeeStats(id=employee_id, created_at=now, updated_at=now)
        return stats

    def leaderboard(self, limit: int = 50) -> List[EmployeeStats]:
        """Employees ranked by tasks completed"""
        rows = [EmployeeStats.from_dict(row) for row in self.storage.load_all(self.table_name)]
        rows.sort(key=lambda s: (-s.tasks_completed, -s.tasks_on_time, s.id))
        return rows[:limit]

    def _load_or_new(self, employee_id: str, employee_name: Optional[str]) -> EmployeeStats:
        stats = self.get_stats(employee_id)
        if stats is None:
            now = self.clock.now()
            stats = EmployeeStats(id=employee_id, created_at=now, updated_at=now,
                                  employee_name=employee_name)
        elif employee_name and not stats.employee_name:
            stats.employee_name = employee_name
        return stats

    def _save(self, stats: EmployeeStats) -> None:
        stats.updated_at = self.clock.now()
        self.storage.save(self.table_name, stats.id, stats.to_dict())
