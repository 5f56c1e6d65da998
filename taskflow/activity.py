"""
Task Activity Module

Append-only audit trail of every state-changing operation on a task.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any
import uuid

from .clock import Clock, SystemClock
from .storage import StorageInterface, StorageRecord


@dataclass
class TaskActivity(StorageRecord):
    """One row per task state change"""
    task_id: str
    action: str
    actor: str
    details: Dict[str, Any] = field(default_factory=dict)
    sequence: int = 0


class ActivityLog:
    """Writes and reads the task activity trail"""

    def __init__(self, storage: StorageInterface, clock: Optional[Clock] = None):
        self.storage = storage
        self.clock = clock or SystemClock()
        self.table_name = "task_activity"

    def record(self, task_id: str, action: str, actor: Optional[str],
               details: Optional[Dict[str, Any]] = None) -> TaskActivity:
        """Append an activity row for a task"""
        now = self.clock.now()
        entry = TaskActivity(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            task_id=task_id,
            action=action,
            actor=actor or "System",
            details=details or {},
            sequence=self.storage.count(self.table_name) + 1
        )
        self.storage.save(self.table_name, entry.id, entry.to_dict())
        return entry

    def list_for_task(self, task_id: str, limit: Optional[int] = None) -> List[TaskActivity]:
        """Activity for one task, newest first"""
        rows = self.storage.find(self.table_name, {"task_id": task_id})
        entries = self._sorted(rows)
        return entries[:limit] if limit else entries

    def count_for_task(self, task_id: str, action: Optional[str] = None) -> int:
        filters = {"task_id": task_id}
        if action:
            filters["action"] = action
        return len(self.storage.find(self.table_name, filters))

    def recent(self, limit: int = 30) -> List[TaskActivity]:
        """Most recent activity across all tasks"""
        entries = self._sorted(self.storage.load_all(self.table_name))
        return entries[:limit]

    def _sorted(self, rows: List[Dict[str, Any]]) -> List[TaskActivity]:
        entries = [TaskActivity.from_dict(row) for row in rows]
        entries.sort(key=lambda e: (e.created_at, e.sequence), reverse=True)
        return entries
