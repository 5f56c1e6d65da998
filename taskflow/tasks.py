"""
Task Module

Task model with its embedded checklist, the task state machine and the task
operations exposed to callers. Every transition is a status-guarded
conditional write and appends exactly one activity record.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Any, Union, TYPE_CHECKING
import logging

from .activity import ActivityLog, TaskActivity
from .clock import Clock, SystemClock
from .errors import NotFoundError, InvalidTransitionError, ValidationError
from .storage import StorageInterface, StorageRecord, parse_datetime
from .templates import Domain, Priority, coerce_enum

if TYPE_CHECKING:
    from .assignment import EmployeeDirectory
    from .factory import TaskFactory
    from .notifications import NotificationQueue
    from .penalties import PenaltyCalculator
    from .stats import StatsAggregator


logger = logging.getLogger("taskflow.tasks")

TASKS_TABLE = "tasks"


class TaskStatus(Enum):
    """Task lifecycle states"""
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    BLOCKED = "blocked"
    OVERDUE = "overdue"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})
STARTABLE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.ASSIGNED})


@dataclass
class ChecklistStep:
    """One binary checklist entry"""
    order: int
    name: str
    completed: bool = False
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChecklistStep':
        return cls(
            order=data['order'],
            name=data['name'],
            completed=bool(data.get('completed', False)),
            completed_at=parse_datetime(data.get('completed_at')),
            completed_by=data.get('completed_by')
        )


def build_checklist(step_names: List[str]) -> List[ChecklistStep]:
    """Fresh, all-incomplete checklist numbered from 1"""
    return [ChecklistStep(order=i + 1, name=name) for i, name in enumerate(step_names)]


@dataclass
class Task(StorageRecord):
    """Concrete unit of work"""
    title: str
    domain: Domain
    status: TaskStatus = TaskStatus.PENDING
    priority: Priority = Priority.MEDIUM
    description: str = ""
    workflow_instance_id: Optional[str] = None
    stage_order: Optional[int] = None
    template_id: Optional[str] = None
    assignee_id: Optional[str] = None
    assignee_name: Optional[str] = None
    assigned_by: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    entity_name: Optional[str] = None
    checklist: List[ChecklistStep] = field(default_factory=list)
    steps_completed: int = 0
    steps_total: int = 0
    sla_hours: Optional[int] = None
    deadline: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self):
        previous = 0
        for step in self.checklist:
            if step.order <= previous:
                raise ValidationError(
                    "Checklist step orders must be unique and increasing",
                    {"order": step.order}
                )
            previous = step.order
        self._recount()

    def _recount(self) -> None:
        self.steps_total = len(self.checklist)
        self.steps_completed = sum(1 for step in self.checklist if step.completed)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_open(self) -> bool:
        return not self.is_terminal

    def get_step(self, order: int) -> Optional[ChecklistStep]:
        for step in self.checklist:
            if step.order == order:
                return step
        return None

    def hours_remaining(self, now: datetime) -> Optional[float]:
        if self.deadline is None:
            return None
        return (self.deadline - now).total_seconds() / 3600

    def hours_overdue(self, now: datetime) -> float:
        remaining = self.hours_remaining(now)
        if remaining is None or remaining >= 0:
            return 0.0
        return -remaining

    def is_past_deadline(self, now: datetime) -> bool:
        return self.deadline is not None and now > self.deadline

    def percent_elapsed(self, now: datetime) -> Optional[float]:
        """Share of the SLA consumed since creation, in percent"""
        if self.deadline is None:
            return None
        if self.sla_hours:
            sla_hours = self.sla_hours
        else:
            sla_hours = (self.deadline - self.created_at).total_seconds() / 3600
        if sla_hours <= 0:
            return 100.0
        elapsed = (now - self.created_at).total_seconds() / 3600
        return elapsed / sla_hours * 100

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Task':
        data = dict(data)
        data['domain'] = Domain(data['domain'])
        data['status'] = TaskStatus(data['status'])
        data['priority'] = Priority(data['priority'])
        data['checklist'] = [ChecklistStep.from_dict(s) for s in data.get('checklist', [])]
        for key in ('deadline', 'started_at', 'completed_at'):
            data[key] = parse_datetime(data.get(key))
        return super().from_dict(data)


def task_sort_key(task: Task):
    """Priority (urgent first), then deadline ascending with no-deadline tasks last"""
    return (
        task.priority.rank,
        task.deadline is None,
        task.deadline.timestamp() if task.deadline else 0,
        task.created_at.timestamp(),
    )


class TaskManager:
    """Task queries and state machine transitions"""

    def __init__(
        self,
        storage: StorageInterface,
        factory: 'TaskFactory',
        activity: ActivityLog,
        clock: Optional[Clock] = None,
        notifications: Optional['NotificationQueue'] = None,
        penalties: Optional['PenaltyCalculator'] = None,
        stats: Optional['StatsAggregator'] = None,
        directory: Optional['EmployeeDirectory'] = None,
        advancer: Optional[Callable[[Task], None]] = None
    ):
        self.storage = storage
        self.factory = factory
        self.activity = activity
        self.clock = clock or SystemClock()
        self.notifications = notifications
        self.penalties = penalties
        self.stats = stats
        self.directory = directory
        # Called with the task after it reaches a terminal state
        self.advancer = advancer
        self.table_name = TASKS_TABLE

    # Queries

    def find_task(self, task_id: str) -> Optional[Task]:
        data = self.storage.load(self.table_name, task_id)
        return Task.from_dict(data) if data else None

    def get_task(self, task_id: str) -> Task:
        """Get a task by ID"""
        task = self.find_task(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def get_task_with_activity(self, task_id: str, limit: int = 50) -> Dict[str, Any]:
        """Task plus its activity trail, newest first"""
        task = self.get_task(task_id)
        return {"task": task, "activity": self.activity.list_for_task(task_id, limit)}

    def list_tasks(
        self,
        status: Optional[Union[TaskStatus, str]] = None,
        domain: Optional[Union[Domain, str]] = None,
        assignee_id: Optional[str] = None,
        workflow_instance_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        overdue_only: bool = False,
        limit: Optional[int] = None
    ) -> List[Task]:
        """List tasks by priority then deadline"""
        filters: Dict[str, Any] = {}
        if status is not None:
            filters["status"] = coerce_enum(TaskStatus, status, "status").value
        if domain is not None:
            filters["domain"] = coerce_enum(Domain, domain, "domain").value
        if assignee_id is not None:
            filters["assignee_id"] = assignee_id
        if workflow_instance_id is not None:
            filters["workflow_instance_id"] = workflow_instance_id
        if entity_type is not None:
            filters["entity_type"] = entity_type
        if entity_id is not None:
            filters["entity_id"] = str(entity_id)

        tasks = [Task.from_dict(row) for row in self.storage.find(self.table_name, filters)]

        if overdue_only:
            now = self.clock.now()
            tasks = [
                t for t in tasks
                if t.status == TaskStatus.OVERDUE or (t.is_open and t.is_past_deadline(now))
            ]

        tasks.sort(key=task_sort_key)
        return tasks[:limit] if limit else tasks

    def tasks_for_instance(self, instance_id: str) -> List[Task]:
        rows = self.storage.find(self.table_name, {"workflow_instance_id": instance_id})
        tasks = [Task.from_dict(row) for row in rows]
        tasks.sort(key=lambda t: (t.stage_order or 0, t.created_at))
        return tasks

    # Creation

    def create_standalone_task(self, title: str, domain: Union[Domain, str],
                               created_by: Optional[str] = None, **kwargs) -> Task:
        """Create a task that belongs to no workflow"""
        with self.storage.atomic():
            return self.factory.create_standalone(title, domain, created_by=created_by, **kwargs)

    # Transitions

    def assign_task(self, task_id: str, assignee_id: str, assignee_name: Optional[str] = None,
                    assigned_by: Optional[str] = None) -> Task:
        """Assign or reassign an open task"""
        if not assignee_id:
            raise ValidationError("assignee_id is required", {"field": "assignee_id"})

        with self.storage.atomic():
            task = self.get_task(task_id)
            if task.is_terminal:
                raise InvalidTransitionError("task", task_id, "assign", task.status.value)

            if assignee_name is None and self.directory is not None:
                employee = self.directory.get_employee(assignee_id)
                assignee_name = employee.name if employee else None

            previous = task.status
            task.assignee_id = assignee_id
            task.assignee_name = assignee_name or assignee_id
            task.assigned_by = assigned_by
            if task.status in STARTABLE_STATUSES:
                task.status = TaskStatus.ASSIGNED

            self._transition(task, previous, "assign", "assigned", assigned_by, {
                "assignee_id": assignee_id,
                "assignee_name": task.assignee_name,
            })
            if self.notifications:
                self.notifications.enqueue(task, "task_assigned")

        return task

    def start_task(self, task_id: str, actor: Optional[str] = None) -> Task:
        """Move a pending or assigned task to in_progress"""
        with self.storage.atomic():
            task = self.find_task(task_id)
            if task is None:
                raise InvalidTransitionError("task", task_id, "start")
            if task.status not in STARTABLE_STATUSES:
                raise InvalidTransitionError("task", task_id, "start", task.status.value)

            previous = task.status
            task.status = TaskStatus.IN_PROGRESS
            task.started_at = self.clock.now()
            self._transition(task, previous, "start", "started", actor)

        return task

    def complete_step(self, task_id: str, step_order: int, actor: Optional[str] = None) -> Task:
        """Tick one checklist entry; does not change the task status"""
        with self.storage.atomic():
            task = self.get_task(task_id)
            if task.is_terminal:
                raise InvalidTransitionError("task", task_id, "complete a step of", task.status.value)

            step = task.get_step(step_order)
            if step is None:
                raise NotFoundError("checklist step", f"{task_id}#{step_order}")
            if step.completed:
                raise InvalidTransitionError("checklist step", f"{task_id}#{step_order}", "complete", "completed")

            previous_completed = task.steps_completed
            step.completed = True
            step.completed_at = self.clock.now()
            step.completed_by = actor
            task._recount()

            self._transition(task, task.status, "complete a step of", "step_completed", actor, {
                "step": step.order,
                "step_name": step.name,
                "progress": f"{task.steps_completed}/{task.steps_total}",
            }, expected={"steps_completed": previous_completed})

        return task

    def complete_task(self, task_id: str, actor: Optional[str] = None,
                      notes: Optional[str] = None) -> Task:
        """Complete a task, update stats and advance its workflow"""
        with self.storage.atomic():
            task = self.find_task(task_id)
            if task is None:
                raise InvalidTransitionError("task", task_id, "complete")
            if task.is_terminal:
                raise InvalidTransitionError("task", task_id, "complete", task.status.value)

            previous = task.status
            now = self.clock.now()
            task.status = TaskStatus.COMPLETED
            task.completed_at = now
            task.completed_by = actor
            if notes:
                task.notes = notes

            details = {}
            if task.deadline is not None:
                details["on_time"] = now <= task.deadline
            self._transition(task, previous, "complete", "completed", actor, details)

            if self.stats:
                self.stats.record_completion(task)
            if self.notifications:
                self.notifications.enqueue(task, "completed")
            if task.workflow_instance_id and self.advancer:
                self.advancer(task)

        logger.info("Task %s completed by %s", task.id, actor)
        return task

    def cancel_task(self, task_id: str, actor: Optional[str] = None,
                    reason: Optional[str] = None) -> Task:
        """Cancel a task; an overdue task incurs the cancelled-overdue penalty"""
        with self.storage.atomic():
            task = self.find_task(task_id)
            if task is None:
                raise InvalidTransitionError("task", task_id, "cancel")
            if task.is_terminal:
                raise InvalidTransitionError("task", task_id, "cancel", task.status.value)

            now = self.clock.now()
            was_overdue = task.status == TaskStatus.OVERDUE or task.is_past_deadline(now)
            previous = task.status
            task.status = TaskStatus.CANCELLED
            if reason:
                task.notes = reason

            self._transition(task, previous, "cancel", "cancelled", actor,
                             {"reason": reason} if reason else {})

            if was_overdue and self.penalties:
                self.penalties.evaluate_task(task, cancelled=True)
            if task.workflow_instance_id and self.advancer:
                self.advancer(task)

        logger.info("Task %s cancelled by %s", task.id, actor)
        return task

    def mark_overdue(self, task_id: str, actor: str = "System") -> Task:
        """Flag an open task as overdue; used by the SLA scanner"""
        with self.storage.atomic():
            task = self.get_task(task_id)
            if task.is_terminal or task.status == TaskStatus.OVERDUE:
                raise InvalidTransitionError("task", task_id, "mark overdue", task.status.value)

            previous = task.status
            task.status = TaskStatus.OVERDUE
            hours = task.hours_overdue(self.clock.now())
            self._transition(task, previous, "mark overdue", "overdue", actor,
                             {"hours_overdue": f"{hours:.1f}"})

        return task

    def block_task(self, task_id: str, actor: Optional[str] = None,
                   reason: Optional[str] = None) -> Task:
        """Set an open task to blocked (external control only)"""
        with self.storage.atomic():
            task = self.get_task(task_id)
            if task.is_terminal or task.status == TaskStatus.BLOCKED:
                raise InvalidTransitionError("task", task_id, "block", task.status.value)

            previous = task.status
            task.status = TaskStatus.BLOCKED
            self._transition(task, previous, "block", "blocked", actor,
                             {"reason": reason} if reason else {})
        return task

    def unblock_task(self, task_id: str, actor: Optional[str] = None) -> Task:
        with self.storage.atomic():
            task = self.get_task(task_id)
            if task.status != TaskStatus.BLOCKED:
                raise InvalidTransitionError("task", task_id, "unblock", task.status.value)

            if task.started_at:
                task.status = TaskStatus.IN_PROGRESS
            elif task.assignee_id:
                task.status = TaskStatus.ASSIGNED
            else:
                task.status = TaskStatus.PENDING
            self._transition(task, TaskStatus.BLOCKED, "unblock", "unblocked", actor)
        return task

    def _transition(self, task: Task, previous: TaskStatus, verb: str, action: str,
                    actor: Optional[str], details: Optional[Dict[str, Any]] = None,
                    expected: Optional[Dict[str, Any]] = None) -> TaskActivity:
        """Conditionally persist the task and append its activity record"""
        task.updated_at = self.clock.now()
        guard = {"status": previous.value}
        if expected:
            guard.update(expected)
        if not self.storage.save_if(self.table_name, task.id, task.to_dict(), guard):
            current = self.find_task(task.id)
            raise InvalidTransitionError(
                "task", task.id, verb, current.status.value if current else None
            )
        return self.activity.record(task.id, action, actor, details)
