"""
Task Factory Module

Materializes tasks from templates (or from caller-supplied fields for
standalone tasks): checklist, fixed deadline, resolved assignee and the
initial status.
"""

from datetime import timedelta
from typing import Any, List, Optional, Union, TYPE_CHECKING
import logging
import uuid

from .activity import ActivityLog
from .assignment import AssignmentResolver
from .clock import Clock, SystemClock
from .errors import ValidationError
from .storage import StorageInterface
from .tasks import Task, TaskStatus, TASKS_TABLE, build_checklist
from .templates import Domain, Priority, Template, TemplateManager, coerce_enum, normalize_steps

if TYPE_CHECKING:
    from .notifications import NotificationQueue
    from .workflows import WorkflowInstance, StageDefinition


logger = logging.getLogger("taskflow.factory")

# Standalone tasks fall back to the configured SLA
USE_DEFAULT_SLA = object()


class TaskFactory:
    """Builds and persists new tasks"""

    def __init__(
        self,
        storage: StorageInterface,
        templates: TemplateManager,
        resolver: AssignmentResolver,
        activity: ActivityLog,
        clock: Optional[Clock] = None,
        notifications: Optional['NotificationQueue'] = None,
        default_sla_hours: int = 24
    ):
        self.storage = storage
        self.templates = templates
        self.resolver = resolver
        self.activity = activity
        self.clock = clock or SystemClock()
        self.notifications = notifications
        self.default_sla_hours = default_sla_hours

    def create_from_template(
        self,
        template: Union[Template, str],
        instance: Optional['WorkflowInstance'] = None,
        stage: Optional['StageDefinition'] = None,
        workflow_name: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        entity_name: Optional[str] = None
    ) -> Task:
        """
        Create a task from a template.

        Raises NotFoundError when the template id does not resolve. Entity
        fields default to the instance's target entity.
        """
        if not isinstance(template, Template):
            template = self.templates.get_template(template)

        if instance is not None:
            entity_type = entity_type or instance.entity_type
            entity_id = entity_id or instance.entity_id
            entity_name = entity_name or instance.entity_name

        assignee = self.resolver.resolve(template.assignment_rule)
        now = self.clock.now()
        sla_hours = template.default_sla_hours or self.default_sla_hours

        task = Task(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            title=template.name,
            description=template.description,
            domain=template.domain,
            priority=template.priority,
            status=TaskStatus.ASSIGNED if assignee else TaskStatus.PENDING,
            workflow_instance_id=instance.id if instance else None,
            stage_order=stage.order if stage else None,
            template_id=template.id,
            assignee_id=assignee.id if assignee else None,
            assignee_name=assignee.name if assignee else None,
            assigned_by="System" if assignee else None,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            checklist=build_checklist(template.steps),
            sla_hours=sla_hours,
            deadline=now + timedelta(hours=sla_hours)
        )

        self._persist(task, "System", {"template": template.name, "workflow": workflow_name})
        return task

    def create_standalone(
        self,
        title: str,
        domain: Union[Domain, str],
        description: str = "",
        priority: Union[Priority, str] = Priority.MEDIUM,
        steps: Optional[List[str]] = None,
        sla_hours: Any = USE_DEFAULT_SLA,
        assignee_id: Optional[str] = None,
        assignee_name: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        entity_name: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> Task:
        """
        Create a task with no template or workflow.

        ``sla_hours`` defaults to the configured SLA; pass None for a task
        without a deadline.
        """
        if not title or not title.strip():
            raise ValidationError("Task title is required", {"field": "title"})
        if sla_hours is USE_DEFAULT_SLA:
            sla_hours = self.default_sla_hours
        if sla_hours is not None and (isinstance(sla_hours, bool) or not isinstance(sla_hours, int)
                                      or sla_hours <= 0):
            raise ValidationError("sla_hours must be a positive integer", {"field": "sla_hours"})

        now = self.clock.now()
        task = Task(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            title=title.strip(),
            description=description or "",
            domain=coerce_enum(Domain, domain, "domain"),
            priority=coerce_enum(Priority, priority, "priority"),
            status=TaskStatus.ASSIGNED if assignee_id else TaskStatus.PENDING,
            assignee_id=assignee_id,
            assignee_name=(assignee_name or assignee_id) if assignee_id else None,
            assigned_by=created_by if assignee_id else None,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            checklist=build_checklist(normalize_steps(steps)),
            sla_hours=sla_hours,
            deadline=now + timedelta(hours=sla_hours) if sla_hours else None
        )

        self._persist(task, created_by or "Manual", {"standalone": True})
        return task

    def _persist(self, task: Task, actor: str, details: dict) -> None:
        self.storage.save(TASKS_TABLE, task.id, task.to_dict())
        self.activity.record(task.id, "created", actor, details)
        if task.assignee_id and self.notifications:
            self.notifications.enqueue(task, "task_assigned")
        logger.debug("Created task %s (%s) status=%s", task.id, task.title, task.status.value)
