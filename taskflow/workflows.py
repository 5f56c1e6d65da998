"""
Workflow Engine Module

Workflow definitions chain templates into ordered stages. Starting a
definition against a business entity creates an instance; completing or
cancelling the last open task of the current stage advances the instance
(stage barrier) until no stage is left.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any, Union
import logging
import uuid

from .clock import Clock, SystemClock
from .errors import NotFoundError, InvalidTransitionError, ValidationError
from .factory import TaskFactory
from .storage import StorageInterface, StorageRecord, parse_datetime
from .tasks import Task, TaskManager
from .templates import Domain, TemplateManager, coerce_enum


logger = logging.getLogger("taskflow.workflows")


class TriggerType(Enum):
    """How a workflow gets started"""
    MANUAL = "manual"
    AUTO_ON_CREATE = "auto_on_create"
    AUTO_ON_STATUS = "auto_on_status"
    SCHEDULED = "scheduled"


class InstanceStatus(Enum):
    """Workflow instance status"""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PAUSED = "paused"


TERMINAL_INSTANCE_STATUSES = frozenset({InstanceStatus.COMPLETED, InstanceStatus.CANCELLED})


@dataclass
class StageDefinition:
    """One stage of a workflow definition"""
    order: int
    template_id: str
    wait_for_previous: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StageDefinition':
        return cls(
            order=int(data['order']),
            template_id=data['template_id'],
            wait_for_previous=data.get('wait_for_previous', True) is not False
        )


@dataclass
class WorkflowDefinition(StorageRecord):
    """Ordered chain of template stages"""
    name: str
    domain: Domain
    stages: List[StageDefinition] = field(default_factory=list)
    description: str = ""
    trigger_type: TriggerType = TriggerType.MANUAL
    trigger_config: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    created_by: Optional[str] = None

    def get_stage(self, order: int) -> Optional[StageDefinition]:
        for stage in self.stages:
            if stage.order == order:
                return stage
        return None

    def next_stage(self, order: int) -> Optional[StageDefinition]:
        return self.get_stage(order + 1)

    def leading_stages(self) -> List[StageDefinition]:
        """Stages that run as soon as the workflow starts"""
        leading = []
        for stage in sorted(self.stages, key=lambda s: s.order):
            if stage.order > 1 and stage.wait_for_previous:
                break
            leading.append(stage)
        return leading

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowDefinition':
        data = dict(data)
        data['domain'] = Domain(data['domain'])
        data['trigger_type'] = TriggerType(data.get('trigger_type', 'manual'))
        data['stages'] = [StageDefinition.from_dict(s) for s in data.get('stages', [])]
        return super().from_dict(data)


@dataclass
class WorkflowInstance(StorageRecord):
    """One run of a definition against a business entity"""
    definition_id: str
    workflow_name: str
    domain: Domain
    entity_type: str
    entity_id: str
    entity_name: Optional[str] = None
    status: InstanceStatus = InstanceStatus.ACTIVE
    current_stage: int = 1
    started_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    notes: Optional[str] = None

    @property
    def started_at(self) -> datetime:
        return self.created_at

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INSTANCE_STATUSES

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowInstance':
        data = dict(data)
        data['domain'] = Domain(data['domain'])
        data['status'] = InstanceStatus(data['status'])
        data['completed_at'] = parse_datetime(data.get('completed_at'))
        data['cancelled_at'] = parse_datetime(data.get('cancelled_at'))
        return super().from_dict(data)


class WorkflowEngine:
    """Definition CRUD and instance orchestration"""

    UPDATABLE_FIELDS = (
        "name", "domain", "description", "stages",
        "trigger_type", "trigger_config", "is_active",
    )

    def __init__(
        self,
        storage: StorageInterface,
        templates: TemplateManager,
        factory: TaskFactory,
        task_manager: TaskManager,
        clock: Optional[Clock] = None
    ):
        self.storage = storage
        self.templates = templates
        self.factory = factory
        self.task_manager = task_manager
        self.clock = clock or SystemClock()
        self.definitions_table = "workflow_definitions"
        self.instances_table = "workflow_instances"

    # Definitions

    def create_definition(
        self,
        name: str,
        domain: Union[Domain, str],
        stages: List[Union[StageDefinition, Dict[str, Any]]],
        description: str = "",
        trigger_type: Union[TriggerType, str] = TriggerType.MANUAL,
        trigger_config: Optional[Dict[str, Any]] = None,
        created_by: Optional[str] = None,
        is_active: bool = True
    ) -> WorkflowDefinition:
        """Create a new workflow definition"""
        if not name or not name.strip():
            raise ValidationError("Workflow name is required", {"field": "name"})

        now = self.clock.now()
        definition = WorkflowDefinition(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name.strip(),
            domain=coerce_enum(Domain, domain, "domain"),
            stages=self._coerce_stages(stages),
            description=description or "",
            trigger_type=coerce_enum(TriggerType, trigger_type, "trigger_type"),
            trigger_config=trigger_config or {},
            is_active=is_active,
            created_by=created_by
        )
        self._validate_definition(definition)

        self.storage.save(self.definitions_table, definition.id, definition.to_dict())
        logger.info("Created workflow definition %s (%d stages)", definition.name, len(definition.stages))
        return definition

    def get_definition(self, definition_id: str) -> WorkflowDefinition:
        """Get a workflow definition by ID"""
        data = self.storage.load(self.definitions_table, definition_id)
        if not data:
            raise NotFoundError("workflow definition", definition_id)
        return WorkflowDefinition.from_dict(data)

    def list_definitions(self, domain: Optional[Union[Domain, str]] = None,
                         trigger_type: Optional[Union[TriggerType, str]] = None,
                         include_inactive: bool = False) -> List[WorkflowDefinition]:
        """List workflow definitions ordered by domain then name"""
        filters: Dict[str, Any] = {}
        if domain is not None:
            filters["domain"] = coerce_enum(Domain, domain, "domain").value
        if trigger_type is not None:
            filters["trigger_type"] = coerce_enum(TriggerType, trigger_type, "trigger_type").value
        if not include_inactive:
            filters["is_active"] = True

        definitions = [
            WorkflowDefinition.from_dict(row)
            for row in self.storage.find(self.definitions_table, filters)
        ]
        definitions.sort(key=lambda d: (d.domain.value, d.name))
        return definitions

    def update_definition(self, definition_id: str, **changes) -> WorkflowDefinition:
        """Patch a definition; running instances read the stored stages on advancement"""
        unknown = set(changes) - set(self.UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown workflow definition fields: {', '.join(sorted(unknown))}",
                {"fields": sorted(unknown)}
            )

        with self.storage.atomic():
            definition = self.get_definition(definition_id)
            if "name" in changes:
                if not changes["name"] or not changes["name"].strip():
                    raise ValidationError("Workflow name is required", {"field": "name"})
                definition.name = changes["name"].strip()
            if "domain" in changes:
                definition.domain = coerce_enum(Domain, changes["domain"], "domain")
            if "description" in changes:
                definition.description = changes["description"] or ""
            if "stages" in changes:
                definition.stages = self._coerce_stages(changes["stages"])
            if "trigger_type" in changes:
                definition.trigger_type = coerce_enum(TriggerType, changes["trigger_type"], "trigger_type")
            if "trigger_config" in changes:
                definition.trigger_config = changes["trigger_config"] or {}
            if "is_active" in changes:
                definition.is_active = bool(changes["is_active"])

            self._validate_definition(definition)
            definition.updated_at = self.clock.now()
            self.storage.save(self.definitions_table, definition.id, definition.to_dict())

        return definition

    def activate_definition(self, definition_id: str) -> WorkflowDefinition:
        """Activate a workflow definition"""
        return self.update_definition(definition_id, is_active=True)

    def deactivate_definition(self, definition_id: str) -> WorkflowDefinition:
        """Deactivate a workflow definition; running instances continue"""
        return self.update_definition(definition_id, is_active=False)

    # Instances

    def start_workflow(
        self,
        definition_id: str,
        entity_type: str,
        entity_id: str,
        entity_name: Optional[str] = None,
        started_by: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Start a workflow against a business entity.

        Creates the instance and the tasks of every leading stage in one
        transaction.

        Returns:
            {"instance": WorkflowInstance, "tasks": [Task, ...]}
        """
        if not definition_id:
            raise ValidationError("definition_id is required", {"field": "definition_id"})
        if not entity_type or not entity_id:
            raise ValidationError(
                "entity_type and entity_id are required",
                {"fields": ["entity_type", "entity_id"]}
            )

        with self.storage.atomic():
            definition = self.get_definition(definition_id)
            if not definition.is_active:
                raise InvalidTransitionError("workflow definition", definition_id, "start", "inactive")

            now = self.clock.now()
            instance = WorkflowInstance(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                definition_id=definition.id,
                workflow_name=definition.name,
                domain=definition.domain,
                entity_type=entity_type,
                entity_id=str(entity_id),
                entity_name=entity_name,
                started_by=started_by
            )
            self.storage.save(self.instances_table, instance.id, instance.to_dict())

            tasks = []
            for stage in definition.leading_stages():
                tasks.append(self._spawn_stage(definition, instance, stage))

        logger.info(
            "Started workflow %s for %s %s (instance %s, %d tasks)",
            definition.name, entity_type, entity_id, instance.id, len(tasks)
        )
        return {"instance": instance, "tasks": tasks}

    def advance(self, task: Task) -> Optional[WorkflowInstance]:
        """
        Stage-barrier check after a task reaches a terminal state.

        No-op while any task of the current stage is open, or when the
        instance is paused or terminal.
        """
        if not task.workflow_instance_id:
            return None

        with self.storage.atomic():
            instance = self._find_instance(task.workflow_instance_id)
            if instance is None:
                logger.warning("Task %s references missing instance %s", task.id, task.workflow_instance_id)
                return None
            return self._advance_instance(instance)

    def get_instance(self, instance_id: str) -> WorkflowInstance:
        """Get a workflow instance by ID"""
        instance = self._find_instance(instance_id)
        if instance is None:
            raise NotFoundError("workflow instance", instance_id)
        return instance

    def get_instance_tasks(self, instance_id: str) -> List[Task]:
        self.get_instance(instance_id)
        return self.task_manager.tasks_for_instance(instance_id)

    def list_instances(
        self,
        status: Optional[Union[InstanceStatus, str]] = None,
        domain: Optional[Union[Domain, str]] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        definition_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[WorkflowInstance]:
        """List instances, newest first"""
        filters: Dict[str, Any] = {}
        if status is not None:
            filters["status"] = coerce_enum(InstanceStatus, status, "status").value
        if domain is not None:
            filters["domain"] = coerce_enum(Domain, domain, "domain").value
        if entity_type is not None:
            filters["entity_type"] = entity_type
        if entity_id is not None:
            filters["entity_id"] = str(entity_id)
        if definition_id is not None:
            filters["definition_id"] = definition_id

        instances = [
            WorkflowInstance.from_dict(row)
            for row in self.storage.find(self.instances_table, filters)
        ]
        instances.sort(key=lambda i: i.created_at, reverse=True)
        return instances[:limit] if limit else instances

    def cancel_workflow(self, instance_id: str, cancelled_by: Optional[str] = None,
                        reason: Optional[str] = None) -> WorkflowInstance:
        """Cancel an instance and every open task it owns"""
        with self.storage.atomic():
            instance = self.get_instance(instance_id)
            if instance.is_terminal:
                raise InvalidTransitionError("workflow instance", instance_id, "cancel", instance.status.value)

            previous = instance.status
            now = self.clock.now()
            instance.status = InstanceStatus.CANCELLED
            instance.cancelled_at = now
            instance.cancelled_by = cancelled_by
            instance.notes = reason
            self._save_instance(instance, previous, "cancel")

            for task in self.task_manager.tasks_for_instance(instance.id):
                if task.is_open:
                    self.task_manager.cancel_task(
                        task.id, cancelled_by, reason or "Workflow cancelled")

        logger.info("Cancelled workflow instance %s", instance_id)
        return instance

    def pause_workflow(self, instance_id: str, paused_by: Optional[str] = None) -> WorkflowInstance:
        """Pause an active instance; paused instances do not advance"""
        with self.storage.atomic():
            instance = self.get_instance(instance_id)
            if instance.status != InstanceStatus.ACTIVE:
                raise InvalidTransitionError("workflow instance", instance_id, "pause", instance.status.value)
            instance.status = InstanceStatus.PAUSED
            self._save_instance(instance, InstanceStatus.ACTIVE, "pause")

        logger.info("Paused workflow instance %s by %s", instance_id, paused_by)
        return instance

    def resume_workflow(self, instance_id: str, resumed_by: Optional[str] = None) -> WorkflowInstance:
        """Resume a paused instance and catch up on stages finished meanwhile"""
        with self.storage.atomic():
            instance = self.get_instance(instance_id)
            if instance.status != InstanceStatus.PAUSED:
                raise InvalidTransitionError("workflow instance", instance_id, "resume", instance.status.value)
            instance.status = InstanceStatus.ACTIVE
            self._save_instance(instance, InstanceStatus.PAUSED, "resume")
            instance = self._advance_instance(instance)

        logger.info("Resumed workflow instance %s by %s", instance_id, resumed_by)
        return instance

    # Internals

    def _advance_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        if instance.status != InstanceStatus.ACTIVE:
            return instance

        definition = self.get_definition(instance.definition_id)
        tasks = self.task_manager.tasks_for_instance(instance.id)

        while True:
            stage_tasks = [t for t in tasks if t.stage_order == instance.current_stage]
            if any(t.is_open for t in stage_tasks):
                return instance

            next_stage = definition.next_stage(instance.current_stage)
            now = self.clock.now()
            if next_stage is None:
                instance.status = InstanceStatus.COMPLETED
                instance.completed_at = now
                self._save_instance(instance, InstanceStatus.ACTIVE, "complete")
                logger.info("Workflow instance %s completed", instance.id)
                return instance

            instance.current_stage = next_stage.order
            self._save_instance(instance, InstanceStatus.ACTIVE, "advance")

            # Parallel stages may already have their tasks from the start
            if not any(t.stage_order == next_stage.order for t in tasks):
                self._spawn_stage(definition, instance, next_stage)
                logger.info("Workflow instance %s advanced to stage %d", instance.id, next_stage.order)
                return instance

    def _spawn_stage(self, definition: WorkflowDefinition, instance: WorkflowInstance,
                     stage: StageDefinition) -> Task:
        return self.factory.create_from_template(
            stage.template_id,
            instance=instance,
            stage=stage,
            workflow_name=definition.name
        )

    def _find_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        data = self.storage.load(self.instances_table, instance_id)
        return WorkflowInstance.from_dict(data) if data else None

    def _save_instance(self, instance: WorkflowInstance, previous: InstanceStatus, verb: str) -> None:
        instance.updated_at = self.clock.now()
        if not self.storage.save_if(self.instances_table, instance.id, instance.to_dict(),
                                    {"status": previous.value}):
            raise InvalidTransitionError("workflow instance", instance.id, verb)

    def _coerce_stages(self, stages: List[Union[StageDefinition, Dict[str, Any]]]) -> List[StageDefinition]:
        coerced = []
        for stage in stages or []:
            if isinstance(stage, StageDefinition):
                coerced.append(stage)
            elif isinstance(stage, dict):
                if not stage.get("template_id") or stage.get("order") is None:
                    raise ValidationError("Each stage needs an order and a template_id", {"stage": stage})
                coerced.append(StageDefinition.from_dict(stage))
            else:
                raise ValidationError("Invalid stage definition", {"stage": repr(stage)})
        return sorted(coerced, key=lambda s: s.order)

    def _validate_definition(self, definition: WorkflowDefinition) -> None:
        """Validate a workflow definition"""
        if not definition.stages:
            raise ValidationError("Workflow must have at least one stage", {"field": "stages"})

        orders = [stage.order for stage in definition.stages]
        if len(set(orders)) != len(orders):
            raise ValidationError("Stage orders must be unique", {"orders": orders})

        if min(orders) != 1:
            raise ValidationError("First stage must be numbered 1", {"orders": orders})

        for i, order in enumerate(sorted(orders)):
            if order != i + 1:
                raise ValidationError("Stage orders must be consecutive", {"orders": orders})

        for stage in definition.stages:
            if self.templates.find_template(stage.template_id) is None:
                raise ValidationError(
                    f"Stage {stage.order} references unknown template {stage.template_id}",
                    {"stage": stage.order, "template_id": stage.template_id}
                )
