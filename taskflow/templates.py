"""
Task Template Module

Reusable task blueprints: checklist, default SLA, priority and the
assignment rule used when a task is materialized from the template.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Any, Union
import logging
import uuid

from .clock import Clock, SystemClock
from .errors import NotFoundError, ValidationError
from .storage import StorageInterface, StorageRecord


logger = logging.getLogger("taskflow.templates")


class Domain(Enum):
    """Business domains a template or workflow belongs to"""
    SALES = "sales"
    CIRCUITS = "circuits"
    MARKETING = "marketing"
    HR = "hr"


class Priority(Enum):
    """Task priority"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        """Sort rank, most urgent first"""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.URGENT: 1,
    Priority.HIGH: 2,
    Priority.MEDIUM: 3,
    Priority.LOW: 4,
}


class AssignmentRuleType(Enum):
    """Closed set of assignment strategies"""
    MANUAL = "manual"
    DEPARTMENT = "department"
    ROLE = "role"
    ROUND_ROBIN = "round-robin"


@dataclass(frozen=True)
class AssignmentRule:
    """
    Assignment rule variant.

    ``parameter`` is the department name for DEPARTMENT, the role name for ROLE,
    and an optional department restricting the pool for ROUND_ROBIN.
    """
    rule_type: AssignmentRuleType = AssignmentRuleType.MANUAL
    parameter: Optional[str] = None

    def __post_init__(self):
        if self.rule_type in (AssignmentRuleType.DEPARTMENT, AssignmentRuleType.ROLE) and not self.parameter:
            raise ValidationError(
                f"Assignment rule '{self.rule_type.value}' requires a parameter",
                {"rule_type": self.rule_type.value}
            )

    @classmethod
    def manual(cls) -> 'AssignmentRule':
        return cls(AssignmentRuleType.MANUAL)

    @classmethod
    def department(cls, name: str) -> 'AssignmentRule':
        return cls(AssignmentRuleType.DEPARTMENT, name)

    @classmethod
    def role(cls, name: str) -> 'AssignmentRule':
        return cls(AssignmentRuleType.ROLE, name)

    @classmethod
    def round_robin(cls, pool: Optional[str] = None) -> 'AssignmentRule':
        return cls(AssignmentRuleType.ROUND_ROBIN, pool)

    def to_dict(self) -> Dict[str, Any]:
        return {"rule_type": self.rule_type.value, "parameter": self.parameter}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'AssignmentRule':
        if not data:
            return cls.manual()
        return cls(AssignmentRuleType(data.get("rule_type", "manual")), data.get("parameter"))


def coerce_enum(enum_cls, value, field_name: str):
    """Accept an enum member or its string value"""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = [member.value for member in enum_cls]
        raise ValidationError(
            f"Invalid {field_name}: {value!r}",
            {"field": field_name, "allowed": allowed}
        )


def normalize_steps(steps: Optional[List[Any]]) -> List[str]:
    """Accept step names or {'name': ..., 'order': ...} dicts; return names in order"""
    if not steps:
        return []
    if all(isinstance(step, dict) for step in steps):
        steps = [step for step in sorted(steps, key=lambda s: s.get("order", 0))]
        names = [step.get("name") for step in steps]
    else:
        names = list(steps)
    for name in names:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Step names must be non-empty strings", {"field": "steps"})
    return [name.strip() for name in names]


@dataclass
class Template(StorageRecord):
    """Task blueprint"""
    name: str
    domain: Domain
    description: str = ""
    default_sla_hours: int = 24
    assignment_rule: AssignmentRule = field(default_factory=AssignmentRule)
    steps: List[str] = field(default_factory=list)
    priority: Priority = Priority.MEDIUM
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['assignment_rule'] = self.assignment_rule.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Template':
        data = dict(data)
        data['domain'] = Domain(data['domain'])
        data['priority'] = Priority(data['priority'])
        data['assignment_rule'] = AssignmentRule.from_dict(data.get('assignment_rule'))
        return super().from_dict(data)


class TemplateManager:
    """Template CRUD"""

    UPDATABLE_FIELDS = (
        "name", "domain", "description", "default_sla_hours",
        "assignment_rule", "steps", "priority", "is_active",
    )

    def __init__(self, storage: StorageInterface, clock: Optional[Clock] = None,
                 default_sla_hours: int = 24):
        self.storage = storage
        self.clock = clock or SystemClock()
        self.default_sla_hours = default_sla_hours
        self.table_name = "templates"

    def create_template(
        self,
        name: str,
        domain: Union[Domain, str],
        steps: Optional[List[Any]] = None,
        description: str = "",
        default_sla_hours: Optional[int] = None,
        assignment_rule: Optional[AssignmentRule] = None,
        priority: Union[Priority, str] = Priority.MEDIUM,
        is_active: bool = True
    ) -> Template:
        """Create a new template"""
        if not name or not name.strip():
            raise ValidationError("Template name is required", {"field": "name"})

        sla = self.default_sla_hours if default_sla_hours is None else default_sla_hours
        self._validate_sla(sla)

        now = self.clock.now()
        template = Template(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name.strip(),
            domain=coerce_enum(Domain, domain, "domain"),
            description=description or "",
            default_sla_hours=sla,
            assignment_rule=assignment_rule or AssignmentRule.manual(),
            steps=normalize_steps(steps),
            priority=coerce_enum(Priority, priority, "priority"),
            is_active=is_active
        )

        self.storage.save(self.table_name, template.id, template.to_dict())
        logger.info("Created template %s (%s)", template.name, template.id)
        return template

    def get_template(self, template_id: str) -> Template:
        """Get a template by ID"""
        data = self.storage.load(self.table_name, template_id)
        if not data:
            raise NotFoundError("template", template_id)
        return Template.from_dict(data)

    def find_template(self, template_id: str) -> Optional[Template]:
        """Get a template by ID, or None"""
        data = self.storage.load(self.table_name, template_id)
        return Template.from_dict(data) if data else None

    def list_templates(self, domain: Optional[Union[Domain, str]] = None,
                       include_inactive: bool = False) -> List[Template]:
        """List templates ordered by domain then name"""
        filters = {}
        if domain is not None:
            filters["domain"] = coerce_enum(Domain, domain, "domain").value
        if not include_inactive:
            filters["is_active"] = True

        templates = [Template.from_dict(row) for row in self.storage.find(self.table_name, filters)]
        templates.sort(key=lambda t: (t.domain.value, t.name))
        return templates

    def update_template(self, template_id: str, **changes) -> Template:
        """Patch any subset of template fields; existing tasks are unaffected"""
        unknown = set(changes) - set(self.UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown template fields: {', '.join(sorted(unknown))}",
                {"fields": sorted(unknown)}
            )

        with self.storage.atomic():
            template = self.get_template(template_id)

            if "name" in changes:
                if not changes["name"] or not changes["name"].strip():
                    raise ValidationError("Template name is required", {"field": "name"})
                template.name = changes["name"].strip()
            if "domain" in changes:
                template.domain = coerce_enum(Domain, changes["domain"], "domain")
            if "description" in changes:
                template.description = changes["description"] or ""
            if "default_sla_hours" in changes:
                self._validate_sla(changes["default_sla_hours"])
                template.default_sla_hours = changes["default_sla_hours"]
            if "assignment_rule" in changes:
                template.assignment_rule = changes["assignment_rule"] or AssignmentRule.manual()
            if "steps" in changes:
                template.steps = normalize_steps(changes["steps"])
            if "priority" in changes:
                template.priority = coerce_enum(Priority, changes["priority"], "priority")
            if "is_active" in changes:
                template.is_active = bool(changes["is_active"])

            template.updated_at = self.clock.now()
            self.storage.save(self.table_name, template.id, template.to_dict())

        logger.info("Updated template %s: %s", template.id, ", ".join(sorted(changes)))
        return template

    def _validate_sla(self, sla_hours: Any) -> None:
        if isinstance(sla_hours, bool) or not isinstance(sla_hours, int) or sla_hours <= 0:
            raise ValidationError(
                "default_sla_hours must be a positive integer",
                {"field": "default_sla_hours", "value": sla_hours}
            )
