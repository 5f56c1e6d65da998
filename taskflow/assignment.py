"""
Assignment Module

Employee directory port and assignment strategies. Each assignment rule
variant has one resolver; AssignmentResolver dispatches on the rule type so
new strategies can be registered without touching call sites.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, fields
from typing import Dict, List, Optional, Any
import logging
import random

from .storage import StorageInterface
from .templates import AssignmentRule, AssignmentRuleType


logger = logging.getLogger("taskflow.assignment")

ON_DUTY = "on duty"


@dataclass
class Employee:
    """Directory entry, owned by the HR subsystem"""
    id: str
    name: str
    department: str = ""
    role: str = ""
    status: str = ON_DUTY
    is_deleted: bool = False
    business_phone: Optional[str] = None
    personal_phone: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return not self.is_deleted and (self.status or "").lower() == ON_DUTY

    @property
    def contact_phone(self) -> Optional[str]:
        return self.business_phone or self.personal_phone

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Employee':
        # Rows come from the HR subsystem and may carry columns we do not model
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class Assignee:
    id: str
    name: str


class EmployeeDirectory(ABC):
    """Read-only employee lookup used by assignment and notifications"""

    @abstractmethod
    def get_employee(self, employee_id: str) -> Optional[Employee]:
        pass

    @abstractmethod
    def list_employees(self) -> List[Employee]:
        pass

    def available_in_department(self, department: str) -> List[Employee]:
        """On-duty employees whose department contains ``department`` (case-insensitive)"""
        needle = department.lower()
        return [
            e for e in self.list_employees()
            if e.is_available and needle in (e.department or "").lower()
        ]

    def available_with_role(self, role: str) -> List[Employee]:
        needle = role.lower()
        return [
            e for e in self.list_employees()
            if e.is_available and (e.role or "").lower() == needle
        ]


class StorageEmployeeDirectory(EmployeeDirectory):
    """Directory backed by the ``employees`` table of the shared store"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "employees"

    def get_employee(self, employee_id: str) -> Optional[Employee]:
        data = self.storage.load(self.table_name, employee_id)
        return Employee.from_dict(data) if data else None

    def list_employees(self) -> List[Employee]:
        employees = [Employee.from_dict(row) for row in self.storage.load_all(self.table_name)]
        employees.sort(key=lambda e: e.id)
        return employees

    def register_employee(self, employee: Employee) -> Employee:
        """Write a directory entry (used by the directory owner and by fixtures)"""
        self.storage.save(self.table_name, employee.id, employee.to_dict())
        return employee


class AssigneeResolver(ABC):
    """Strategy contract: resolve a rule to an assignee or None, never raise"""

    @abstractmethod
    def resolve(self, rule: AssignmentRule) -> Optional[Assignee]:
        pass


class ManualResolver(AssigneeResolver):
    """Manual rules leave the task unassigned"""

    def resolve(self, rule: AssignmentRule) -> Optional[Assignee]:
        return None


class DepartmentResolver(AssigneeResolver):
    """Uniform random pick among on-duty employees of a department"""

    def __init__(self, directory: EmployeeDirectory, rng: Optional[random.Random] = None):
        self.directory = directory
        self.rng = rng or random.Random()

    def resolve(self, rule: AssignmentRule) -> Optional[Assignee]:
        candidates = self.directory.available_in_department(rule.parameter)
        if not candidates:
            return None
        chosen = self.rng.choice(candidates)
        return Assignee(chosen.id, chosen.name)


class RoleResolver(AssigneeResolver):
    """Uniform random pick among on-duty employees holding a role"""

    def __init__(self, directory: EmployeeDirectory, rng: Optional[random.Random] = None):
        self.directory = directory
        self.rng = rng or random.Random()

    def resolve(self, rule: AssignmentRule) -> Optional[Assignee]:
        candidates = self.directory.available_with_role(rule.parameter)
        if not candidates:
            return None
        chosen = self.rng.choice(candidates)
        return Assignee(chosen.id, chosen.name)


class RoundRobinResolver(AssigneeResolver):
    """
    Rotates through on-duty employees ordered by id.

    The cursor for each pool is persisted in ``assignment_cursors`` so the
    rotation survives restarts. A rule parameter restricts the pool to a
    department.
    """

    def __init__(self, directory: EmployeeDirectory, storage: StorageInterface):
        self.directory = directory
        self.storage = storage
        self.table_name = "assignment_cursors"

    def resolve(self, rule: AssignmentRule) -> Optional[Assignee]:
        if rule.parameter:
            candidates = self.directory.available_in_department(rule.parameter)
        else:
            candidates = [e for e in self.directory.list_employees() if e.is_available]
        if not candidates:
            return None

        candidates.sort(key=lambda e: e.id)
        pool_key = (rule.parameter or "*").lower()
        with self.storage.atomic():
            cursor = self.storage.load(self.table_name, pool_key) or {"position": 0}
            chosen = candidates[cursor["position"] % len(candidates)]
            self.storage.save(self.table_name, pool_key, {"position": cursor["position"] + 1})
        return Assignee(chosen.id, chosen.name)


class AssignmentResolver:
    """Dispatches an assignment rule to the resolver registered for its type"""

    def __init__(self, directory: EmployeeDirectory, storage: StorageInterface,
                 rng: Optional[random.Random] = None):
        rng = rng or random.Random()
        self._resolvers: Dict[AssignmentRuleType, AssigneeResolver] = {
            AssignmentRuleType.MANUAL: ManualResolver(),
            AssignmentRuleType.DEPARTMENT: DepartmentResolver(directory, rng),
            AssignmentRuleType.ROLE: RoleResolver(directory, rng),
            AssignmentRuleType.ROUND_ROBIN: RoundRobinResolver(directory, storage),
        }

    def register(self, rule_type: AssignmentRuleType, resolver: AssigneeResolver) -> None:
        """Install or replace the resolver for a rule type"""
        self._resolvers[rule_type] = resolver

    def resolve(self, rule: AssignmentRule) -> Optional[Assignee]:
        resolver = self._resolvers.get(rule.rule_type)
        if resolver is None:
            logger.warning("No resolver registered for rule type %s", rule.rule_type.value)
            return None
        assignee = resolver.resolve(rule)
        if assignee is None and rule.rule_type != AssignmentRuleType.MANUAL:
            logger.info("No eligible assignee for rule %s(%s)", rule.rule_type.value, rule.parameter)
        return assignee
