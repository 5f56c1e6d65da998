"""
Tests for the employee directory and assignment strategies
"""

import random

import pytest

from taskflow.assignment import (
    AssignmentResolver, AssigneeResolver, Assignee, Employee, StorageEmployeeDirectory
)
from taskflow.storage import InMemoryStorage
from taskflow.templates import AssignmentRule, AssignmentRuleType


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def directory(storage):
    directory = StorageEmployeeDirectory(storage)
    directory.register_employee(Employee("e1", "Amal", department="Sales", role="agent",
                                         business_phone="+966500000001"))
    directory.register_employee(Employee("e2", "Badr", department="Sales Support", role="agent"))
    directory.register_employee(Employee("e3", "Chen", department="sales", status="off duty"))
    directory.register_employee(Employee("e4", "Dana", department="Sales", is_deleted=True))
    directory.register_employee(Employee("e5", "Eid", department="Technicians R1", role="technician"))
    return directory


@pytest.fixture
def resolver(directory, storage):
    return AssignmentResolver(directory, storage, random.Random(42))


class TestEmployeeDirectory:
    """Directory lookups"""

    def test_department_match_is_case_insensitive_substring(self, directory):
        ids = {e.id for e in directory.available_in_department("SALES")}
        assert ids == {"e1", "e2"}

    def test_contact_phone_falls_back_to_personal(self):
        employee = Employee("x", "X", personal_phone="+1555")
        assert employee.contact_phone == "+1555"

    def test_get_employee(self, directory):
        assert directory.get_employee("e5").name == "Eid"
        assert directory.get_employee("nobody") is None

    def test_unmodelled_directory_columns_are_ignored(self, storage, directory, resolver):
        storage.save("employees", "e6", {
            "id": "e6", "name": "Farah", "department": "Finance", "role": "accountant",
            "status": "on duty", "is_deleted": False, "email": "farah@example.com",
            "business_phone": None, "personal_phone": "+966500000006", "hired_on": "2023-05-01"
        })

        assert directory.get_employee("e6").contact_phone == "+966500000006"
        assert resolver.resolve(AssignmentRule.department("Finance")) == Assignee("e6", "Farah")
        assert resolver.resolve(AssignmentRule.role("accountant")).id == "e6"


class TestResolvers:
    """Each rule type resolves through its own strategy"""

    def test_manual_returns_none(self, resolver):
        assert resolver.resolve(AssignmentRule.manual()) is None

    def test_department_picks_only_available_employees(self, resolver):
        picks = {resolver.resolve(AssignmentRule.department("Sales")).id for _ in range(50)}
        assert picks <= {"e1", "e2"}
        assert picks == {"e1", "e2"}

    def test_department_without_candidates(self, resolver):
        assert resolver.resolve(AssignmentRule.department("Finance")) is None

    def test_role(self, resolver):
        assignee = resolver.resolve(AssignmentRule.role("technician"))
        assert assignee == Assignee("e5", "Eid")
        assert resolver.resolve(AssignmentRule.role("manager")) is None

    def test_round_robin_rotates_and_persists(self, directory, storage, resolver):
        rule = AssignmentRule.round_robin("Sales")
        picks = [resolver.resolve(rule).id for _ in range(4)]
        assert picks == ["e1", "e2", "e1", "e2"]

        # A fresh resolver continues from the stored cursor
        again = AssignmentResolver(directory, storage)
        assert again.resolve(rule).id == "e1"

    def test_round_robin_whole_directory(self, resolver):
        picks = [resolver.resolve(AssignmentRule.round_robin()).id for _ in range(3)]
        assert picks == ["e1", "e2", "e5"]

    def test_register_custom_resolver(self, resolver):
        class Fixed(AssigneeResolver):
            def resolve(self, rule):
                return Assignee("boss", "The Boss")

        resolver.register(AssignmentRuleType.MANUAL, Fixed())
        assert resolver.resolve(AssignmentRule.manual()).id == "boss"
