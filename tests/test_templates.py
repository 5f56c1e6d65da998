"""
Tests for task templates and assignment rules
"""

import pytest

from taskflow.clock import ManualClock
from taskflow.errors import NotFoundError, ValidationError
from taskflow.storage import InMemoryStorage
from taskflow.templates import (
    TemplateManager, Template, Domain, Priority, AssignmentRule, AssignmentRuleType
)


@pytest.fixture
def storage():
    """Create in-memory storage for testing"""
    return InMemoryStorage()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def templates(storage, clock):
    return TemplateManager(storage, clock)


class TestAssignmentRule:
    """Assignment rule variant"""

    def test_department_requires_parameter(self):
        with pytest.raises(ValidationError, match="requires a parameter"):
            AssignmentRule(AssignmentRuleType.DEPARTMENT)

    def test_role_requires_parameter(self):
        with pytest.raises(ValidationError):
            AssignmentRule.role("")

    def test_round_robin_pool_is_optional(self):
        rule = AssignmentRule.round_robin()
        assert rule.rule_type == AssignmentRuleType.ROUND_ROBIN
        assert rule.parameter is None

    def test_dict_round_trip_and_default(self):
        rule = AssignmentRule.department("Sales")
        assert AssignmentRule.from_dict(rule.to_dict()) == rule
        assert AssignmentRule.from_dict(None) == AssignmentRule.manual()


class TestTemplateCreation:
    """Creating templates"""

    def test_create_template(self, templates, clock):
        template = templates.create_template(
            name="Install Devices",
            domain="circuits",
            description="Physical installation",
            default_sla_hours=48,
            assignment_rule=AssignmentRule.department("Technicians R1"),
            steps=["Travel to site", "Install router", "Take photo proof"],
            priority="urgent"
        )

        assert template.domain == Domain.CIRCUITS
        assert template.priority == Priority.URGENT
        assert template.steps == ["Travel to site", "Install router", "Take photo proof"]
        assert template.created_at == clock.now()

        loaded = templates.get_template(template.id)
        assert loaded == template

    def test_steps_given_as_ordered_dicts(self, templates):
        template = templates.create_template(
            name="Qualify Lead", domain=Domain.SALES,
            steps=[{"name": "Second", "order": 2}, {"name": "First", "order": 1}]
        )
        assert template.steps == ["First", "Second"]

    def test_default_sla_applied(self, storage, clock):
        manager = TemplateManager(storage, clock, default_sla_hours=12)
        template = manager.create_template(name="Quick", domain="hr")
        assert template.default_sla_hours == 12

    def test_validation(self, templates):
        with pytest.raises(ValidationError, match="name is required"):
            templates.create_template(name="  ", domain="sales")
        with pytest.raises(ValidationError, match="Invalid domain"):
            templates.create_template(name="X", domain="finance")
        with pytest.raises(ValidationError, match="positive integer"):
            templates.create_template(name="X", domain="sales", default_sla_hours=0)
        with pytest.raises(ValidationError, match="Step names"):
            templates.create_template(name="X", domain="sales", steps=["ok", ""])

    def test_get_missing_template(self, templates):
        with pytest.raises(NotFoundError) as exc_info:
            templates.get_template("nope")
        assert exc_info.value.resource == "template"
        assert templates.find_template("nope") is None


class TestTemplateListing:
    """Listing and updating templates"""

    def test_list_ordered_by_domain_then_name(self, templates):
        templates.create_template(name="Test Circuit", domain="circuits")
        templates.create_template(name="Qualify Lead", domain="sales")
        templates.create_template(name="Create Billing", domain="circuits")

        names = [t.name for t in templates.list_templates()]
        assert names == ["Create Billing", "Test Circuit", "Qualify Lead"]
        assert [t.name for t in templates.list_templates(domain="sales")] == ["Qualify Lead"]

    def test_inactive_hidden_but_resolvable(self, templates):
        template = templates.create_template(name="Old", domain="hr")
        templates.update_template(template.id, is_active=False)

        assert templates.list_templates() == []
        assert len(templates.list_templates(include_inactive=True)) == 1
        assert templates.get_template(template.id).is_active is False

    def test_update_patches_subset(self, templates, clock):
        template = templates.create_template(name="Survey", domain="sales", default_sla_hours=24)
        clock.advance(hours=1)

        updated = templates.update_template(
            template.id, default_sla_hours=48, steps=["Visit site"], priority="high"
        )

        assert updated.default_sla_hours == 48
        assert updated.steps == ["Visit site"]
        assert updated.priority == Priority.HIGH
        assert updated.name == "Survey"
        assert updated.updated_at > updated.created_at

    def test_update_rejects_unknown_fields(self, templates):
        template = templates.create_template(name="Survey", domain="sales")
        with pytest.raises(ValidationError, match="Unknown template fields"):
            templates.update_template(template.id, colour="blue")

    def test_update_missing_template(self, templates):
        with pytest.raises(NotFoundError):
            templates.update_template("nope", name="x")
