"""
Tests for the default template and workflow catalogue
"""

import random

import pytest

from taskflow.clock import ManualClock
from taskflow.config import TaskflowConfig
from taskflow.seed import DEFAULT_TEMPLATES, DEFAULT_WORKFLOWS, seed_defaults
from taskflow.storage import InMemoryStorage
from taskflow.system import TaskflowSystem
from taskflow.templates import AssignmentRuleType


@pytest.fixture
def system():
    return TaskflowSystem(
        config=TaskflowConfig(database_url="memory://"),
        storage=InMemoryStorage(), clock=ManualClock(), rng=random.Random(0)
    )


class TestSeedDefaults:
    """Installing the catalogue"""

    def test_seeds_every_domain(self, system):
        results = seed_defaults(system)
        assert results == {"templates": len(DEFAULT_TEMPLATES), "workflows": len(DEFAULT_WORKFLOWS)}

        templates = system.templates.list_templates()
        assert {t.domain.value for t in templates} == {"sales", "circuits", "marketing", "hr"}
        assert all(t.assignment_rule.rule_type == AssignmentRuleType.DEPARTMENT for t in templates)

        names = {d.name for d in system.workflow_engine.list_definitions()}
        assert "Circuit Activation" in names
        assert "Employee Onboarding" in names

    def test_second_run_is_a_no_op(self, system):
        seed_defaults(system)
        assert seed_defaults(system) == {"templates": 0, "workflows": 0}
        assert len(system.templates.list_templates()) == len(DEFAULT_TEMPLATES)

    def test_seeded_workflow_runs(self, system):
        seed_defaults(system)
        definition = next(
            d for d in system.workflow_engine.list_definitions() if d.name == "Circuit Deactivation"
        )
        started = system.workflow_engine.start_workflow(definition.id, "circuit", "CIR-1")

        assert [t.title for t in started["tasks"]] == ["Stop Billing"]
        # Nobody is registered, so the department rule leaves the task pending
        assert started["tasks"][0].assignee_id is None
