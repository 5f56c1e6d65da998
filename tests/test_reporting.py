"""
Tests for dashboard reporting
"""

import random

import pytest

from taskflow.assignment import Employee
from taskflow.clock import ManualClock
from taskflow.config import TaskflowConfig
from taskflow.storage import InMemoryStorage
from taskflow.system import TaskflowSystem
from taskflow.templates import AssignmentRule


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def system(clock):
    system = TaskflowSystem(
        config=TaskflowConfig(database_url="memory://", activity_feed_limit=5),
        storage=InMemoryStorage(), clock=clock, rng=random.Random(2)
    )
    system.directory.register_employee(Employee("emp_1", "Amal", department="Sales"))
    system.directory.register_employee(Employee("emp_2", "Badr", department="HR"))
    return system


@pytest.fixture
def reporter(system):
    return system.reporter


@pytest.fixture
def pipeline(system):
    """Two-stage sales workflow"""
    qualify = system.templates.create_template(
        name="Qualify Lead", domain="sales", assignment_rule=AssignmentRule.department("Sales"))
    proposal = system.templates.create_template(
        name="Send Proposal", domain="sales", assignment_rule=AssignmentRule.department("Sales"))
    return system.workflow_engine.create_definition(
        name="Sales Pipeline", domain="sales",
        stages=[{"order": 1, "template_id": qualify.id}, {"order": 2, "template_id": proposal.id}]
    )


class TestDomainViews:
    """Per-domain counts"""

    def test_overview_counts(self, reporter, system, clock):
        manager = system.task_manager
        done = manager.create_standalone_task("Done", "sales", assignee_id="emp_1")
        manager.create_standalone_task("Late", "sales", sla_hours=1)
        manager.create_standalone_task("Open", "sales")
        manager.create_standalone_task("Hire", "hr")
        manager.complete_task(done.id, "emp_1")
        clock.advance(hours=2)

        overview = reporter.domain_overview()
        assert set(overview) == {"sales", "circuits", "marketing", "hr"}
        assert overview["sales"] == {
            "active": 2, "overdue": 1, "completed": 1, "total": 3, "completion_rate": 33
        }
        assert overview["circuits"]["total"] == 0
        assert overview["circuits"]["completion_rate"] == 0

    def test_domain_detail(self, reporter, system, pipeline, clock):
        started = system.workflow_engine.start_workflow(pipeline.id, "lead", "L-1", "Acme")
        system.task_manager.create_standalone_task("Late", "sales", sla_hours=1)
        system.task_manager.create_standalone_task("Hire", "hr")
        clock.advance(hours=2)

        detail = reporter.domain_detail("sales")
        assert detail["domain"] == "sales"
        assert len(detail["tasks"]) == 2
        assert [i.id for i in detail["instances"]] == [started["instance"].id]
        assert [t.title for t in detail["overdue"]] == ["Late"]


class TestPeopleViews:
    """Leaderboard and employee stats"""

    def test_leaderboard_ranks(self, reporter, system, clock):
        manager = system.task_manager
        for title in ("a", "b"):
            task = manager.create_standalone_task(title, "sales", assignee_id="emp_1")
            manager.start_task(task.id, "emp_1")
            clock.advance(hours=1)
            manager.complete_task(task.id, "emp_1")
        hr_task = manager.create_standalone_task("c", "hr", assignee_id="emp_2")
        manager.complete_task(hr_task.id, "emp_2")

        board = reporter.leaderboard()
        assert [(row["rank"], row["employee_id"]) for row in board] == [(1, "emp_1"), (2, "emp_2")]
        assert board[0]["tasks_completed"] == 2
        assert board[0]["on_time_rate"] == 100
        assert board[0]["avg_completion_hours"] == 1.0

    def test_employee_stats_default(self, reporter):
        assert reporter.employee_stats("nobody").tasks_completed == 0


class TestJourneyAndFeed:
    """Entity history and the activity feed"""

    def test_entity_journey(self, reporter, system, pipeline, clock):
        first = system.workflow_engine.start_workflow(pipeline.id, "lead", "L-1")
        system.task_manager.complete_task(first["tasks"][0].id, "emp_1")
        clock.advance(hours=1)
        system.workflow_engine.start_workflow(pipeline.id, "lead", "L-2")

        journey = reporter.entity_journey("lead", "L-1")
        assert len(journey) == 1
        assert journey[0]["workflow_name"] == "Sales Pipeline"
        assert [t.title for t in journey[0]["tasks"]] == ["Qualify Lead", "Send Proposal"]

    def test_recent_activity_uses_configured_limit(self, reporter, system, clock):
        task = system.task_manager.create_standalone_task("Feed me", "marketing", steps=["a", "b", "c"])
        for order in (1, 2, 3):
            clock.advance(minutes=1)
            system.task_manager.complete_step(task.id, order, "emp_1")
        clock.advance(minutes=1)
        system.task_manager.complete_task(task.id, "emp_1")

        feed = reporter.recent_activity()
        assert len(feed) == 5
        assert feed[0]["action"] == "completed"
        assert feed[0]["task_title"] == "Feed me"
        assert feed[0]["domain"] == "marketing"
        assert feed[-1]["action"] == "created"
        assert len(reporter.recent_activity(limit=2)) == 2
