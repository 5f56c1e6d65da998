"""
Tests for settings loading and structured logging
"""

import json
import logging

import pytest

from taskflow import config as config_module
from taskflow.config import TaskflowConfig, get_config, reload_config
from taskflow.logging_config import JSONFormatter, setup_logging, log_action


@pytest.fixture
def restore_config():
    """Put the module-level config back after a reload"""
    original = config_module.config
    yield
    config_module.config = original


class TestTaskflowConfig:
    """Environment-driven settings"""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("TASKFLOW_DEFAULT_SLA_HOURS", raising=False)
        cfg = TaskflowConfig(_env_file=None)
        assert cfg.default_sla_hours == 24
        assert cfg.notification_dedup_hours == 4.0
        assert cfg.reminder_first_percent == 50.0
        assert cfg.reminder_second_percent == 80.0
        assert cfg.penalty_cancelled_overdue_amount == "500.00"

    def test_env_prefix(self, monkeypatch, restore_config):
        monkeypatch.setenv("TASKFLOW_DATABASE_URL", "memory://")
        monkeypatch.setenv("TASKFLOW_DEFAULT_SLA_HOURS", "12")
        monkeypatch.setenv("TASKFLOW_SLA_SCAN_ON_START", "false")

        reloaded = reload_config()
        assert reloaded is get_config()
        assert reloaded.database_url == "memory://"
        assert reloaded.default_sla_hours == 12
        assert reloaded.sla_scan_on_start is False


class TestStructuredLogging:
    """JSON formatter and log_action"""

    def test_json_formatter_drops_empty_fields(self):
        record = logging.LogRecord("taskflow.sla", logging.INFO, __file__, 1, "scan done", (), None)
        record.action = "sla_scan"

        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "scan done"
        assert entry["logger"] == "taskflow.sla"
        assert entry["action"] == "sla_scan"
        assert "user_id" not in entry

    def test_log_action_attaches_context(self, caplog):
        logger = logging.getLogger("taskflow.test_actions")
        with caplog.at_level(logging.INFO, logger="taskflow.test_actions"):
            log_action(logger, "info", "penalty approved", user_id="manager",
                       action="approve", resource="penalties", correlation_id="c-1",
                       extra={"amount": "50.00"})

        record = caplog.records[-1]
        assert record.getMessage() == "penalty approved"
        assert record.user_id == "manager"
        assert record.correlation_id == "c-1"
        assert record.extra == {"amount": "50.00"}

    def test_log_action_respects_level(self, caplog):
        logger = logging.getLogger("taskflow.test_quiet")
        logger.setLevel(logging.WARNING)
        with caplog.at_level(logging.WARNING, logger="taskflow.test_quiet"):
            log_action(logger, "info", "not emitted")
        assert not [r for r in caplog.records if r.name == "taskflow.test_quiet"]

    def test_setup_logging_text_to_file(self, tmp_path):
        log_file = tmp_path / "taskflow.log"
        logger = setup_logging("DEBUG", "taskflow.test_setup", "text", str(log_file))
        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert "INFO taskflow.test_setup: hello" in log_file.read_text()

        logger.handlers[0].close()
        logger.removeHandler(logger.handlers[0])
