"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class TaskflowConfig(BaseSettings):
    """Taskflow engine configuration"""

    # Storage configuration
    database_url: str = "sqlite:///taskflow.db"  # memory:// for the in-memory store
    storage_timeout_seconds: float = 5.0

    # SLA configuration
    default_sla_hours: int = 24
    sla_scan_interval_seconds: int = 300  # 5 minutes
    sla_scan_on_start: bool = True
    reminder_first_percent: float = 50.0
    reminder_second_percent: float = 80.0

    # Notification configuration
    notification_dedup_hours: float = 4.0
    notification_webhook_url: str = ""  # Empty = log-only delivery
    notification_webhook_timeout: float = 5.0

    # Penalty configuration
    penalty_minor_amount: str = "50.00"
    penalty_moderate_amount: str = "150.00"
    penalty_severe_amount: str = "300.00"
    penalty_cancelled_overdue_amount: str = "500.00"
    penalty_minor_max_hours: float = 24.0
    penalty_moderate_max_hours: float = 72.0

    # Reporting configuration
    leaderboard_limit: int = 50
    activity_feed_limit: int = 30

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    class Config:
        env_prefix = "TASKFLOW_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = TaskflowConfig()


def get_config() -> TaskflowConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> TaskflowConfig:
    """Reload configuration from environment"""
    global config
    config = TaskflowConfig()
    return config
