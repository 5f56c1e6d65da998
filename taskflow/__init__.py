"""
Taskflow Engine

A workflow and task lifecycle engine: templates chained into workflow
definitions, stage-barrier advancement, deadline-driven escalation with
tiered penalties, deduplicated notifications and per-employee statistics.
"""

__version__ = "1.0.0"
