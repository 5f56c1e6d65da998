"""
Error Taxonomy Module

Typed failures raised by engine operations. The interface layer in front of
the engine translates these into user-facing responses.
"""

from typing import Any, Dict, Optional


class TaskflowError(Exception):
    """Base exception for all engine errors"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(TaskflowError, LookupError):
    """Raised when a template, definition, instance, task or penalty is absent"""

    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} not found")


class InvalidTransitionError(TaskflowError):
    """Raised when a state machine guard rejects an operation"""

    def __init__(self, resource: str, resource_id: Any, action: str,
                 current_status: Optional[str] = None):
        self.resource = resource
        self.resource_id = resource_id
        self.action = action
        self.current_status = current_status
        if current_status is None:
            message = f"cannot {action} {resource} {resource_id}"
        else:
            message = f"cannot {action} {resource} {resource_id} in status {current_status}"
        super().__init__(message)


class ValidationError(TaskflowError, ValueError):
    """Raised when input is missing a required field or is malformed"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.details = details or {}
        super().__init__(message)


class StorageUnavailableError(TaskflowError):
    """Raised when the backing store is unreachable, locked or closed"""

    def __init__(self, message: str = "storage unavailable", cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)
