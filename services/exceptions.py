"""
Scheduling Errors
Domain exceptions raised by the dose scheduling core
"""


class SchedulingError(Exception):
    """Base class for scheduling core errors"""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class NotFound(SchedulingError):
    """Referenced entity is absent or not owned by the caller"""


class InvalidStateTransition(SchedulingError):
    """Dose has already been resolved"""

    def __init__(self, dose_id: int, current_status: str):
        super().__init__(f"Dose {dose_id} is already {current_status}")
        self.dose_id = dose_id
        self.current_status = current_status


class ValidationError(SchedulingError):
    """Malformed reminder or time input"""


class TransientStorageError(SchedulingError):
    """Retryable infrastructure fault"""


class UnsupportedBackend(SchedulingError):
    """Database dialect cannot run the scheduling core"""
