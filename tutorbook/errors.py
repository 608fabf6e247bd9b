"""
Scheduling Error Taxonomy

Local, recoverable conditions raised by the scheduling services. The HTTP
layer maps each class to a status code (see main.py).
"""
from typing import Any, Dict, Optional


class SchedulingError(Exception):
    """Base class for user-facing scheduling failures"""

    code = "SCHEDULING_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details or None,
        }


class NotFoundError(SchedulingError):
    """Referenced session, proposal, wallet or user does not exist"""

    code = "NOT_FOUND"


class ForbiddenError(SchedulingError):
    """Caller is not a participant or lacks the required role/ownership"""

    code = "FORBIDDEN"


class InvalidStateError(SchedulingError):
    """Entity is not in a state that permits the operation"""

    code = "INVALID_STATE"


class ConflictError(SchedulingError):
    """Tutor already has a confirmed session overlapping the window"""

    code = "DOUBLE_BOOKING"


class InsufficientFundsError(SchedulingError):
    """Wallet balance is below the minutes required to join"""

    code = "INSUFFICIENT_FUNDS"

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        self.shortfall = required - available
        super().__init__(
            f"Insufficient hours: {required} minutes required, "
            f"{available} available (short by {self.shortfall} minutes)",
            details={
                "required_minutes": required,
                "available_minutes": available,
                "shortfall_minutes": self.shortfall,
            },
        )


class ValidationError(SchedulingError):
    """Malformed input such as a duration that is not a multiple of 15 minutes"""

    code = "VALIDATION_ERROR"
