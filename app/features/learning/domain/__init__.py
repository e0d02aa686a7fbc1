"""
Domain subpackage for the learning loop.
"""

from .models import (
    FEEDBACK_BY_ACTION,
    HIGH_IMPACT_ACTIONS,
    ActionTargetNotFoundError,
    Feedback,
    SenderState,
    UserAction,
    UserActionRecord,
)

__all__ = [
    "FEEDBACK_BY_ACTION",
    "HIGH_IMPACT_ACTIONS",
    "ActionTargetNotFoundError",
    "Feedback",
    "SenderState",
    "UserAction",
    "UserActionRecord",
]
