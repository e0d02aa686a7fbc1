"""
Domain subpackage for automation rules.
"""

from .models import (
    ACTION_ADAPTER,
    TRIGGER_ADAPTER,
    Action,
    ActionType,
    ArchiveAction,
    AutomationRule,
    BoostScoreAction,
    ForwardAction,
    LabelAction,
    NewItemTrigger,
    NotifyAction,
    RuleValidationError,
    ScheduleTrigger,
    ScoreThresholdTrigger,
    SelectedAction,
    SenderMatchTrigger,
    Trigger,
    TriggerType,
    parse_action,
    parse_trigger,
)

__all__ = [
    "ACTION_ADAPTER",
    "TRIGGER_ADAPTER",
    "Action",
    "ActionType",
    "ArchiveAction",
    "AutomationRule",
    "BoostScoreAction",
    "ForwardAction",
    "LabelAction",
    "NewItemTrigger",
    "NotifyAction",
    "RuleValidationError",
    "ScheduleTrigger",
    "ScoreThresholdTrigger",
    "SelectedAction",
    "SenderMatchTrigger",
    "Trigger",
    "TriggerType",
    "parse_action",
    "parse_trigger",
]
