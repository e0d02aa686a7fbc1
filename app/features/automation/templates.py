"""
Built-in rule templates returned alongside a user's rules.
"""

from app.features.automation.domain import (
    ArchiveAction,
    BoostScoreAction,
    LabelAction,
    NewItemTrigger,
    NotifyAction,
    ScheduleTrigger,
    ScoreThresholdTrigger,
    SenderMatchTrigger,
)


def _template(name, description, trigger, action, priority) -> dict:
    return {
        "name": name,
        "description": description,
        "trigger_type": trigger.type,
        "trigger_config": trigger.config(),
        "action_type": action.type,
        "action_config": action.config(),
        "priority": priority,
    }


RULE_TEMPLATES: list[dict] = [
    _template(
        "Archive Marketing Emails",
        "Automatically archive emails with marketing keywords",
        NewItemTrigger(body_contains="unsubscribe"),
        ArchiveAction(),
        10,
    ),
    _template(
        "VIP Priority",
        "Boost emails from your most important contact",
        SenderMatchTrigger(value="boss@company.com", operator="equals"),
        BoostScoreAction(amount=30),
        1,
    ),
    _template(
        "Auto-Label Newsletters",
        "Label newsletters so they are easy to find later",
        NewItemTrigger(subject_contains="newsletter"),
        LabelAction(label="Newsletters"),
        20,
    ),
    _template(
        "High Score Alert",
        "Get notified for very important emails",
        ScoreThresholdTrigger(threshold=90, operator="greater_than"),
        NotifyAction(message="High priority email received!"),
        5,
    ),
    _template(
        "Weekend Archive",
        "Archive items received on Saturday or Sunday",
        ScheduleTrigger(weekdays=[5, 6]),
        ArchiveAction(),
        30,
    ),
]


def get_templates() -> list[dict]:
    return [dict(template) for template in RULE_TEMPLATES]
