"""
Domain models for automation rules.

Trigger and action configs are tagged variants: the rule row stores a
type discriminant plus a JSON payload, and each variant validates its
own payload. A rule whose payload does not validate is skipped by the
engine.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from app.models.domain.item_domain import Source, Tier


class RuleValidationError(Exception):
    """Raised when a rule's trigger or action config is malformed."""

    def __init__(self, message: str, field_name: str | None = None, recoverable: bool = False):
        super().__init__(message)
        self.field_name = field_name
        self.recoverable = recoverable


class TriggerType(StrEnum):
    NEW_ITEM = "new_item"
    SCORE_THRESHOLD = "score_threshold"
    SENDER_MATCH = "sender_match"
    SCHEDULE = "schedule"


class ActionType(StrEnum):
    LABEL = "label"
    ARCHIVE = "archive"
    FORWARD = "forward"
    NOTIFY = "notify"
    BOOST_SCORE = "boost_score"


class _Variant(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    def config(self) -> dict[str, Any]:
        """Payload without the discriminant, as stored in the rule row."""
        return self.model_dump(exclude={"type"}, exclude_none=True, mode="json")


# ----------------------------------------------------------------------
# Triggers
# ----------------------------------------------------------------------


class NewItemTrigger(_Variant):
    type: Literal["new_item"] = "new_item"
    source: Source | None = None
    subject_contains: str | None = None
    body_contains: str | None = None


class ScoreThresholdTrigger(_Variant):
    type: Literal["score_threshold"] = "score_threshold"
    threshold: int = Field(ge=0, le=100)
    operator: Literal["greater_than", "at_least", "less_than", "equals"] = "at_least"
    tier: Tier | None = None


class SenderMatchTrigger(_Variant):
    type: Literal["sender_match"] = "sender_match"
    value: str = Field(min_length=1)
    operator: Literal["equals", "contains", "domain", "regex"] = "equals"

    @model_validator(mode="after")
    def _check_regex(self) -> "SenderMatchTrigger":
        if self.operator == "regex":
            try:
                re.compile(self.value)
            except re.error as e:
                raise ValueError(f"invalid sender regex: {e}") from e
        return self


class ScheduleTrigger(_Variant):
    """Matches items received on the given weekdays (Monday=0) inside [start_hour, end_hour)."""

    type: Literal["schedule"] = "schedule"
    weekdays: list[int] = Field(default_factory=lambda: list(range(7)), min_length=1)
    start_hour: int = Field(default=0, ge=0, le=23)
    end_hour: int = Field(default=24, ge=1, le=24)

    @field_validator("weekdays")
    @classmethod
    def _check_weekdays(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("weekdays must be between 0 (Monday) and 6 (Sunday)")
        return sorted(set(value))

    @model_validator(mode="after")
    def _check_window(self) -> "ScheduleTrigger":
        if self.start_hour >= self.end_hour:
            raise ValueError("start_hour must be before end_hour")
        return self


Trigger = Annotated[
    Union[NewItemTrigger, ScoreThresholdTrigger, SenderMatchTrigger, ScheduleTrigger],
    Field(discriminator="type"),
]


# ----------------------------------------------------------------------
# Actions
# ----------------------------------------------------------------------


class LabelAction(_Variant):
    type: Literal["label"] = "label"
    label: str = Field(min_length=1, max_length=100)


class ArchiveAction(_Variant):
    type: Literal["archive"] = "archive"


class ForwardAction(_Variant):
    type: Literal["forward"] = "forward"
    to: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class NotifyAction(_Variant):
    type: Literal["notify"] = "notify"
    message: str = Field(default="Automation rule matched", min_length=1, max_length=500)


class BoostScoreAction(_Variant):
    type: Literal["boost_score"] = "boost_score"
    amount: int = Field(ge=-100, le=100)


Action = Annotated[
    Union[LabelAction, ArchiveAction, ForwardAction, NotifyAction, BoostScoreAction],
    Field(discriminator="type"),
]

TRIGGER_ADAPTER: TypeAdapter = TypeAdapter(Trigger)
ACTION_ADAPTER: TypeAdapter = TypeAdapter(Action)


def parse_trigger(trigger_type: str, config: dict[str, Any] | None) -> Trigger:
    try:
        return TRIGGER_ADAPTER.validate_python({**(config or {}), "type": trigger_type})
    except ValidationError as e:
        raise RuleValidationError(f"Invalid trigger config: {e}", field_name="trigger") from e


def parse_action(action_type: str, config: dict[str, Any] | None) -> Action:
    try:
        return ACTION_ADAPTER.validate_python({**(config or {}), "type": action_type})
    except ValidationError as e:
        raise RuleValidationError(f"Invalid action config: {e}", field_name="action") from e


@dataclass(slots=True)
class AutomationRule:
    id: str
    user_id: str
    name: str
    trigger_type: str
    action_type: str
    trigger_config: dict[str, Any] = field(default_factory=dict)
    action_config: dict[str, Any] = field(default_factory=dict)
    description: str | None = None
    enabled: bool = True
    priority: int = 100
    execution_count: int = 0
    last_executed_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def trigger(self) -> Trigger:
        return parse_trigger(self.trigger_type, self.trigger_config)

    @property
    def action(self) -> Action:
        return parse_action(self.action_type, self.action_config)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AutomationRule":
        return cls(
            id=str(row["id"]),
            user_id=row["user_id"],
            name=row["name"],
            description=row.get("description"),
            trigger_type=row["trigger_type"],
            trigger_config=dict(row.get("trigger_config") or {}),
            action_type=row["action_type"],
            action_config=dict(row.get("action_config") or {}),
            enabled=bool(row.get("enabled", True)),
            priority=int(row.get("priority", 100)),
            execution_count=int(row.get("execution_count", 0)),
            last_executed_at=row.get("last_executed_at"),
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "description": self.description,
            "trigger_type": self.trigger_type,
            "trigger_config": self.trigger_config,
            "action_type": self.action_type,
            "action_config": self.action_config,
            "enabled": self.enabled,
            "priority": self.priority,
            "execution_count": self.execution_count,
            "last_executed_at": self.last_executed_at.isoformat() if self.last_executed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True, slots=True)
class SelectedAction:
    """A rule whose trigger matched an item, waiting to be queued."""

    rule_id: str
    rule_name: str
    item_id: str
    action: Action

    @property
    def dedupe_key(self) -> str:
        return f"rule_action:{self.rule_id}:{self.item_id}"

    def to_payload(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "item_id": self.item_id,
            "action": self.action.model_dump(mode="json"),
        }
