"""
Automation rule API response models.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from app.features.automation.domain import AutomationRule


class RuleResponse(BaseModel):
    id: str
    name: str
    description: str | None = None
    trigger_type: str
    trigger_config: dict[str, Any]
    action_type: str
    action_config: dict[str, Any]
    enabled: bool
    priority: int
    execution_count: int
    last_executed_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_rule(cls, rule: AutomationRule) -> "RuleResponse":
        return cls(
            id=rule.id,
            name=rule.name,
            description=rule.description,
            trigger_type=rule.trigger_type,
            trigger_config=rule.trigger_config,
            action_type=rule.action_type,
            action_config=rule.action_config,
            enabled=rule.enabled,
            priority=rule.priority,
            execution_count=rule.execution_count,
            last_executed_at=rule.last_executed_at,
            created_at=rule.created_at,
        )


class RuleTemplateResponse(BaseModel):
    name: str
    description: str
    trigger_type: str
    trigger_config: dict[str, Any]
    action_type: str
    action_config: dict[str, Any]
    priority: int


class RulesListResponse(BaseModel):
    rules: list[RuleResponse]
    templates: list[RuleTemplateResponse]
    total_count: int
