"""
Automation rule API request models.
Trigger/action payloads are validated again per variant by the service.
"""

from typing import Any

from pydantic import BaseModel, Field

from app.features.automation.domain import ActionType, TriggerType


class CreateRuleRequest(BaseModel):
    """Request for creating an automation rule."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    trigger_type: TriggerType
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    action_type: ActionType
    action_config: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    priority: int = Field(default=100, ge=0, le=10000, description="Lower runs first")


class UpdateRuleRequest(BaseModel):
    """Partial update; omitted fields keep their current value."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    trigger_type: TriggerType | None = None
    trigger_config: dict[str, Any] | None = None
    action_type: ActionType | None = None
    action_config: dict[str, Any] | None = None
    enabled: bool | None = None
    priority: int | None = Field(default=None, ge=0, le=10000)
