"""
Automation rule routes.

Rules are owned by the authenticated user; a rule id that belongs to
someone else is reported as not found before anything is changed.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from app.auth.verify import current_user_id
from app.features.automation.domain import RuleValidationError
from app.features.automation.repository import RuleNotFoundError
from app.features.automation.service import AutomationService, automation_service
from app.infrastructure.observability.logging import get_logger
from app.models.api.automation_request import CreateRuleRequest, UpdateRuleRequest
from app.models.api.automation_response import (
    RuleResponse,
    RulesListResponse,
    RuleTemplateResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/automation", tags=["automation"])


def get_automation_service() -> AutomationService:
    return automation_service


@router.get("/rules", response_model=RulesListResponse)
async def list_rules(
    user_id: str = Depends(current_user_id),
    service: AutomationService = Depends(get_automation_service),
):
    """Current rule set in evaluation order, plus built-in templates."""
    result = await service.list_rules(user_id)
    rules = [RuleResponse.from_rule(rule) for rule in result["rules"]]
    return RulesListResponse(
        rules=rules,
        templates=[RuleTemplateResponse(**template) for template in result["templates"]],
        total_count=len(rules),
    )


@router.post("/rules", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    request: CreateRuleRequest,
    user_id: str = Depends(current_user_id),
    service: AutomationService = Depends(get_automation_service),
):
    try:
        rule = await service.create_rule(user_id, request.model_dump(mode="json"))
    except RuleValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return RuleResponse.from_rule(rule)


@router.patch("/rules/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: UUID,
    request: UpdateRuleRequest,
    user_id: str = Depends(current_user_id),
    service: AutomationService = Depends(get_automation_service),
):
    changes = request.model_dump(mode="json", exclude_unset=True)
    try:
        rule = await service.update_rule(user_id, str(rule_id), changes)
    except RuleNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rule not found")
    except RuleValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return RuleResponse.from_rule(rule)


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: UUID,
    user_id: str = Depends(current_user_id),
    service: AutomationService = Depends(get_automation_service),
):
    try:
        await service.delete_rule(user_id, str(rule_id))
    except RuleNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rule not found")
