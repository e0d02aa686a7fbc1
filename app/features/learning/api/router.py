"""
User action and learning routes.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.auth.verify import current_user_id
from app.features.learning.domain import ActionTargetNotFoundError, UserAction
from app.features.learning.service import LearningService, learning_service
from app.infrastructure.observability.logging import get_logger
from app.models.api.learning_request import ReprocessRequest, TrackActionRequest
from app.models.api.learning_response import (
    LearningStatsResponse,
    ReprocessResponse,
    UserActionListResponse,
    UserActionResponse,
)

logger = get_logger(__name__)

router = APIRouter(tags=["learning"])


def get_learning_service() -> LearningService:
    return learning_service


@router.post("/actions", response_model=UserActionResponse, status_code=status.HTTP_201_CREATED)
async def track_action(
    request: TrackActionRequest,
    user_id: str = Depends(current_user_id),
    service: LearningService = Depends(get_learning_service),
):
    try:
        record = await service.track_action(
            user_id, str(request.item_id), request.action, request.occurred_at
        )
    except ActionTargetNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return UserActionResponse.from_record(record)


@router.get("/actions", response_model=UserActionListResponse)
async def list_actions(
    item_id: UUID | None = None,
    action: UserAction | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    user_id: str = Depends(current_user_id),
    service: LearningService = Depends(get_learning_service),
):
    records = await service.list_actions(
        user_id, item_id=str(item_id) if item_id else None, action=action, limit=limit
    )
    return UserActionListResponse(
        actions=[UserActionResponse.from_record(r) for r in records], total_count=len(records)
    )


@router.get("/learning/stats", response_model=LearningStatsResponse)
async def get_learning_stats(
    user_id: str = Depends(current_user_id),
    service: LearningService = Depends(get_learning_service),
):
    return LearningStatsResponse(**await service.get_learning_statistics(user_id))


@router.post("/learning/reprocess", response_model=ReprocessResponse)
async def reprocess_actions(
    request: ReprocessRequest | None = None,
    user_id: str = Depends(current_user_id),
    service: LearningService = Depends(get_learning_service),
):
    """Apply recorded actions that have not influenced learned weights yet."""
    limit = request.limit if request else None
    return ReprocessResponse(**await service.process_historical_actions(user_id, limit))
