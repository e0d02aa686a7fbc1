"""
Digest routes.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.auth.verify import current_user_id
from app.features.digest.domain import DigestNotFoundError, WindowType
from app.features.digest.service import DigestService, digest_service
from app.infrastructure.observability.logging import get_logger
from app.models.api.digest_request import (
    BuildDigestRequest,
    UpdateDigestPreferencesRequest,
    WeeklyDigestActionRequest,
)
from app.models.api.digest_response import (
    DigestBuildResponse,
    DigestHistoryResponse,
    DigestPreferencesResponse,
    DigestResponse,
    WeeklyDigestActionResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/digests", tags=["digests"])


def get_digest_service() -> DigestService:
    return digest_service


@router.post("/{window_type}/build", response_model=DigestBuildResponse)
async def build_digest(
    window_type: WindowType,
    request: BuildDigestRequest | None = None,
    user_id: str = Depends(current_user_id),
    service: DigestService = Depends(get_digest_service),
):
    """Build the digest for the current window; idempotent per day (or ISO week)."""
    force = request.force if request else False
    result = await service.build(user_id, window_type, force=force)
    return DigestBuildResponse(
        generated=result.generated, digest=DigestResponse.from_digest(result.digest)
    )


@router.get("/history", response_model=DigestHistoryResponse)
async def get_digest_history(
    limit: int = Query(default=10, ge=1, le=100),
    user_id: str = Depends(current_user_id),
    service: DigestService = Depends(get_digest_service),
):
    digests = await service.history(user_id, limit)
    return DigestHistoryResponse(
        digests=[DigestResponse.from_digest(d) for d in digests], total_count=len(digests)
    )


@router.get("/weekly/current", response_model=DigestResponse)
async def get_current_weekly_digest(
    user_id: str = Depends(current_user_id),
    service: DigestService = Depends(get_digest_service),
):
    digest = await service.current_weekly(user_id)
    if digest is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No weekly digest for this week"
        )
    return DigestResponse.from_digest(digest)


@router.post("/weekly/actions", response_model=WeeklyDigestActionResponse)
async def apply_weekly_digest_action(
    request: WeeklyDigestActionRequest,
    user_id: str = Depends(current_user_id),
    service: DigestService = Depends(get_digest_service),
):
    try:
        result = await service.apply_weekly_action(
            user_id, request.category, request.action, request.week_start
        )
    except DigestNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return WeeklyDigestActionResponse(**result)


@router.get("/preferences", response_model=DigestPreferencesResponse)
async def get_digest_preferences(
    user_id: str = Depends(current_user_id),
    service: DigestService = Depends(get_digest_service),
):
    return DigestPreferencesResponse.from_preferences(await service.get_preferences(user_id))


@router.put("/preferences", response_model=DigestPreferencesResponse)
async def update_digest_preferences(
    request: UpdateDigestPreferencesRequest,
    user_id: str = Depends(current_user_id),
    service: DigestService = Depends(get_digest_service),
):
    sources = [s.value for s in request.include_sources] if request.include_sources else None
    preferences = await service.update_preferences(user_id, request.enabled, sources)
    return DigestPreferencesResponse.from_preferences(preferences)
