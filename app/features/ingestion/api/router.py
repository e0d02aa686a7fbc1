"""
Pipeline routes: ingestion pass and tier summary.
"""

from fastapi import APIRouter, Depends

from app.auth.verify import current_user_id
from app.features.ingestion.service import IngestionService, ingestion_service
from app.features.scoring.service import ScoringService, scoring_service
from app.infrastructure.observability.logging import get_logger
from app.models.api.pipeline_request import IngestRequest
from app.models.api.pipeline_response import IngestResponse, TierSummaryResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/pipeline", tags=["pipeline"])


def get_ingestion_service() -> IngestionService:
    return ingestion_service


def get_scoring_service() -> ScoringService:
    return scoring_service


@router.post("/ingest", response_model=IngestResponse)
async def run_ingestion(
    request: IngestRequest | None = None,
    user_id: str = Depends(current_user_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Run one ingestion-and-score pass; bad items are counted, not fatal."""
    request = request or IngestRequest()
    result = await service.run_pass(
        user_id, sources=request.sources, window_minutes=request.window_minutes
    )
    return IngestResponse(**result)


@router.get("/tiers/summary", response_model=TierSummaryResponse)
async def get_tier_summary(
    user_id: str = Depends(current_user_id),
    service: ScoringService = Depends(get_scoring_service),
):
    return TierSummaryResponse(**await service.tier_summary(user_id))
