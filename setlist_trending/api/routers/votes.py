"""
Vote ingestion router.
Receives vote-cast events pushed by the voting service.
"""
from fastapi import APIRouter, Depends, status

from setlist_trending.api.dependencies import get_discovery_service
from setlist_trending.models.schemas import VoteAccepted, VoteSignal
from setlist_trending.services.discovery import DiscoveryService

router = APIRouter(prefix="/v1/votes", tags=["votes"])


@router.post(
    "/events",
    response_model=VoteAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest Vote Event",
    description="Updates live vote counters; dependent rankings are invalidated after a short debounce.",
)
async def ingest_vote(
    signal: VoteSignal,
    service: DiscoveryService = Depends(get_discovery_service),
) -> VoteAccepted:
    pending = service.record_vote(signal)
    return VoteAccepted(show_id=signal.show_id, pending_invalidations=pending)
