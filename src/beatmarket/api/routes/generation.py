"""
BeatMarket Generation API Routes
Agent-facing beat generation and post-processing requests
"""

from fastapi import APIRouter, Depends

from ...database.models import Agent
from ...database.schemas import GenerationRequest, GenerationResponse, PostProcessingRequest
from ...services.fulfillment_service import FulfillmentService
from ...services.post_processing_service import PostProcessingService
from ..dependencies import get_current_agent, get_fulfillment_service, get_post_processing_service

router = APIRouter()


@router.post("/generation", response_model=GenerationResponse)
async def generate_beats(
    request: GenerationRequest,
    agent: Agent = Depends(get_current_agent),
    service: FulfillmentService = Depends(get_fulfillment_service)
):
    """Generate two instrumental variants; completion arrives by callback"""
    return await service.generate(agent, request)


@router.post("/post-processing")
async def request_post_processing(
    request: PostProcessingRequest,
    agent: Agent = Depends(get_current_agent),
    service: PostProcessingService = Depends(get_post_processing_service)
):
    """Start (or safely re-trigger) lossless conversion and stem separation"""
    return await service.request(agent, request.beat_id, request.provider_api_key)
