"""
BeatMarket Beat API Routes
Owner-side catalogue management, reconcile and public preview
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from ...database.models import Agent
from ...database.schemas import BeatPriceUpdate, BeatResponse, ReconcileRequest
from ...services.beat_management_service import BeatManagementService
from ..dependencies import get_beat_management_service, get_current_agent

router = APIRouter()


@router.get("", response_model=List[BeatResponse])
async def list_beats(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    agent: Agent = Depends(get_current_agent),
    service: BeatManagementService = Depends(get_beat_management_service)
):
    return await service.list_beats(agent, status=status, limit=limit, offset=offset)


@router.patch("/{beat_id}", response_model=BeatResponse)
async def update_beat_price(
    beat_id: uuid.UUID,
    update: BeatPriceUpdate,
    agent: Agent = Depends(get_current_agent),
    service: BeatManagementService = Depends(get_beat_management_service)
):
    return await service.update_price(agent, beat_id, update)


@router.delete("/{beat_id}")
async def delete_beat(
    beat_id: uuid.UUID,
    agent: Agent = Depends(get_current_agent),
    service: BeatManagementService = Depends(get_beat_management_service)
):
    return await service.delete_beat(agent, beat_id)


@router.post("/{beat_id}/reconcile")
async def reconcile_beat(
    beat_id: uuid.UUID,
    request: ReconcileRequest,
    agent: Agent = Depends(get_current_agent),
    service: BeatManagementService = Depends(get_beat_management_service)
):
    """Recover a lost completion callback by polling the provider"""
    return await service.reconcile(agent, beat_id, request.provider_api_key)


@router.get("/{beat_id}/stream")
async def stream_beat(
    beat_id: uuid.UUID,
    service: BeatManagementService = Depends(get_beat_management_service)
):
    return RedirectResponse(await service.stream_url(beat_id), status_code=302)
