"""
BeatMarket Sample & Maintenance API Routes
"""

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ...database.repositories.sample_repository import SampleRepository
from ...database.schemas import SampleResponse
from ...services.maintenance_service import MaintenanceService
from ..dependencies import get_db_session, get_maintenance_service, require_callback_secret

router = APIRouter()


@router.get("/samples", response_model=List[SampleResponse])
async def list_samples(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_db_session)
):
    """Non-silent stems of complete beats"""
    return await SampleRepository(session).list_available(limit=limit, offset=offset)


@router.post("/maintenance/sweep", dependencies=[Depends(require_callback_secret)])
async def run_sweep(service: MaintenanceService = Depends(get_maintenance_service)):
    return {"success": True, **(await service.sweep())}
