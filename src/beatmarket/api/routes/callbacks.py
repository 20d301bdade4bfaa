"""
BeatMarket Callback API Routes
Provider webhooks; the shared secret is checked before the body is read
"""

import json
import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from ...core.logging import webhook_logger
from ...services.callback_service import CallbackService
from ...services.post_processing_service import PostProcessingService
from ..dependencies import get_callback_service, get_post_processing_service, require_callback_secret

router = APIRouter(dependencies=[Depends(require_callback_secret)])


async def _read_payload(request: Request, kind: str) -> Any:
    """Parse the body; malformed JSON is acknowledged, not retried"""
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        webhook_logger.log_rejected(kind, "invalid json")
        return None


@router.post("/generation")
async def generation_callback(
    request: Request,
    service: CallbackService = Depends(get_callback_service)
):
    payload = await _read_payload(request, "generation")
    if payload is None:
        return {"received": True, "ignored": "invalid json"}
    return await service.handle_generation_callback(payload)


@router.post("/lossless")
async def lossless_callback(
    request: Request,
    beat_id: uuid.UUID = Query(...),
    service: PostProcessingService = Depends(get_post_processing_service)
):
    payload = await _read_payload(request, "lossless")
    return await service.handle_lossless_callback(beat_id, payload)


@router.post("/stems")
async def stems_callback(
    request: Request,
    beat_id: uuid.UUID = Query(...),
    service: PostProcessingService = Depends(get_post_processing_service)
):
    payload = await _read_payload(request, "stems")
    return await service.handle_stems_callback(beat_id, payload)
