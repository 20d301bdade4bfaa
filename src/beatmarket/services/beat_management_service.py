"""
Beat Management Service
Owner-facing listing, repricing, soft deletion, preview and manual reconcile
"""

import uuid
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import (
    ForbiddenError,
    GoneError,
    ProviderError,
    ResourceNotFoundError,
    ValidationError,
)
from ..core.logging import pipeline_logger
from ..core.validation import round_price
from ..database.models import Agent, Beat
from ..database.repositories.beat_repository import BeatRepository
from ..database.schemas import BeatPriceUpdate
from .callback_normalizer import detect_record_shape, STAGE_COMPLETE
from .callback_service import CallbackService
from .provider_client import GenerationProviderClient

settings = get_settings()

BEAT_STATUSES = ("generating", "complete", "failed")


def _bounded_price(value: float, floor: float, ceiling: float, label: str) -> float:
    if value < floor or value > ceiling:
        raise ValidationError(f"{label} must be between ${floor} and ${ceiling}")
    return round_price(value)


class BeatManagementService:
    """Operations an agent performs on its own beats"""

    def __init__(
        self,
        session: AsyncSession,
        callbacks: Optional[CallbackService] = None,
        provider_factory: Callable[[str], GenerationProviderClient] = GenerationProviderClient,
        beats: Optional[BeatRepository] = None
    ):
        self.session = session
        self.beats = beats or BeatRepository(session)
        self.callbacks = callbacks or CallbackService(session, beats=self.beats)
        self.provider_factory = provider_factory

    async def _owned_beat(self, agent: Agent, beat_id: uuid.UUID) -> Beat:
        beat = await self.beats.get(beat_id)
        if beat is None:
            raise ResourceNotFoundError("Beat not found")
        if beat.agent_id != agent.id:
            raise ForbiddenError("You can only manage your own beats")
        return beat

    async def list_beats(
        self,
        agent: Agent,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Beat]:
        if status and status not in BEAT_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(BEAT_STATUSES)}")
        return await self.beats.list_for_agent(
            agent.id,
            status=status,
            limit=max(1, min(limit, 100)),
            offset=max(0, offset)
        )

    async def update_price(self, agent: Agent, beat_id: uuid.UUID, update: BeatPriceUpdate) -> Beat:
        beat = await self._owned_beat(agent, beat_id)
        if beat.deleted_at is not None:
            raise GoneError("Beat has been deleted")

        values: Dict[str, Any] = {}
        if update.price is not None:
            values["price"] = _bounded_price(
                update.price, settings.MIN_BEAT_PRICE, settings.MAX_BEAT_PRICE, "Beat price"
            )
        if update.stems_price is not None:
            values["stems_price"] = _bounded_price(
                update.stems_price, settings.MIN_STEMS_PRICE, settings.MAX_STEMS_PRICE, "Stems price"
            )
        if not values:
            raise ValidationError("Provide price and/or stems_price")

        changed = await self.beats.update_where(beat.id, {"sold": False, "deleted_at": None}, **values)
        if not changed:
            raise GoneError("Sold or deleted beats cannot be repriced")
        return await self.beats.reload(beat)

    async def delete_beat(self, agent: Agent, beat_id: uuid.UUID) -> Dict[str, Any]:
        beat = await self._owned_beat(agent, beat_id)
        if beat.sold:
            raise ForbiddenError("Sold beats cannot be deleted")
        if beat.deleted_at is not None:
            return {"success": True, "beat_id": str(beat.id), "deleted": True}

        if not await self.beats.soft_delete(beat.id):
            raise ForbiddenError("Sold beats cannot be deleted")
        pipeline_logger.log_stage_complete(operation="SoftDelete", beat_id=str(beat.id))
        return {"success": True, "beat_id": str(beat.id), "deleted": True}

    async def stream_url(self, beat_id: uuid.UUID) -> str:
        """Preview reference for a complete, non-deleted beat"""
        beat = await self.beats.get(beat_id)
        if beat is None or beat.deleted_at is not None:
            raise ResourceNotFoundError("Beat not found")
        if beat.status != "complete":
            raise ValidationError("Beat is not complete yet")

        url = beat.stream_url or beat.audio_url
        if not url:
            raise ResourceNotFoundError("No audio available for this beat")
        return url

    async def reconcile(self, agent: Agent, beat_id: uuid.UUID, provider_api_key: str) -> Dict[str, Any]:
        """Poll the provider for a beat whose completion callback was lost"""
        beat = await self._owned_beat(agent, beat_id)
        if not beat.task_id:
            raise ValidationError("Beat has no provider task id to reconcile")
        if beat.status == "complete":
            return {"success": True, "beat_id": str(beat.id), "status": "complete", "updated": 0}

        async with self.provider_factory(provider_api_key) as provider:
            result = await provider.fetch_record(beat.task_id)

        if result.is_err():
            raise ProviderError(result.error or "Provider poll failed", status_code=result.upstream_status())

        normalized = detect_record_shape(result.data)
        if normalized is None or not any(track.has_audio for track in normalized.tracks):
            return {"success": True, "beat_id": str(beat.id), "status": beat.status, "updated": 0}

        normalized.task_id = beat.task_id
        normalized.stage = STAGE_COMPLETE
        applied = await self.callbacks.apply(normalized)

        current = await self.beats.reload(beat)
        return {
            "success": True,
            "beat_id": str(beat.id),
            "status": current.status,
            "updated": applied.get("updated", 0),
        }
