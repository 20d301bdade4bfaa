"""
Generation Callback Service
Reconciles normalized provider callbacks against pending beats
"""

from typing import Any, Dict, List, Optional, Tuple

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.logging import pipeline_logger, webhook_logger
from ..database.models import Beat
from ..database.repositories.agent_repository import AgentRepository
from ..database.repositories.beat_repository import BeatRepository
from .callback_normalizer import (
    STAGE_COMPLETE,
    STAGE_ERROR,
    STAGE_FIRST,
    NormalizedCallback,
    NormalizedTrack,
    normalize_callback,
)
from .credential_cache import CredentialCache
from .post_processing_service import PostProcessingService

settings = get_settings()

MEDIA_FIELDS = ("audio_url", "stream_url", "image_url", "suno_id")


def _track_values(track: NormalizedTrack) -> Dict[str, Any]:
    values = {
        "audio_url": track.audio_url,
        "stream_url": track.stream_url,
        "image_url": track.image_url,
        "suno_id": track.suno_id,
        "duration": track.duration,
    }
    return {key: value for key, value in values.items() if value is not None}


class CallbackService:
    """Applies generation callbacks; every delivery is safe to repeat"""

    def __init__(
        self,
        session: AsyncSession,
        credential_cache: Optional[CredentialCache] = None,
        post_processing: Optional[PostProcessingService] = None,
        beats: Optional[BeatRepository] = None,
        agents: Optional[AgentRepository] = None
    ):
        self.session = session
        self.credential_cache = credential_cache
        self.beats = beats or BeatRepository(session)
        self.agents = agents or AgentRepository(session)
        self.post_processing = post_processing or PostProcessingService(session, beats=self.beats)

    async def handle_generation_callback(self, payload: Any) -> Dict[str, Any]:
        normalized = normalize_callback(payload)
        webhook_logger.log_received(
            "generation",
            stage=normalized.stage,
            task_id=normalized.task_id,
            tracks=len(normalized.tracks),
            detector=normalized.detector
        )
        return await self.apply(normalized)

    async def match_beats(self, normalized: NormalizedCallback) -> Tuple[List[Beat], str]:
        """
        Find the beats a callback refers to.

        Task id first, then provider track ids, then the two most recent
        generating beats. The last step also covers beats stored without a
        task id because the provider acceptance response carried none.
        """
        if normalized.task_id:
            beats = await self.beats.find_by_task_id(normalized.task_id)
            if beats:
                return beats, "task_id"

        if normalized.track_ids:
            beats = await self.beats.find_by_suno_ids(normalized.track_ids)
            if beats:
                return beats, "track_id"

        beats = await self.beats.most_recent_generating(limit=2)
        if beats:
            return beats, "recent_generating"

        return [], "none"

    async def apply(self, normalized: NormalizedCallback) -> Dict[str, Any]:
        ack: Dict[str, Any] = {"received": True, "stage": normalized.stage, "task_id": normalized.task_id}

        if normalized.stage not in (STAGE_COMPLETE, STAGE_FIRST, STAGE_ERROR):
            webhook_logger.log_ignored("generation", "unrecognized stage", task_id=normalized.task_id)
            return {**ack, "ignored": "unrecognized stage"}

        beats, strategy = await self.match_beats(normalized)
        if not beats:
            webhook_logger.log_ignored("generation", "no matching beats", task_id=normalized.task_id)
            return {**ack, "ignored": "no matching beats"}

        if normalized.stage == STAGE_COMPLETE:
            updated = await self._apply_complete(beats, normalized)
        elif normalized.stage == STAGE_FIRST:
            updated = await self._apply_first(beats, normalized.tracks)
        else:
            updated = await self._apply_error(beats)

        pipeline_logger.log_stage_complete(
            operation=f"Callback:{normalized.stage}",
            task_id=normalized.task_id,
            matched_by=strategy,
            updated=updated
        )
        return {**ack, "matched_by": strategy, "updated": updated}

    async def _apply_complete(self, beats: List[Beat], normalized: NormalizedCallback) -> int:
        if not any(track.has_audio for track in normalized.tracks):
            webhook_logger.log_ignored("generation", "complete without audio", task_id=normalized.task_id)
            return 0

        completed: List[Beat] = []
        touched = 0

        # Positional pairing; extra beats stay generating when tracks run short
        for beat, track in zip(beats, normalized.tracks):
            values = _track_values(track)

            if beat.status == "complete":
                backfill = {
                    field: value for field, value in values.items()
                    if field in MEDIA_FIELDS and getattr(beat, field) is None
                }
                if backfill:
                    touched += await self.beats.update_fields(beat.id, **backfill)
                continue

            if not track.has_audio:
                if beat.status == "generating":
                    touched += await self._record_preview(beat, track)
                continue

            changed = await self.beats.update_where(
                beat.id,
                {"status": beat.status},
                status="complete",
                **values
            )
            if changed:
                touched += changed
                completed.append(await self.beats.reload(beat))

        if completed:
            await self.agents.increment_karma(completed[0].agent_id, settings.KARMA_PER_GENERATION)
            await self._continue_post_processing(normalized.task_id, completed)

        return touched

    async def _record_preview(self, beat: Beat, track: NormalizedTrack) -> int:
        values = {
            key: value for key, value in {
                "stream_url": track.stream_url,
                "suno_id": track.suno_id,
                "duration": track.duration,
            }.items()
            if value is not None
        }
        if not values:
            return 0
        return await self.beats.update_where(beat.id, {"status": "generating"}, **values)

    async def _apply_first(self, beats: List[Beat], tracks: List[NormalizedTrack]) -> int:
        touched = 0
        for beat, track in zip(beats, tracks):
            if beat.status == "generating":
                touched += await self._record_preview(beat, track)
        return touched

    async def _apply_error(self, beats: List[Beat]) -> int:
        touched = 0
        for beat in beats:
            if beat.status == "generating":
                touched += await self.beats.update_where(beat.id, {"status": "generating"}, status="failed")
        return touched

    async def _continue_post_processing(self, task_id: Optional[str], beats: List[Beat]) -> None:
        """Start post-processing with the credential cached at dispatch, if any"""
        if not task_id or self.credential_cache is None:
            return

        try:
            api_key = await self.credential_cache.consume(task_id)
        except RedisError as e:
            pipeline_logger.log_stage_error(operation="AutoPostProcess", error=str(e), task_id=task_id)
            return

        if not api_key:
            return

        for beat in beats:
            if beat.suno_id:
                await self.post_processing.dispatch(beat, api_key)
