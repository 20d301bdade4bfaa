"""
Post-Processing Controller
Drives lossless conversion and stem separation per completed beat
"""

import asyncio
import statistics
import uuid
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import (
    ForbiddenError,
    GoneError,
    ProviderError,
    ResourceNotFoundError,
    ValidationError,
)
from ..core.logging import pipeline_logger, webhook_logger
from ..core.validation import is_https_url, is_safe_media_url
from ..database.models import Agent, Beat
from ..database.repositories.base import RepositoryError
from ..database.repositories.beat_repository import BeatRepository
from ..database.repositories.rate_limit_repository import RateLimitRepository
from ..database.repositories.sample_repository import SampleRepository
from .provider_client import GenerationProviderClient
from .rate_limiter import RateLimiter

settings = get_settings()

JOB_LOSSLESS = "wav"
JOB_STEMS = "stems"
JOBS = (JOB_LOSSLESS, JOB_STEMS)

POST_PROCESS_ACTION = "post_process"

LOSSLESS_URL_KEYS = ("audioWavUrl", "audio_wav_url", "wav_url", "audioUrl")
STEM_CONTAINER_KEYS = ("vocal_removal_info", "vocalRemovalInfo", "vocal_removal")
STEM_NAME_KEYS = ("type", "stem_type", "name", "label")
STEM_URL_KEYS = ("audioUrl", "audio_url", "url")
DISCARDED_STEMS = ("origin",)

SizeLookup = Callable[[Dict[str, str]], Awaitable[Dict[str, Optional[int]]]]


def is_callback_error(payload: Any) -> bool:
    """Provider-reported failure in a post-processing callback"""
    if not isinstance(payload, dict):
        return True
    code = payload.get("code")
    if isinstance(code, (int, float)) and not isinstance(code, bool) and code >= 400:
        return True
    data = payload.get("data")
    callback_type = data.get("callbackType") if isinstance(data, dict) else None
    return isinstance(callback_type, str) and callback_type.lower() in ("error", "failed")


def extract_lossless_url(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for container in (payload.get("data"), payload):
        if not isinstance(container, dict):
            continue
        for key in LOSSLESS_URL_KEYS:
            value = container.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def _stem_name(field: str) -> Optional[str]:
    if field.endswith("_url") and len(field) > 4:
        return field[:-4].lower()
    return None


def _flat_stem_map(container: Dict[str, Any]) -> Dict[str, str]:
    stems: Dict[str, str] = {}
    for field, value in container.items():
        name = _stem_name(field)
        if not name or name in DISCARDED_STEMS:
            continue
        if isinstance(value, str) and is_https_url(value.strip()):
            stems[name] = value.strip()
    return stems


def _legacy_stem_list(records: Iterable[Any]) -> Dict[str, str]:
    stems: Dict[str, str] = {}
    for record in records:
        if not isinstance(record, dict):
            continue
        name = next((record[k] for k in STEM_NAME_KEYS if isinstance(record.get(k), str) and record[k]), None)
        url = next((record[k] for k in STEM_URL_KEYS if isinstance(record.get(k), str) and record[k]), None)
        if not name or not url:
            continue
        name = name.strip().lower()
        if name in DISCARDED_STEMS or not is_https_url(url.strip()):
            continue
        stems[name] = url.strip()
    return stems


def extract_stems(payload: Any) -> Dict[str, str]:
    """
    Read the stem-name -> URL map out of a separation callback.

    The current shape is a flat map of ``<name>_url`` fields under one of
    STEM_CONTAINER_KEYS; the legacy shape is an array of named records.
    Empty and placeholder entries are dropped.
    """
    if not isinstance(payload, dict):
        return {}
    data = payload.get("data")

    if isinstance(data, dict):
        for key in STEM_CONTAINER_KEYS:
            container = data.get(key)
            if isinstance(container, dict):
                return _flat_stem_map(container)
            if isinstance(container, list):
                return _legacy_stem_list(container)
        if isinstance(data.get("data"), list):
            return _legacy_stem_list(data["data"])
        return _flat_stem_map(data)

    if isinstance(data, list):
        return _legacy_stem_list(data)
    return {}


def select_audible_stems(sizes: Dict[str, Optional[int]], ratio: float) -> List[str]:
    """
    Stems whose byte size is at least ``ratio`` times the median size of
    their siblings. Stems with an unknown size are left out.
    """
    known = {name: size for name, size in sizes.items() if size is not None}
    if not known:
        return []
    median = statistics.median(known.values())
    if median <= 0:
        return []
    threshold = median * ratio
    return [name for name, size in known.items() if size >= threshold]


async def fetch_content_lengths(urls: Dict[str, str], timeout: float = 10.0) -> Dict[str, Optional[int]]:
    """HEAD each URL and read Content-Length; failures map to None"""

    async def head(client: httpx.AsyncClient, name: str, url: str):
        if not is_safe_media_url(url):
            return name, None
        try:
            response = await client.head(url)
        except httpx.HTTPError:
            return name, None
        if response.status_code >= 400:
            return name, None
        try:
            return name, int(response.headers.get("content-length"))
        except (TypeError, ValueError):
            return name, None

    async with httpx.AsyncClient(timeout=httpx.Timeout(timeout)) as client:
        pairs = await asyncio.gather(*(head(client, name, url) for name, url in urls.items()))
    return dict(pairs)


class PostProcessingService:
    """Lossless conversion and stem separation, idempotent in both directions"""

    def __init__(
        self,
        session: AsyncSession,
        provider_factory: Callable[[str], GenerationProviderClient] = GenerationProviderClient,
        rate_limiter: Optional[RateLimiter] = None,
        beats: Optional[BeatRepository] = None,
        samples: Optional[SampleRepository] = None,
        size_lookup: SizeLookup = fetch_content_lengths
    ):
        self.session = session
        self.provider_factory = provider_factory
        self.rate_limiter = rate_limiter or RateLimiter(RateLimitRepository(session))
        self.beats = beats or BeatRepository(session)
        self.samples = samples or SampleRepository(session)
        self.size_lookup = size_lookup

    @staticmethod
    def _statuses(beat: Beat, **overrides: Optional[str]) -> Dict[str, Optional[str]]:
        statuses = {"wav_status": beat.wav_status, "stems_status": beat.stems_status}
        statuses.update(overrides)
        return statuses

    async def request(self, agent: Agent, beat_id: uuid.UUID, provider_api_key: str) -> Dict[str, Any]:
        """Entry point for the owning agent; safe to call repeatedly"""
        beat = await self.beats.get(beat_id)
        if beat is None:
            raise ResourceNotFoundError("Beat not found")
        if beat.agent_id != agent.id:
            raise ForbiddenError("You can only post-process your own beats")
        if beat.deleted_at is not None:
            raise GoneError("Beat has been deleted")
        if beat.status != "complete":
            raise ValidationError("Beat is not complete yet")
        if not beat.suno_id:
            raise ValidationError(
                "Beat has no provider track id",
                fix="Wait for the completion callback or reconcile the beat"
            )
        if not provider_api_key or not provider_api_key.strip():
            raise ValidationError("provider_api_key is required")

        if beat.wav_status == "processing" and beat.stems_status == "processing":
            return {
                "success": True,
                "beat_id": str(beat.id),
                "message": "Post-processing already in progress",
                **self._statuses(beat),
            }
        if beat.wav_status == "complete" and beat.stems_status == "complete":
            return {
                "success": True,
                "beat_id": str(beat.id),
                "message": "Post-processing already complete",
                **self._statuses(beat),
            }

        await self.rate_limiter.hit(
            POST_PROCESS_ACTION,
            str(agent.id),
            settings.POST_PROCESSING_HOURLY_LIMIT,
            message=f"Post-processing limit reached ({settings.POST_PROCESSING_HOURLY_LIMIT} per hour)."
        )

        dispatched = await self.dispatch(beat, provider_api_key.strip())
        statuses = self._statuses(beat, **{f"{job}_status": status for job, status in dispatched.items()})

        if dispatched and all(status == "failed" for status in dispatched.values()):
            raise ProviderError("Post-processing dispatch failed. Retry later.", beat_id=str(beat.id), **statuses)

        return {
            "success": True,
            "beat_id": str(beat.id),
            "message": "Post-processing started. WAV and stems arrive via callback.",
            **statuses,
        }

    async def dispatch(
        self,
        beat: Beat,
        provider_api_key: str,
        jobs: Optional[Iterable[str]] = None
    ) -> Dict[str, str]:
        """
        Issue one provider call per job that is not complete.

        Acceptance moves the job to processing; any failure moves it to
        failed so it can be retried.
        """
        pending = [
            job for job in (jobs or JOBS)
            if getattr(beat, f"{job}_status") != "complete"
        ]
        outcome: Dict[str, str] = {}
        if not pending:
            return outcome

        async with self.provider_factory(provider_api_key) as provider:
            for job in pending:
                pipeline_logger.log_stage_start(operation=f"Dispatch:{job}", beat_id=str(beat.id))

                if job == JOB_LOSSLESS:
                    result = await provider.convert_to_wav(
                        beat.id, beat.suno_id, settings.lossless_callback_url(beat.id)
                    )
                else:
                    result = await provider.separate_stems(
                        beat.id, beat.suno_id, settings.stems_callback_url(beat.id)
                    )

                status = "processing" if result.is_ok() else "failed"
                await self.beats.set_job_status(beat.id, job, status)
                outcome[job] = status

                if result.is_err():
                    pipeline_logger.log_stage_error(
                        operation=f"Dispatch:{job}",
                        error=result.error or "dispatch failed",
                        beat_id=str(beat.id),
                        status_code=result.status_code
                    )

        return outcome

    @staticmethod
    def _skip_reason(beat: Optional[Beat], job: str) -> Optional[str]:
        if beat is None:
            return "beat not found"
        if beat.sold:
            return "beat sold"
        if beat.deleted_at is not None:
            return "beat deleted"
        if getattr(beat, f"{job}_status") == "complete":
            return f"{job} already complete"
        return None

    async def handle_lossless_callback(self, beat_id: uuid.UUID, payload: Any) -> Dict[str, Any]:
        webhook_logger.log_received("lossless", beat_id=str(beat_id))

        beat = await self.beats.get(beat_id)
        reason = self._skip_reason(beat, JOB_LOSSLESS)
        if reason:
            webhook_logger.log_ignored("lossless", reason, beat_id=str(beat_id))
            return {"received": True, "ignored": reason}

        if is_callback_error(payload):
            await self.beats.set_job_status(beat.id, JOB_LOSSLESS, "failed")
            pipeline_logger.log_stage_error(operation="Lossless", error="provider reported failure", beat_id=str(beat.id))
            return {"received": True, "wav_status": "failed"}

        wav_url = extract_lossless_url(payload)
        if not is_https_url(wav_url):
            await self.beats.set_job_status(beat.id, JOB_LOSSLESS, "failed")
            pipeline_logger.log_stage_error(operation="Lossless", error="missing or invalid URL", beat_id=str(beat.id))
            return {"received": True, "wav_status": "failed"}

        await self.beats.set_job_status(beat.id, JOB_LOSSLESS, "complete", wav_url=wav_url)
        pipeline_logger.log_stage_complete(operation="Lossless", beat_id=str(beat.id))
        return {"received": True, "wav_status": "complete"}

    async def handle_stems_callback(self, beat_id: uuid.UUID, payload: Any) -> Dict[str, Any]:
        webhook_logger.log_received("stems", beat_id=str(beat_id))

        beat = await self.beats.get(beat_id)
        reason = self._skip_reason(beat, JOB_STEMS)
        if reason:
            webhook_logger.log_ignored("stems", reason, beat_id=str(beat_id))
            return {"received": True, "ignored": reason}

        stems = {} if is_callback_error(payload) else extract_stems(payload)
        if not stems:
            await self.beats.set_job_status(beat.id, JOB_STEMS, "failed")
            pipeline_logger.log_stage_error(operation="Stems", error="no usable stems", beat_id=str(beat.id))
            return {"received": True, "stems_status": "failed"}

        await self.beats.set_job_status(beat.id, JOB_STEMS, "complete", stems=stems)
        pipeline_logger.log_stage_complete(operation="Stems", beat_id=str(beat.id), stems=sorted(stems))

        listed = await self.refresh_samples(beat.id, stems)
        return {"received": True, "stems_status": "complete", "stems": sorted(stems), "samples": listed}

    async def refresh_samples(self, beat_id: uuid.UUID, stems: Dict[str, str]) -> int:
        """List the non-silent stems of a beat in the sample library"""
        try:
            sizes = await self.size_lookup(stems)
            audible = select_audible_stems(sizes, settings.SILENT_STEM_MEDIAN_RATIO)
            for name in audible:
                await self.samples.upsert(beat_id, name, stems[name], sizes.get(name))
        except (httpx.HTTPError, RepositoryError) as e:
            pipeline_logger.log_stage_error(operation="SampleListing", error=str(e), beat_id=str(beat_id))
            return 0

        pipeline_logger.log_stage_complete(
            operation="SampleListing",
            beat_id=str(beat_id),
            listed=len(audible),
            silent=sorted(set(stems) - set(audible))
        )
        return len(audible)
