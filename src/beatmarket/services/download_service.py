"""
Download Capability Service
Verifies signed tokens against purchases and serves the purchased artifacts
"""

import uuid
from typing import Any, Dict, Optional, Tuple

import httpx
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import (
    ForbiddenError,
    IntegrityViolation,
    ProviderError,
    RateLimitedError,
    ResourceNotFoundError,
    ValidationError,
)
from ..core.logging import payment_logger, pipeline_logger
from ..core.tokens import DownloadCapability, verify_download_token
from ..core.validation import build_filename_base, is_safe_media_url, sanitize_filename_part
from ..database.models import Beat, Purchase
from ..database.repositories.agent_repository import AgentRepository
from ..database.repositories.beat_repository import BeatRepository
from ..database.repositories.purchase_repository import PurchaseRepository
from .post_processing_service import JOB_LOSSLESS, JOB_STEMS, PostProcessingService

settings = get_settings()


class DownloadPlan(BaseModel):
    """What the HTTP layer should send back for one download request"""
    mode: str  # redirect | stream | manifest | processing
    url: Optional[str] = None
    filename: Optional[str] = None
    media_type: str = "audio/mpeg"
    body: Dict[str, Any] = Field(default_factory=dict)


async def open_media_stream(url: str, timeout: float = 60.0) -> Tuple[httpx.AsyncClient, httpx.Response]:
    """
    Open an upstream media response for proxying.

    The caller owns both returned objects and must close them once the
    body has been relayed.
    """
    if not is_safe_media_url(url):
        raise IntegrityViolation("Refusing to fetch an unsafe media URL")

    client = httpx.AsyncClient(timeout=httpx.Timeout(timeout, read=None))
    try:
        response = await client.send(client.build_request("GET", url), stream=True)
    except httpx.HTTPError as e:
        await client.aclose()
        raise ProviderError(f"Failed to fetch audio file: {e}", status_code=502)

    if response.status_code >= 400:
        await response.aclose()
        await client.aclose()
        raise ProviderError("Failed to fetch audio file", status_code=502)

    return client, response


def _master_file(beat: Beat, base: str) -> Tuple[Optional[str], str]:
    """Full-mix url and filename: lossless when ready, otherwise the mp3"""
    if beat.wav_status == "complete" and beat.wav_url:
        return beat.wav_url, f"{base}.wav"
    return beat.audio_url, f"{base}.mp3"


class DownloadService:
    """Serves purchased tracks and stems behind signed, usage-capped tokens"""

    def __init__(
        self,
        session: AsyncSession,
        post_processing: Optional[PostProcessingService] = None,
        purchases: Optional[PurchaseRepository] = None,
        beats: Optional[BeatRepository] = None,
        agents: Optional[AgentRepository] = None,
        retrigger_key: str = settings.PLATFORM_PROVIDER_API_KEY
    ):
        self.session = session
        self.purchases = purchases or PurchaseRepository(session)
        self.beats = beats or BeatRepository(session)
        self.agents = agents or AgentRepository(session)
        self.post_processing = post_processing or PostProcessingService(session, beats=self.beats)
        self.retrigger_key = retrigger_key

    async def _authorize(self, token: str) -> Tuple[DownloadCapability, Purchase, Beat]:
        capability = verify_download_token(token)

        if capability.kind != "purchase":
            raise ForbiddenError("Token does not grant a purchase download")

        try:
            purchase_id = uuid.UUID(capability.resource_id)
            beat_id = uuid.UUID(capability.subject_id)
        except ValueError:
            raise IntegrityViolation("Invalid token payload")

        purchase = await self.purchases.get(purchase_id)
        if purchase is None:
            raise ResourceNotFoundError("Purchase not found")
        if purchase.paypal_status != "completed":
            raise ForbiddenError("Purchase is not completed")
        if purchase.beat_id != beat_id:
            raise ForbiddenError("Token does not match this purchase")
        if purchase.download_count >= settings.MAX_DOWNLOADS:
            raise RateLimitedError(f"Download limit reached ({settings.MAX_DOWNLOADS} downloads)")

        beat = await self.beats.get(beat_id)
        if beat is None:
            raise ResourceNotFoundError("Beat not found")

        return capability, purchase, beat

    async def _filename_base(self, beat: Beat) -> str:
        handle = await self.agents.get_handle(beat.agent_id)
        return build_filename_base(beat.title, handle or "", beat.genre, beat.bpm)

    async def _consume(self, purchase: Purchase) -> int:
        count = await self.purchases.increment_download_count(purchase.id, settings.MAX_DOWNLOADS)
        if count is None:
            raise RateLimitedError(f"Download limit reached ({settings.MAX_DOWNLOADS} downloads)")
        return count

    async def _retrigger(self, beat: Beat, job: str) -> bool:
        """One-shot re-dispatch of a missing job; skipped while it is processing"""
        if getattr(beat, f"{job}_status") in ("processing", "complete"):
            return False
        if not beat.suno_id or not self.retrigger_key:
            pipeline_logger.log_stage_error(
                operation=f"Retrigger:{job}",
                error="no provider track id or platform credential",
                beat_id=str(beat.id)
            )
            return False

        outcome = await self.post_processing.dispatch(beat, self.retrigger_key, jobs=[job])
        return outcome.get(job) == "processing"

    async def download(self, token: str, file: Optional[str] = None) -> DownloadPlan:
        """Resolve a token into a redirect, proxied stream, manifest or 202"""
        _, purchase, beat = await self._authorize(token)
        base = await self._filename_base(beat)

        if file:
            return await self._single_file(purchase, beat, base, file)

        if purchase.purchase_tier == "stems":
            return await self._stems(purchase, beat, base)
        return await self._track(purchase, beat, base)

    async def _track(self, purchase: Purchase, beat: Beat, base: str) -> DownloadPlan:
        if beat.wav_status == "complete" and beat.wav_url:
            count = await self._consume(purchase)
            payment_logger.log_download(str(purchase.id), "track", count, "redirect")
            return DownloadPlan(mode="redirect", url=beat.wav_url, filename=f"{base}.wav", media_type="audio/wav")

        if not beat.audio_url:
            raise ResourceNotFoundError("No audio file available")

        count = await self._consume(purchase)
        await self._retrigger(beat, JOB_LOSSLESS)
        payment_logger.log_download(str(purchase.id), "track", count, "stream")
        return DownloadPlan(mode="stream", url=beat.audio_url, filename=f"{base}.mp3")

    async def _stems(self, purchase: Purchase, beat: Beat, base: str) -> DownloadPlan:
        count = await self._consume(purchase)

        if beat.stems_status != "complete" or not beat.stems:
            await self.purchases.release_download(purchase.id, count)
            retriggered = await self._retrigger(beat, JOB_STEMS)
            payment_logger.log_download(str(purchase.id), "stems", count - 1, "processing")
            return DownloadPlan(
                mode="processing",
                body={
                    "status": "processing",
                    "message": "Stems are still being prepared. Try again in a few minutes.",
                    "retriggered": retriggered,
                }
            )

        stems = {
            name: {"url": url, "filename": f"{base} - {sanitize_filename_part(name).title()}.mp3"}
            for name, url in sorted(beat.stems.items())
        }
        master_url, master_filename = _master_file(beat, base)

        payment_logger.log_download(str(purchase.id), "stems", count, "manifest")
        return DownloadPlan(
            mode="manifest",
            body={
                "tier": "stems",
                "title": beat.title,
                "track": {"url": master_url, "filename": master_filename},
                "stems": stems,
                "downloads_remaining": max(0, settings.MAX_DOWNLOADS - count),
            }
        )

    async def _single_file(self, purchase: Purchase, beat: Beat, base: str, file: str) -> DownloadPlan:
        """Proxy one file named in a stems manifest; does not consume a download"""
        if purchase.purchase_tier != "stems":
            raise ForbiddenError("Individual files are only available for stems purchases")

        if file == "track":
            url, filename = _master_file(beat, base)
        else:
            url = (beat.stems or {}).get(file) if beat.stems_status == "complete" else None
            filename = f"{base} - {sanitize_filename_part(file).title()}.mp3"

        if not url:
            raise ValidationError(f"Unknown file: {file}")

        media_type = "audio/wav" if filename.endswith(".wav") else "audio/mpeg"
        return DownloadPlan(mode="stream", url=url, filename=filename, media_type=media_type)
