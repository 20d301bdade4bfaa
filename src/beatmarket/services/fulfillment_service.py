"""
Fulfillment Orchestrator
Accepts generation requests, enforces per-agent invariants and dispatches to the provider
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import (
    DuplicateRequestError,
    PreconditionError,
    ProviderError,
    RateLimitedError,
    ValidationError,
)
from ..core.logging import pipeline_logger
from ..core.validation import (
    NEGATIVE_TAGS_MAX_LENGTH,
    STYLE_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    clamp_bpm,
    contains_vocal_terms,
    resolve_price_override,
    sanitize_text,
)
from ..database.models import Agent, Beat
from ..database.repositories.agent_repository import AgentRepository
from ..database.repositories.beat_repository import BeatRepository
from ..database.repositories.rate_limit_repository import RateLimitRepository
from ..database.schemas import BeatSummary, GenerationRequest, GenerationResponse
from .credential_cache import CredentialCache
from .provider_client import GenerationProviderClient
from .rate_limiter import RateLimiter

settings = get_settings()

GENERATE_ACTION = "generate"


class FulfillmentService:
    """
    Turns an agent's generation request into a pair of generating beats.

    Every precondition is checked before the provider is called, and beat
    rows are only written once the provider has accepted the job.
    """

    def __init__(
        self,
        session: AsyncSession,
        provider_factory: Callable[[str], GenerationProviderClient] = GenerationProviderClient,
        credential_cache: Optional[CredentialCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        beats: Optional[BeatRepository] = None,
        agents: Optional[AgentRepository] = None
    ):
        self.session = session
        self.provider_factory = provider_factory
        self.credential_cache = credential_cache
        self.rate_limiter = rate_limiter or RateLimiter(RateLimitRepository(session))
        self.beats = beats or BeatRepository(session)
        self.agents = agents or AgentRepository(session)

    @staticmethod
    def check_payout_preconditions(agent: Agent) -> None:
        """Payout destination and both default prices must be configured"""
        if not agent.paypal_email:
            raise PreconditionError(
                "PayPal email required before generating beats",
                fix="Set paypal_email on your agent profile so sales can be paid out"
            )

        if agent.default_beat_price is None or float(agent.default_beat_price) < settings.MIN_BEAT_PRICE:
            raise PreconditionError(
                f"A default beat price of at least ${settings.MIN_BEAT_PRICE} is required",
                fix=f"Set default_beat_price between {settings.MIN_BEAT_PRICE} and {settings.MAX_BEAT_PRICE}"
            )

        if agent.default_stems_price is None or float(agent.default_stems_price) < settings.MIN_STEMS_PRICE:
            raise PreconditionError(
                f"A default stems price of at least ${settings.MIN_STEMS_PRICE} is required",
                fix=f"Set default_stems_price between {settings.MIN_STEMS_PRICE} and {settings.MAX_STEMS_PRICE}"
            )

    @staticmethod
    def resolve_genre(agent: Agent, requested: str) -> str:
        """Match the requested genre against the agent's declared genres"""
        declared = [g for g in (agent.genres or []) if isinstance(g, str)]
        if not declared:
            raise PreconditionError(
                "No genres declared for this agent",
                fix="Declare your genres on your agent profile before generating"
            )

        wanted = requested.strip().lower()
        for genre in declared:
            if genre.strip().lower() == wanted:
                return genre

        raise ValidationError(
            f'Genre "{requested}" is not part of your music soul. '
            f'Your genres: {", ".join(declared)}',
            valid_genres=declared
        )

    async def _check_limits(self, agent: Agent) -> None:
        now = datetime.now(timezone.utc)

        await self.rate_limiter.hit(
            GENERATE_ACTION,
            str(agent.id),
            settings.GENERATION_HOURLY_LIMIT,
            message=f"Generation limit reached ({settings.GENERATION_HOURLY_LIMIT} per hour). Try again later."
        )

        created_today = await self.beats.count_created_since(agent.id, now - timedelta(hours=24))
        if created_today >= settings.GENERATION_DAILY_LIMIT:
            raise RateLimitedError(
                f"Daily limit reached ({settings.GENERATION_DAILY_LIMIT} beats per 24 hours). Try again tomorrow."
            )

    async def _check_pending(self, agent: Agent) -> None:
        now = datetime.now(timezone.utc)

        swept = await self.beats.fail_stale_generating(
            now - timedelta(minutes=settings.STALE_GENERATION_MINUTES),
            agent_id=agent.id
        )
        pipeline_logger.log_sweep("StaleGenerationSweep", swept, agent_id=str(agent.id))

        pending = await self.beats.list_generating_since(
            agent.id,
            now - timedelta(minutes=settings.PENDING_WINDOW_MINUTES)
        )
        if len(pending) >= settings.MAX_PENDING_GENERATIONS:
            raise DuplicateRequestError(
                "You already have beats generating. Wait for them to finish before requesting more.",
                pending_beats=[{"id": str(b.id), "title": b.title} for b in pending]
            )

    def _build_rows(
        self,
        agent: Agent,
        task_id: Optional[str],
        fields: Dict[str, Any],
        price: Optional[float],
        stems_price: Optional[float]
    ) -> List[Dict[str, Any]]:
        common = {
            "agent_id": agent.id,
            "task_id": task_id,
            "genre": fields["genre"],
            "style": fields["style"],
            "model": fields["model"],
            "negative_tags": fields["negative_tags"],
            "instrumental": True,
            "bpm": fields["bpm"],
            "price": price,
            "stems_price": stems_price,
            "status": "generating",
        }
        return [
            {**common, "title": fields["title"]},
            {**common, "title": fields["title_v2"]},
        ]

    def _sanitize(self, request: GenerationRequest) -> Dict[str, Any]:
        title = sanitize_text(request.title, TITLE_MAX_LENGTH)
        genre = sanitize_text(request.genre, 64)
        style = sanitize_text(request.style, STYLE_MAX_LENGTH)
        if not title or not genre or not style:
            raise ValidationError("title, genre, and style are required")

        if contains_vocal_terms(title, style):
            raise ValidationError(
                "Instrumental beats only. Remove vocal or lyric terms from title and style.",
                fix="Describe instruments, mood and tempo instead"
            )

        model = (request.model or settings.DEFAULT_MODEL).strip()
        if not settings.validate_model(model):
            raise ValidationError(
                f"Invalid model. Valid options: {', '.join(settings.VALID_MODELS)}"
            )

        return {
            "title": title,
            "title_v2": sanitize_text(request.title_v2, TITLE_MAX_LENGTH) or f"{title} (v2)"[:TITLE_MAX_LENGTH],
            "genre": genre,
            "style": style,
            "model": model,
            "negative_tags": sanitize_text(request.negative_tags, NEGATIVE_TAGS_MAX_LENGTH),
            "bpm": clamp_bpm(request.bpm),
        }

    async def generate(self, agent: Agent, request: GenerationRequest) -> GenerationResponse:
        """Validate, dispatch one provider job and record the two sibling beats"""

        self.check_payout_preconditions(agent)

        provider_api_key = (request.provider_api_key or "").strip()
        if not provider_api_key:
            raise ValidationError("provider_api_key is required. It is used once and never stored.")

        fields = self._sanitize(request)
        fields["genre"] = self.resolve_genre(agent, fields["genre"])

        price = resolve_price_override(
            request.price,
            float(agent.default_beat_price),
            settings.MIN_BEAT_PRICE,
            settings.MAX_BEAT_PRICE,
            "Beat price"
        )
        stems_price = resolve_price_override(
            request.stems_price,
            float(agent.default_stems_price),
            settings.MIN_STEMS_PRICE,
            settings.MAX_STEMS_PRICE,
            "Stems price"
        )

        await self._check_limits(agent)
        await self._check_pending(agent)

        pipeline_logger.log_stage_start(
            operation="Generate",
            agent_id=str(agent.id),
            genre=fields["genre"],
            model=fields["model"]
        )

        async with self.provider_factory(provider_api_key) as provider:
            result = await provider.generate(
                title=fields["title"],
                style=fields["style"],
                model=fields["model"],
                callback_url=settings.generation_callback_url,
                negative_tags=fields["negative_tags"] or None
            )

        if result.is_err():
            raise ProviderError(
                result.error or "Provider API error",
                status_code=result.upstream_status()
            )

        task_id = result.data
        beats: List[Beat] = await self.beats.create_siblings(
            self._build_rows(agent, task_id, fields, price, stems_price)
        )

        if task_id and self.credential_cache is not None:
            try:
                await self.credential_cache.store(task_id, provider_api_key)
            except RedisError as e:
                # Beats are already recorded; only auto post-processing is lost
                pipeline_logger.log_stage_error(
                    operation="CacheCredential",
                    error=str(e),
                    task_id=task_id
                )

        pipeline_logger.log_stage_complete(
            operation="Generate",
            agent_id=str(agent.id),
            task_id=task_id,
            beat_ids=[str(b.id) for b in beats]
        )

        return GenerationResponse(
            success=True,
            task_id=task_id,
            agent={"handle": agent.handle, "genres": list(agent.genres or [])},
            beats=[BeatSummary.model_validate(b) for b in beats],
            message="Generating two instrumental variants. Results arrive via callback in a few minutes."
        )
