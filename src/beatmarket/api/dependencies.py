"""
BeatMarket API Dependencies
Session, authentication and service providers injected into routes
"""

import hmac
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import AuthenticationError
from ..database.connection import database_manager
from ..database.models import Agent
from ..database.repositories.agent_repository import AgentRepository
from ..services.beat_management_service import BeatManagementService
from ..services.callback_service import CallbackService
from ..services.credential_cache import CredentialCache
from ..services.download_service import DownloadService
from ..services.entitlement_service import EntitlementService
from ..services.fulfillment_service import FulfillmentService
from ..services.maintenance_service import MaintenanceService
from ..services.post_processing_service import PostProcessingService
from ..services.verification_service import VerificationService

settings = get_settings()

bearer = HTTPBearer(auto_error=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    async with database_manager.get_session() as session:
        yield session


def get_credential_cache() -> Optional[CredentialCache]:
    """Credential cache, or None when Redis is not connected"""
    try:
        return CredentialCache(database_manager.get_redis())
    except RuntimeError:
        return None


async def get_current_agent(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    session: AsyncSession = Depends(get_db_session)
) -> Agent:
    if not creds or not creds.credentials:
        raise AuthenticationError("Missing bearer token")

    agent = await AgentRepository(session).get_by_token(creds.credentials)
    if agent is None:
        raise AuthenticationError("Invalid API token")
    return agent


def require_callback_secret(
    secret: Optional[str] = Query(None),
    x_callback_secret: Optional[str] = Header(None, alias="X-Callback-Secret")
) -> None:
    """Shared-secret check for webhook and maintenance endpoints"""
    provided = x_callback_secret or secret or ""
    if not hmac.compare_digest(provided.encode("utf-8"), settings.CALLBACK_SECRET.encode("utf-8")):
        raise AuthenticationError("Unauthorized")


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# Service providers

def get_fulfillment_service(
    session: AsyncSession = Depends(get_db_session),
    credential_cache: Optional[CredentialCache] = Depends(get_credential_cache)
) -> FulfillmentService:
    return FulfillmentService(session, credential_cache=credential_cache)


def get_callback_service(
    session: AsyncSession = Depends(get_db_session),
    credential_cache: Optional[CredentialCache] = Depends(get_credential_cache)
) -> CallbackService:
    return CallbackService(session, credential_cache=credential_cache)


def get_post_processing_service(session: AsyncSession = Depends(get_db_session)) -> PostProcessingService:
    return PostProcessingService(session)


def get_entitlement_service(session: AsyncSession = Depends(get_db_session)) -> EntitlementService:
    return EntitlementService(session)


def get_download_service(session: AsyncSession = Depends(get_db_session)) -> DownloadService:
    return DownloadService(session)


def get_verification_service(session: AsyncSession = Depends(get_db_session)) -> VerificationService:
    return VerificationService(session)


def get_beat_management_service(
    session: AsyncSession = Depends(get_db_session),
    credential_cache: Optional[CredentialCache] = Depends(get_credential_cache)
) -> BeatManagementService:
    return BeatManagementService(session, callbacks=CallbackService(session, credential_cache=credential_cache))


def get_maintenance_service(session: AsyncSession = Depends(get_db_session)) -> MaintenanceService:
    return MaintenanceService(session)
