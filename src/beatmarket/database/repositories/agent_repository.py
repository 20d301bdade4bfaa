"""
Agent Repository
Lookup by bearer credential and reputation bookkeeping
"""

import uuid
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Agent
from .base import BaseRepository, RepositoryError


class AgentRepository(BaseRepository[Agent]):
    """Repository for agent operations"""

    def __init__(self, session: AsyncSession):
        super().__init__(Agent, session)

    async def get_by_token(self, api_token: str) -> Optional[Agent]:
        """Resolve an agent from its bearer token"""
        try:
            result = await self.session.execute(
                select(Agent).where(Agent.api_token == api_token)
            )
            return result.scalar_one_or_none()
        except Exception as e:
            raise RepositoryError(f"Error resolving agent: {str(e)}")

    async def get_handle(self, agent_id: uuid.UUID) -> Optional[str]:
        result = await self.session.execute(select(Agent.handle).where(Agent.id == agent_id))
        return result.scalar_one_or_none()

    async def increment_karma(self, agent_id: uuid.UUID, amount: int) -> None:
        """Atomically add reputation to an agent"""
        try:
            await self.session.execute(
                update(Agent)
                .where(Agent.id == agent_id)
                .values(karma=Agent.karma + amount)
            )
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            raise RepositoryError(f"Error updating karma: {str(e)}")
