"""
Beat Repository
Database operations for generated beats and their pipeline state
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Sequence
from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Beat
from .base import BaseRepository, RepositoryError


class BeatRepository(BaseRepository[Beat]):
    """Repository for beat database operations"""

    def __init__(self, session: AsyncSession):
        super().__init__(Beat, session)

    async def create_siblings(self, rows: Sequence[Dict[str, Any]]) -> List[Beat]:
        """Insert sibling variants of one provider task in a single commit"""
        try:
            beats = [Beat(**row) for row in rows]
            self.session.add_all(beats)
            await self.session.commit()
            for beat in beats:
                await self.session.refresh(beat)
            return beats

        except Exception as e:
            await self.session.rollback()
            raise RepositoryError(f"Failed to create beats: {str(e)}")

    async def count_created_since(self, agent_id: uuid.UUID, since: datetime) -> int:
        """Count beats created by an agent after a cutoff"""
        return await self.count(Beat.agent_id == agent_id, Beat.created_at >= since)

    async def list_generating_since(self, agent_id: uuid.UUID, since: datetime) -> List[Beat]:
        """Beats of an agent still generating inside the de-duplication window"""
        result = await self.session.execute(
            select(Beat)
            .where(
                Beat.agent_id == agent_id,
                Beat.status == "generating",
                Beat.created_at >= since
            )
            .order_by(Beat.created_at.asc())
        )
        return list(result.scalars().all())

    async def fail_stale_generating(
        self,
        older_than: datetime,
        agent_id: Optional[uuid.UUID] = None
    ) -> int:
        """Sweep beats stuck in generating past the staleness window to failed"""
        try:
            conditions = [Beat.status == "generating", Beat.created_at < older_than]
            if agent_id is not None:
                conditions.append(Beat.agent_id == agent_id)

            result = await self.session.execute(
                update(Beat)
                .where(and_(*conditions))
                .values(status="failed")
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            return result.rowcount

        except Exception as e:
            await self.session.rollback()
            raise RepositoryError(f"Failed to sweep stale beats: {str(e)}")

    async def find_by_task_id(self, task_id: str) -> List[Beat]:
        """Siblings of one provider task, oldest first"""
        result = await self.session.execute(
            select(Beat).where(Beat.task_id == task_id).order_by(Beat.created_at.asc())
        )
        return list(result.scalars().all())

    async def find_by_suno_ids(self, suno_ids: Sequence[str]) -> List[Beat]:
        if not suno_ids:
            return []
        result = await self.session.execute(
            select(Beat).where(Beat.suno_id.in_(list(suno_ids))).order_by(Beat.created_at.asc())
        )
        return list(result.scalars().all())

    async def most_recent_generating(self, limit: int = 2) -> List[Beat]:
        """Most recently created generating beats, returned oldest first"""
        result = await self.session.execute(
            select(Beat)
            .where(Beat.status == "generating")
            .order_by(Beat.created_at.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def list_for_agent(
        self,
        agent_id: uuid.UUID,
        status: Optional[str] = None,
        include_deleted: bool = False,
        limit: int = 50,
        offset: int = 0
    ) -> List[Beat]:
        query = select(Beat).where(Beat.agent_id == agent_id)
        if status:
            query = query.where(Beat.status == status)
        if not include_deleted:
            query = query.where(Beat.deleted_at.is_(None))
        query = query.order_by(Beat.created_at.desc()).limit(limit).offset(offset)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def mark_sold(self, beat_id: uuid.UUID) -> bool:
        """Flip sold false -> true; False means the beat was already sold"""
        changed = await self.update_where(beat_id, {"sold": False}, sold=True)
        return changed == 1

    async def release_sale(self, beat_id: uuid.UUID) -> bool:
        """Undo mark_sold for a sale whose purchase could not be completed"""
        changed = await self.update_where(beat_id, {"sold": True}, sold=False)
        return changed == 1

    async def set_job_status(
        self,
        beat_id: uuid.UUID,
        job: str,
        status: Optional[str],
        **values: Any
    ) -> int:
        """Set wav_status or stems_status unless that job is already complete"""
        column = f"{job}_status"
        try:
            stmt = (
                update(Beat)
                .where(Beat.id == beat_id)
                .where(getattr(Beat, column).is_distinct_from("complete"))
                .values(**{column: status}, **values)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            await self.session.commit()
            return result.rowcount

        except Exception as e:
            await self.session.rollback()
            raise RepositoryError(f"Failed to update {column}: {str(e)}")

    async def soft_delete(self, beat_id: uuid.UUID) -> bool:
        """Soft-delete an unsold, not yet deleted beat"""
        changed = await self.update_where(
            beat_id,
            {"sold": False, "deleted_at": None},
            deleted_at=datetime.now(timezone.utc)
        )
        return changed == 1
