"""
Sample Repository
Non-silent stems listed in the sample library
"""

import uuid
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Beat, Sample
from .base import BaseRepository, RepositoryError


class SampleRepository(BaseRepository[Sample]):
    """Repository for sample library rows"""

    def __init__(self, session: AsyncSession):
        super().__init__(Sample, session)

    async def upsert(
        self,
        beat_id: uuid.UUID,
        stem_type: str,
        audio_url: str,
        file_size: Optional[int]
    ) -> None:
        """Insert or refresh the sample row for one stem of a beat"""
        try:
            stmt = insert(Sample).values(
                beat_id=beat_id,
                stem_type=stem_type,
                audio_url=audio_url,
                file_size=file_size
            )
            stmt = stmt.on_conflict_do_update(
                constraint="uq_samples_beat_stem",
                set_={"audio_url": stmt.excluded.audio_url, "file_size": stmt.excluded.file_size}
            )
            await self.session.execute(stmt)
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            raise RepositoryError(f"Failed to upsert sample: {str(e)}")

    async def list_available(self, limit: int = 50, offset: int = 0) -> List[Sample]:
        """Samples whose parent beat is complete and not deleted"""
        result = await self.session.execute(
            select(Sample)
            .join(Beat, Beat.id == Sample.beat_id)
            .where(Beat.status == "complete", Beat.deleted_at.is_(None))
            .order_by(Sample.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())
