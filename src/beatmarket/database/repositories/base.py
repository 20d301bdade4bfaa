"""
Base Repository
Common CRUD and conditional-update operations for all entities
"""

import uuid
from typing import Generic, TypeVar, Type, Optional, Dict, Any
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from ..connection import Base

# Type variable for generic repository
ModelType = TypeVar("ModelType", bound=Base)


class RepositoryError(Exception):
    """Base repository error"""
    pass


class ConflictError(RepositoryError):
    """Data conflict error"""
    pass


class BaseRepository(Generic[ModelType]):
    """Base repository with common CRUD operations"""

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    async def create(self, **values: Any) -> ModelType:
        """Create and commit a new entity"""
        try:
            db_obj = self.model(**values)
            self.session.add(db_obj)
            await self.session.commit()
            await self.session.refresh(db_obj)
            return db_obj

        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(f"Data conflict: {str(e)}")

    async def get(self, id: uuid.UUID) -> Optional[ModelType]:
        """Get entity by ID"""
        try:
            result = await self.session.execute(
                select(self.model).where(self.model.id == id)
            )
            return result.scalar_one_or_none()
        except Exception as e:
            raise RepositoryError(f"Error getting entity: {str(e)}")

    async def reload(self, obj: ModelType) -> ModelType:
        """Re-read an entity after a conditional update bypassed the session"""
        await self.session.refresh(obj)
        return obj

    async def update_fields(self, id: uuid.UUID, **values: Any) -> int:
        """Unconditionally update columns of one entity; returns affected rows"""
        return await self.update_where(id, {}, **values)

    async def update_where(
        self,
        id: uuid.UUID,
        expected: Dict[str, Any],
        **values: Any
    ) -> int:
        """
        Compare-and-swap update.

        Applies ``values`` only if every column in ``expected`` still holds
        the expected value (``None`` matches SQL NULL). Returns the number of
        rows changed, so 0 means another writer got there first.
        """
        try:
            stmt = update(self.model).where(self.model.id == id)
            for field, value in expected.items():
                column = getattr(self.model, field)
                stmt = stmt.where(column.is_(None) if value is None else column == value)
            stmt = stmt.values(**values).execution_options(synchronize_session=False)

            result = await self.session.execute(stmt)
            await self.session.commit()
            return result.rowcount

        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(f"Data conflict: {str(e)}")
        except Exception as e:
            await self.session.rollback()
            raise RepositoryError(f"Error updating entity: {str(e)}")

    async def count(self, *conditions) -> int:
        """Count entities matching SQL conditions"""
        try:
            query = select(func.count(self.model.id)).where(*conditions)
            result = await self.session.execute(query)
            return result.scalar() or 0
        except Exception as e:
            raise RepositoryError(f"Error counting entities: {str(e)}")
