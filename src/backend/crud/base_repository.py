"""
Base CRUD with generic operations shared by the table-specific repositories.
"""
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

# Type variable for the model class
ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseCRUD(Generic[ModelType]):
    """
    Generic repository providing common CRUD operations.

    Usage:
        class UserCRUD(BaseCRUD[User]):
            model = User

    Repositories never commit; the calling service owns the transaction.
    """

    model: Type[ModelType] = None

    @classmethod
    async def find_by_id(cls, db: AsyncSession, id_value: Any) -> Optional[ModelType]:
        """Find a single record by primary key."""
        result = await db.execute(select(cls.model).where(cls.model.id == id_value))
        return result.scalar_one_or_none()

    @classmethod
    async def count(
        cls,
        db: AsyncSession,
        *,
        filters: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Count records matching equality filters."""
        stmt = select(func.count()).select_from(cls.model)

        for field, value in (filters or {}).items():
            if value is not None:
                stmt = stmt.where(getattr(cls.model, field) == value)

        result = await db.execute(stmt)
        return result.scalar() or 0

    @classmethod
    async def create(cls, db: AsyncSession, instance: ModelType) -> ModelType:
        """Add a new record and flush so server defaults and ids are populated."""
        db.add(instance)
        await db.flush()
        await db.refresh(instance)
        return instance

    @classmethod
    async def delete_where(cls, db: AsyncSession, **filters: Any) -> int:
        """Bulk delete by equality filters. Returns the number of rows removed."""
        stmt = delete(cls.model)
        for field, value in filters.items():
            stmt = stmt.where(getattr(cls.model, field) == value)

        result = await db.execute(stmt)
        return result.rowcount or 0
