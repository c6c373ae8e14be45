"""Base repository with common data-access operations.

Usage:
    from prescreen.db.repositories.base import BaseRepository

    class BatchRepository(BaseRepository[Batch, UUID]):
        pass

    repo = BatchRepository(db_session)
    batch = await repo.get_or_raise(batch_id)

Repositories flush; committing is left to the calling service so that one
unit of work spans several repositories.
"""

from collections.abc import Sequence
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prescreen.core.exceptions import NotFoundError
from prescreen.db.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)
PKType = TypeVar("PKType", bound=UUID | int | str)


class BaseRepository(Generic[ModelType, PKType]):
    """Generic repository for SQLAlchemy models.

    Type Parameters:
        ModelType: The SQLAlchemy model class
        PKType: The type of the primary key

    Attributes:
        model: The model class
        db: The database session
    """

    model: type[ModelType]
    entity_name: str = "record"

    def __init__(self, db: AsyncSession):
        self.db = db

    def __init_subclass__(cls, **kwargs):
        """Extract model type from generic parameter."""
        super().__init_subclass__(**kwargs)
        for base in getattr(cls, "__orig_bases__", []):
            args = getattr(base, "__args__", None)
            if args and len(args) >= 1:
                first_arg = args[0]
                if isinstance(first_arg, type) and issubclass(first_arg, Base):
                    cls.model = first_arg
                    break

    async def get(self, pk: PKType) -> ModelType | None:
        """Get a single record by primary key."""
        return await self.db.get(self.model, pk)

    async def get_or_raise(self, pk: PKType) -> ModelType:
        """Get a single record by primary key or raise.

        Raises:
            NotFoundError: If record not found
        """
        result = await self.get(pk)
        if result is None:
            raise NotFoundError(self.entity_name, pk)
        return result

    async def get_many(self, pks: Sequence[PKType]) -> list[ModelType]:
        """Get multiple records by primary keys.

        Returns:
            List of found models (may be fewer than requested if some not found)
        """
        if not pks:
            return []
        pk_col = self._get_pk_column()
        stmt = select(self.model).where(pk_col.in_(pks))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def add(self, obj: ModelType) -> ModelType:
        """Add a new record and flush it."""
        self.db.add(obj)
        await self.db.flush()
        return obj

    async def add_many(self, objs: Sequence[ModelType]) -> list[ModelType]:
        """Add multiple records and flush them."""
        self.db.add_all(list(objs))
        await self.db.flush()
        return list(objs)

    def _get_pk_column(self):
        """Get the primary key column for this model."""
        pk_cols = self.model.__mapper__.primary_key
        if not pk_cols:
            raise ValueError(f"No primary key found for {self.model.__name__}")
        return pk_cols[0]
