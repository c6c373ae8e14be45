"""Batch and program repositories."""

from uuid import UUID

from sqlalchemy import func, select

from prescreen.db.models import Batch, Program, ProgramStatus
from prescreen.db.repositories.base import BaseRepository


class BatchRepository(BaseRepository[Batch, UUID]):
    """Repository for Batch rows."""

    entity_name = "batch"

    async def list_recent(
        self,
        *,
        status: str | None = None,
        program_id: UUID | None = None,
        limit: int = 25,
        offset: int = 0,
    ) -> tuple[list[Batch], int]:
        """Newest batches first, with the total matching count."""
        conditions = []
        if status:
            conditions.append(Batch.status == status)
        if program_id is not None:
            conditions.append(Batch.program_id == program_id)

        total = (
            await self.db.execute(select(func.count(Batch.id)).where(*conditions))
        ).scalar() or 0
        stmt = (
            select(Batch)
            .where(*conditions)
            .order_by(Batch.created_at.desc(), Batch.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), int(total)


class ProgramRepository(BaseRepository[Program, UUID]):
    """Repository for Program rows."""

    entity_name = "program"

    async def get_by_bureau_id(self, bureau_program_id: str) -> Program | None:
        stmt = select(Program).where(Program.bureau_program_id == bureau_program_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active_by_name(self, name: str) -> Program | None:
        stmt = (
            select(Program)
            .where(Program.name == name, Program.status == ProgramStatus.ACTIVE.value)
            .order_by(Program.created_at)
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def oldest_active(self, *, exclude_prefix: str | None = None) -> Program | None:
        """The first active program created, skipping names with ``exclude_prefix``."""
        stmt = (
            select(Program)
            .where(Program.status == ProgramStatus.ACTIVE.value)
            .order_by(Program.created_at, Program.id)
            .limit(1)
        )
        if exclude_prefix:
            stmt = stmt.where(Program.name.not_like(f"{exclude_prefix}%"))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self, *, active_only: bool = False) -> list[Program]:
        stmt = select(Program).order_by(Program.name)
        if active_only:
            stmt = stmt.where(Program.status == ProgramStatus.ACTIVE.value)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def names(self, program_ids: list[UUID]) -> dict[UUID, str]:
        if not program_ids:
            return {}
        stmt = select(Program.id, Program.name).where(Program.id.in_(program_ids))
        return dict((await self.db.execute(stmt)).tuples().all())
