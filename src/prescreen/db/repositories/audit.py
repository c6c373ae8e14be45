"""Audit log repository."""

from uuid import UUID

from sqlalchemy import func, select

from prescreen.db.models import AuditLogEntry
from prescreen.db.repositories.base import BaseRepository


class AuditLogRepository(BaseRepository[AuditLogEntry, UUID]):
    """Read access to the audit log, plus append.

    There is deliberately no update or delete here.
    """

    entity_name = "audit entry"

    async def query(
        self,
        *,
        action: str | None = None,
        lead_id: UUID | None = None,
        batch_id: UUID | None = None,
        actor_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLogEntry], int]:
        """Newest entries first, with the total matching count."""
        conditions = []
        if action:
            conditions.append(AuditLogEntry.action == action)
        if lead_id is not None:
            conditions.append(AuditLogEntry.lead_id == lead_id)
        if batch_id is not None:
            conditions.append(AuditLogEntry.batch_id == batch_id)
        if actor_id:
            conditions.append(AuditLogEntry.actor_id == actor_id)

        total = (
            await self.db.execute(select(func.count(AuditLogEntry.id)).where(*conditions))
        ).scalar() or 0
        stmt = (
            select(AuditLogEntry)
            .where(*conditions)
            .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), int(total)
