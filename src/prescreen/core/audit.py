"""Audit logging service for sensitive-data access and compliance events.

Writes are fire-and-forget: ``record`` schedules the insert as a tracked
task on its own database session and returns immediately. A failed write is
logged and counted, never raised into the operation that triggered it.
Callers commit their primary change before recording.

Usage:
    audit = AuditLogger(session_factory)
    audit.record(AuditAction.DECRYPT_SSN, lead_id=lead.id)
    ...
    await audit.wait_idle()  # shutdown / tests
"""

import asyncio
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prescreen.core.context import Caller, get_current_context_or_none
from prescreen.db.config import session_scope
from prescreen.db.models.audit import AuditAction, AuditLogEntry
from prescreen.db.repositories.audit import AuditLogRepository
from prescreen.observability.metrics import record_audit_write_failure

logger = structlog.get_logger()

SYSTEM_ACTOR = "system"
MAX_QUERY_LIMIT = 100


class AuditLogger:
    """Service for appending and querying audit log entries."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize audit logger.

        Args:
            session_factory: Factory for the sessions audit writes run in;
                never the caller's session.
        """
        self._session_factory = session_factory
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def record(
        self,
        action: AuditAction | str,
        *,
        lead_id: UUID | None = None,
        batch_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        caller: Caller | None = None,
    ) -> asyncio.Task[None]:
        """Schedule an audit entry write.

        The actor, IP address and user agent come from ``caller`` and the
        current request context. Without either, the entry is attributed to
        the system actor.

        Args:
            action: What happened
            lead_id: Lead the action concerns
            batch_id: Batch the action concerns
            details: JSON-serializable extra fields; never SSN or DOB values
            caller: Explicit caller, overriding the context's

        Returns:
            The scheduled write task
        """
        if isinstance(action, AuditAction):
            action = action.value

        ctx = get_current_context_or_none()
        caller = caller or (ctx.caller if ctx else None)

        values = {
            "action": action,
            "lead_id": lead_id,
            "batch_id": batch_id,
            "actor_id": caller.actor_id if caller else SYSTEM_ACTOR,
            "actor_email": caller.email if caller else None,
            "ip_address": ctx.ip_address if ctx else None,
            "user_agent": ctx.user_agent if ctx else None,
            "details": details or {},
        }

        task = asyncio.create_task(self._write(values))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write(self, values: dict[str, Any]) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                session.add(AuditLogEntry(**values))
                await session.commit()
        except Exception as e:
            logger.error(
                "audit_write_failed",
                action=values["action"],
                lead_id=str(values["lead_id"]) if values["lead_id"] else None,
                error_type=type(e).__name__,
            )
            record_audit_write_failure(values["action"])

    async def wait_idle(self) -> None:
        """Wait until every scheduled write has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def query(
        self,
        *,
        action: AuditAction | str | None = None,
        lead_id: UUID | None = None,
        batch_id: UUID | None = None,
        actor_id: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[AuditLogEntry], int]:
        """Query audit entries, newest first.

        Args:
            action: Filter by action
            lead_id: Filter by lead
            batch_id: Filter by batch
            actor_id: Filter by actor
            page: 1-based page number
            limit: Page size (max 100)

        Returns:
            Tuple of (entries on the page, total matching count)
        """
        if isinstance(action, AuditAction):
            action = action.value
        limit = max(1, min(limit, MAX_QUERY_LIMIT))
        page = max(1, page)

        async with self._session_factory() as session:
            return await AuditLogRepository(session).query(
                action=action,
                lead_id=lead_id,
                batch_id=batch_id,
                actor_id=actor_id,
                limit=limit,
                offset=(page - 1) * limit,
            )
