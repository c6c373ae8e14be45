"""Retry queue: leads whose bureau outcome an operator can correct and resubmit."""

from uuid import UUID

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prescreen.core.context import Caller
from prescreen.core.exceptions import ValidationError
from prescreen.db.models import Batch, Lead, LeadStatus, MatchStatus, Tier
from prescreen.db.repositories import LeadRepository
from prescreen.screening.orchestrator import BatchOrchestrator

logger = structlog.get_logger()


class RetryQueueManager:
    """Toggles ``retry_queued`` and feeds queued leads back into batches.

    A queued lead is never picked up by regular batch selection; it only
    returns to the gateway through ``resubmit``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orchestrator: BatchOrchestrator,
    ):
        self._session_factory = session_factory
        self._orchestrator = orchestrator

    async def enqueue(self, lead_ids: list[UUID]) -> int:
        return await self._set_queued(lead_ids, True)

    async def dequeue(self, lead_ids: list[UUID]) -> int:
        return await self._set_queued(lead_ids, False)

    async def _set_queued(self, lead_ids: list[UUID], queued: bool) -> int:
        if not lead_ids:
            raise ValidationError("At least one lead id is required", field="lead_ids")
        async with self._session_factory() as session:
            result = await session.execute(
                update(Lead).where(Lead.id.in_(lead_ids)).values(retry_queued=queued)
            )
            await session.commit()
        logger.info("retry_queue_updated", queued=queued, count=result.rowcount)
        return result.rowcount

    async def list_queued(self, program_id: UUID | None = None) -> list[Lead]:
        """Queued leads, most recently touched first."""
        async with self._session_factory() as session:
            return await LeadRepository(session).list_retry_queued(program_id)

    async def resubmit(
        self,
        lead_ids: list[UUID],
        submitter: Caller,
        name: str | None = None,
    ) -> list[Batch]:
        """Dequeue leads, reset their bureau outcome and run them again.

        Leads are grouped by program; one batch runs per program. Dismissed
        leads stay queued until restored. The reset and every program's
        batch commit together, so a lead leaves the queue only once it is
        assigned to a batch.

        Raises:
            ValidationError: If none of the leads is queued, or every queued
                lead is dismissed
        """
        async with self._session_factory() as session:
            queued = [
                lead
                for lead in await LeadRepository(session).get_many(lead_ids)
                if lead.retry_queued
            ]
            if not queued:
                raise ValidationError("None of the leads is in the retry queue", field="lead_ids")

            leads = [lead for lead in queued if lead.status == LeadStatus.PENDING.value]
            if len(leads) < len(queued):
                logger.info("retry_queue_dismissed_skipped", skipped=len(queued) - len(leads))
            if not leads:
                raise ValidationError(
                    "Queued leads are dismissed; restore them before resubmitting",
                    field="lead_ids",
                )

            by_program: dict[UUID, list[UUID]] = {}
            for lead in leads:
                lead.retry_queued = False
                lead.batch_id = None
                lead.match_status = MatchStatus.PENDING.value
                lead.tier = Tier.PENDING.value
                lead.is_qualified = False
                lead.middle_score = None
                lead.error_message = None
                by_program.setdefault(lead.program_id, []).append(lead.id)
            await session.flush()

            staged = [
                await self._orchestrator.stage_batch(
                    session, program_id, submitter, lead_ids=ids, name=name
                )
                for program_id, ids in by_program.items()
            ]
            await session.commit()

        logger.info("retry_queue_resubmitting", lead_count=len(leads), programs=len(staged))
        for batch in staged:
            self._orchestrator.announce_batch(batch, submitter)
        return [await self._orchestrator.run_batch(batch.id) for batch in staged]
