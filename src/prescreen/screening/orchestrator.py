"""Batch orchestration: select leads, submit them, persist classified outcomes.

A batch moves ``pending -> processing`` exactly once, then to ``completed``
or ``failed``. Chunks are submitted sequentially and each chunk's Result
rows and lead updates commit in one transaction, so a lead whose
``match_status`` left ``pending`` is known to have its Results stored.
Recovery of a stuck ``processing`` batch resubmits only the leads still
``pending``.

Whoever submits a batch holds its lease (``lease_expires_at``), claimed with
a conditional UPDATE and renewed after every chunk. Recovery may only claim
a ``processing`` batch whose lease has lapsed, so at most one process
submits a batch's leads at a time.
"""

import asyncio
from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID

import structlog
from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prescreen.bureau.types import LeadRecord, SubmitOutcome
from prescreen.core.audit import AuditLogger
from prescreen.core.context import Caller
from prescreen.core.encryption import Encryptor
from prescreen.core.exceptions import (
    BatchStateError,
    DecryptionError,
    GatewayError,
    ValidationError,
)
from prescreen.db.models import (
    AuditAction,
    Batch,
    BatchStatus,
    Lead,
    MatchStatus,
    Program,
    Result,
    Tier,
)
from prescreen.db.repositories import BatchRepository, LeadRepository, ProgramRepository
from prescreen.observability.metrics import record_batch_outcome, record_record_outcomes
from prescreen.scoring import classify, middle_score

logger = structlog.get_logger()


class RecordSubmitter(Protocol):
    """The part of the gateway client the orchestrator depends on."""

    @property
    def max_batch_size(self) -> int: ...

    async def submit_batch(self, records: list[LeadRecord], program_id: str) -> SubmitOutcome: ...


class BatchOrchestrator:
    """Creates and runs batches against the bureau gateway.

    Each operation opens its own session, so independent batches never
    share a transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: RecordSubmitter,
        encryptor: Encryptor,
        audit: AuditLogger,
        lease_seconds: int = 300,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._encryptor = encryptor
        self._audit = audit
        self._lease = timedelta(seconds=lease_seconds)

    def _lease_deadline(self) -> datetime:
        return datetime.now(UTC) + self._lease

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_batch(
        self,
        program_id: UUID,
        submitter: Caller,
        lead_ids: list[UUID] | None = None,
        name: str | None = None,
    ) -> Batch:
        """Group eligible leads into a new ``pending`` batch.

        Leads that are dismissed, retry-queued, already scored, or held by a
        batch that has not failed are skipped.

        Args:
            program_id: Program to submit under
            submitter: Caller recorded on the batch
            lead_ids: Restrict selection to these leads (default: all eligible)
            name: Batch name (default: program name and timestamp)

        Raises:
            NotFoundError: If the program does not exist
            ValidationError: If no lead is eligible
        """
        async with self._session_factory() as session:
            batch = await self.stage_batch(
                session, program_id, submitter, lead_ids=lead_ids, name=name
            )
            await session.commit()

        self.announce_batch(batch, submitter)
        return batch

    async def stage_batch(
        self,
        session: AsyncSession,
        program_id: UUID,
        submitter: Caller,
        lead_ids: list[UUID] | None = None,
        name: str | None = None,
    ) -> Batch:
        """Add a ``pending`` batch and its lead assignments to ``session``.

        The caller commits, then calls ``announce_batch``.
        """
        program = await ProgramRepository(session).get_or_raise(program_id)
        leads = await LeadRepository(session).select_eligible(program_id, lead_ids)
        if not leads:
            raise ValidationError("No eligible leads to submit", field="lead_ids")

        if lead_ids is not None and len(leads) < len(set(lead_ids)):
            logger.info(
                "batch_leads_skipped",
                requested=len(set(lead_ids)),
                eligible=len(leads),
            )

        now = datetime.now(UTC)
        batch = Batch(
            name=name or f"{program.name} {now:%Y-%m-%d %H:%M}",
            program_id=program_id,
            status=BatchStatus.PENDING.value,
            total_records=len(leads),
            submitted_by_id=submitter.actor_id,
            submitted_by_email=submitter.email,
        )
        await BatchRepository(session).add(batch)
        for lead in leads:
            lead.batch_id = batch.id
        return batch

    def announce_batch(self, batch: Batch, submitter: Caller) -> None:
        logger.info("batch_created", batch_id=str(batch.id), lead_count=batch.total_records)
        self._audit.record(
            AuditAction.BATCH_SUBMITTED,
            batch_id=batch.id,
            details={"lead_count": batch.total_records, "program_id": str(batch.program_id)},
            caller=submitter,
        )

    async def submit(
        self,
        program_id: UUID,
        submitter: Caller,
        lead_ids: list[UUID] | None = None,
        name: str | None = None,
    ) -> Batch:
        """Create a batch and run it to completion."""
        batch = await self.create_batch(program_id, submitter, lead_ids=lead_ids, name=name)
        return await self.run_batch(batch.id)

    # =========================================================================
    # Execution
    # =========================================================================

    async def run_batch(self, batch_id: UUID) -> Batch:
        """Submit a ``pending`` batch and persist its outcomes.

        Gateway failures leave the batch ``failed`` and its unscored leads
        selectable again. Cancellation leaves it ``processing`` for
        ``recover_batch``.

        Raises:
            NotFoundError: If the batch does not exist
            BatchStateError: If the batch is not ``pending``
        """
        async with self._session_factory() as session:
            batch = await BatchRepository(session).get_or_raise(batch_id)
            result = await session.execute(
                update(Batch)
                .where(Batch.id == batch_id, Batch.status == BatchStatus.PENDING.value)
                .values(
                    status=BatchStatus.PROCESSING.value,
                    submitted_at=datetime.now(UTC),
                    lease_expires_at=self._lease_deadline(),
                )
            )
            if result.rowcount != 1:
                await session.rollback()
                await session.refresh(batch)
                raise BatchStateError(batch_id, batch.status, (BatchStatus.PENDING.value,))
            await session.commit()
            await session.refresh(batch)

            leads = await LeadRepository(session).list_for_batch(batch_id, pending_only=True)
            return await self._process(session, batch, leads)

    async def recover_batch(self, batch_id: UUID, operator: Caller) -> Batch:
        """Resume a batch left ``processing`` by a crash or cancellation.

        Leads whose ``match_status`` already left ``pending`` were committed
        together with their Results and are not resubmitted.

        Raises:
            NotFoundError: If the batch does not exist
            BatchStateError: If the batch is not ``processing`` or another
                run still holds its lease
        """
        async with self._session_factory() as session:
            now = datetime.now(UTC)
            claim = await session.execute(
                update(Batch)
                .where(
                    Batch.id == batch_id,
                    Batch.status == BatchStatus.PROCESSING.value,
                    or_(Batch.lease_expires_at.is_(None), Batch.lease_expires_at < now),
                )
                .values(lease_expires_at=self._lease_deadline())
            )
            if claim.rowcount != 1:
                await session.rollback()
                batch = await BatchRepository(session).get_or_raise(batch_id)
                expected = (BatchStatus.PROCESSING.value,)
                if batch.status == BatchStatus.PROCESSING.value:
                    raise BatchStateError(
                        batch_id,
                        batch.status,
                        expected,
                        reason=f"Batch {batch_id} is still being submitted",
                    )
                raise BatchStateError(batch_id, batch.status, expected)
            await session.commit()

            batch = await BatchRepository(session).get_or_raise(batch_id)
            leads = await LeadRepository(session).list_for_batch(batch_id, pending_only=True)
            logger.info("batch_recovering", batch_id=str(batch_id), remaining=len(leads))
            self._audit.record(
                AuditAction.BATCH_RECOVERED,
                batch_id=batch_id,
                details={"remaining": len(leads)},
                caller=operator,
            )
            return await self._process(session, batch, leads)

    async def retry_failed_batch(self, batch_id: UUID, submitter: Caller) -> Batch:
        """Run the unscored leads of a ``failed`` batch as a new batch.

        Raises:
            BatchStateError: If the batch is not ``failed``
            ValidationError: If none of its leads is still eligible
        """
        async with self._session_factory() as session:
            batch = await BatchRepository(session).get_or_raise(batch_id)
            if batch.status != BatchStatus.FAILED.value:
                raise BatchStateError(batch_id, batch.status, (BatchStatus.FAILED.value,))
            leads = await LeadRepository(session).list_for_batch(batch_id, pending_only=True)
            program_id, name = batch.program_id, batch.name

        return await self.submit(
            program_id,
            submitter,
            lead_ids=[lead.id for lead in leads],
            name=f"{name} (retry)",
        )

    async def _process(self, session: AsyncSession, batch: Batch, leads: list[Lead]) -> Batch:
        program = await ProgramRepository(session).get_or_raise(batch.program_id)
        log = logger.bind(batch_id=str(batch.id))
        chunk_size = max(1, self._gateway.max_batch_size)

        try:
            for start in range(0, len(leads), chunk_size):
                chunk = leads[start : start + chunk_size]
                await self._submit_chunk(session, batch, program, chunk)
                batch.lease_expires_at = self._lease_deadline()
                await session.commit()
                log.info("batch_chunk_committed", offset=start, size=len(chunk))
        except GatewayError as e:
            await session.rollback()
            await session.refresh(batch)
            log.warning("batch_failed", error_type=type(e).__name__, error=str(e))
            await self._finish(session, batch, BatchStatus.FAILED, error_message=str(e))
            return batch
        except asyncio.CancelledError:
            log.warning("batch_interrupted")
            record_batch_outcome("interrupted")
            raise

        await self._finish(session, batch, BatchStatus.COMPLETED)
        log.info(
            "batch_completed",
            total=batch.total_records,
            qualified=batch.qualified_count,
            failed=batch.failed_count,
        )
        return batch

    async def _submit_chunk(
        self, session: AsyncSession, batch: Batch, program: Program, chunk: list[Lead]
    ) -> None:
        records: list[LeadRecord] = []
        submitted: list[Lead] = []
        for lead in chunk:
            try:
                records.append(lead_record(lead, self._encryptor))
            except DecryptionError:
                logger.error("lead_decryption_failed", lead_id=str(lead.id), batch_id=str(batch.id))
                _mark_failed(lead, MatchStatus.REJECTED, "Stored SSN or DOB could not be decrypted")
                lead.retry_queued = True
                continue
            submitted.append(lead)

        if not records:
            return

        outcome = await self._gateway.submit_batch(records, program.bureau_program_id)
        statuses: Counter[str] = Counter()

        for scored in outcome.results:
            lead = submitted[scored.index]
            session.add_all(
                [
                    Result(
                        lead_id=lead.id,
                        batch_id=batch.id,
                        bureau=score.bureau.value,
                        credit_score=score.credit_score,
                        is_hit=True,
                        raw_output=score.raw_output,
                    )
                    for score in scored.scores
                ]
            )
            middle = middle_score(scored.credit_scores)
            classification = classify(middle, program)
            lead.middle_score = middle
            lead.tier = classification.tier.value
            lead.is_qualified = classification.is_qualified
            lead.match_status = (
                MatchStatus.MATCHED.value if middle is not None else MatchStatus.NO_SCORE.value
            )
            lead.segment_name = scored.segment_name
            lead.error_message = None
            lead.retry_queued = False
            statuses[lead.match_status] += 1

        for failure in outcome.failures:
            lead = submitted[failure.index]
            _mark_failed(lead, failure.match_status, failure.reason)
            lead.retry_queued = failure.is_correctable
            statuses[lead.match_status] += 1

        await session.flush()
        record_record_outcomes(dict(statuses))

    async def _finish(
        self,
        session: AsyncSession,
        batch: Batch,
        status: BatchStatus,
        error_message: str | None = None,
    ) -> None:
        total, qualified, failed = await LeadRepository(session).batch_counts(batch.id)
        batch.status = status.value
        batch.qualified_count = qualified
        batch.failed_count = failed
        batch.error_message = error_message
        batch.lease_expires_at = None
        if status == BatchStatus.COMPLETED:
            batch.total_records = total
            batch.completed_at = datetime.now(UTC)
        await session.commit()
        record_batch_outcome(status.value)

    # =========================================================================
    # Admin
    # =========================================================================

    async def rename_batch(self, batch_id: UUID, name: str) -> Batch:
        name = name.strip()
        if not name:
            raise ValidationError("Batch name must not be empty", field="name")
        async with self._session_factory() as session:
            batch = await BatchRepository(session).get_or_raise(batch_id)
            batch.name = name
            await session.commit()
            return batch

    async def list_batches(
        self,
        *,
        status: str | None = None,
        program_id: UUID | None = None,
        page: int = 1,
        limit: int = 25,
    ) -> tuple[list[Batch], int, dict[UUID, str]]:
        """Newest batches first.

        Returns:
            Tuple of (batches, total count, program names by id)
        """
        limit = max(1, min(limit, 100))
        page = max(1, page)
        async with self._session_factory() as session:
            batches, total = await BatchRepository(session).list_recent(
                status=status, program_id=program_id, limit=limit, offset=(page - 1) * limit
            )
            names = await ProgramRepository(session).names(list({b.program_id for b in batches}))
        return batches, total, names


def lead_record(lead: Lead, encryptor: Encryptor) -> LeadRecord:
    """Gateway record for ``lead`` with SSN and DOB decrypted.

    Raises:
        DecryptionError: If a stored envelope cannot be decrypted
    """
    return LeadRecord(
        first_name=lead.first_name,
        last_name=lead.last_name,
        middle_name=lead.middle_name,
        street=lead.street,
        street2=lead.street2,
        city=lead.city,
        state=lead.state,
        zip=lead.zip,
        ssn=encryptor.decrypt(lead.ssn_encrypted) if lead.ssn_encrypted else None,
        dob=encryptor.decrypt(lead.dob_encrypted) if lead.dob_encrypted else lead.dob,
    )


def _mark_failed(lead: Lead, match_status: MatchStatus, reason: str) -> None:
    lead.middle_score = None
    lead.tier = Tier.FILTERED.value
    lead.is_qualified = False
    lead.match_status = match_status.value
    lead.error_message = reason
