"""Fill bureau scores missing from matched leads.

A matched lead can lack one bureau's score, for instance when its program
had that bureau disabled. Filling resubmits such leads under a single-bureau
program ("Fill - EQ Only") that is created on the gateway by cloning the
oldest active program, then re-derives each lead's middle score and tier
against the lead's own program.

Every submitted lead gets a Result row for the bureau, a no-hit one when the
bureau returned nothing, so the same lead is not picked up again. Fill
batches track the submission only; leads keep their original ``batch_id``.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prescreen.bureau import BureauGatewayClient
from prescreen.bureau.definitions import bureau_key, single_bureau_definition
from prescreen.core.audit import AuditLogger
from prescreen.core.context import Caller
from prescreen.core.encryption import Encryptor
from prescreen.core.exceptions import DecryptionError, GatewayError, ValidationError
from prescreen.db.models import (
    AuditAction,
    Batch,
    BatchStatus,
    Bureau,
    Lead,
    Program,
    Result,
)
from prescreen.db.repositories import BatchRepository, LeadRepository, ProgramRepository
from prescreen.observability.metrics import record_batch_outcome
from prescreen.scoring import classify, middle_score
from prescreen.screening.orchestrator import lead_record

logger = structlog.get_logger()

FILL_PROGRAM_PREFIX = "Fill - "

# Score range stored locally for fill programs
_FILL_SCORE_RANGE = (300, 850)


def fill_program_name(bureau: Bureau) -> str:
    return f"{FILL_PROGRAM_PREFIX}{bureau_key(bureau).upper()} Only"


@dataclass
class MissingBureaus:
    """A matched lead and the bureaus it has no Result for."""

    lead: Lead
    scores: dict[str, int | None]
    missing: list[Bureau]


class MissingBureauFiller:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: BureauGatewayClient,
        encryptor: Encryptor,
        audit: AuditLogger,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._encryptor = encryptor
        self._audit = audit

    async def scan(self, lead_ids: list[UUID] | None = None) -> list[MissingBureaus]:
        """Matched leads lacking at least one bureau, in id order."""
        async with self._session_factory() as session:
            return await self._scan(session, lead_ids)

    async def _scan(
        self, session: AsyncSession, lead_ids: list[UUID] | None
    ) -> list[MissingBureaus]:
        repo = LeadRepository(session)
        leads = await repo.select_matched_with_identity(lead_ids)
        results = await repo.results_for([lead.id for lead in leads])
        found = []
        for lead in leads:
            scores = {r.bureau: r.credit_score for r in results[lead.id]}
            missing = [bureau for bureau in Bureau if bureau.value not in scores]
            if missing:
                found.append(MissingBureaus(lead=lead, scores=scores, missing=missing))
        return found

    async def fill(
        self,
        bureau: Bureau,
        submitter: Caller,
        lead_ids: list[UUID] | None = None,
    ) -> Batch:
        """Submit matched leads missing ``bureau`` under its fill program.

        Args:
            bureau: Bureau to fill
            submitter: Caller recorded on the tracking batch
            lead_ids: Restrict to these leads (default: every lead missing it)

        Returns:
            The tracking batch, ``completed`` or ``failed``. ``qualified_count``
            counts records the gateway returned, ``failed_count`` those it
            could not match.

        Raises:
            ValidationError: If no lead is missing ``bureau`` or there is no
                active program to clone
            GatewayError: If the fill program cannot be created
        """
        async with self._session_factory() as session:
            leads = [
                found.lead
                for found in await self._scan(session, lead_ids)
                if bureau in found.missing
            ]
            if not leads:
                raise ValidationError(
                    f"No matched lead is missing its {bureau.value} score", field="lead_ids"
                )

            program = await self._fill_program(session, bureau)
            now = datetime.now(UTC)
            batch = Batch(
                name=f"Fill {bureau_key(bureau).upper()} - {now:%Y-%m-%d}",
                program_id=program.id,
                status=BatchStatus.PROCESSING.value,
                total_records=len(leads),
                qualified_count=0,
                failed_count=0,
                submitted_by_id=submitter.actor_id,
                submitted_by_email=submitter.email,
                submitted_at=now,
            )
            await BatchRepository(session).add(batch)
            await session.commit()

            log = logger.bind(batch_id=str(batch.id), bureau=bureau.value)
            log.info("fill_started", lead_count=len(leads))
            self._audit.record(
                AuditAction.FILL_MISSING_BUREAU,
                batch_id=batch.id,
                details={"bureau": bureau.value, "lead_count": len(leads)},
                caller=submitter,
            )

            programs: dict[UUID, Program] = {}
            chunk_size = max(1, self._gateway.max_batch_size)
            try:
                for start in range(0, len(leads), chunk_size):
                    chunk = leads[start : start + chunk_size]
                    await self._fill_chunk(session, batch, program, bureau, chunk, programs)
                    await session.commit()
            except GatewayError as e:
                await session.rollback()
                await session.refresh(batch)
                log.warning("fill_failed", error_type=type(e).__name__, error=str(e))
                batch.status = BatchStatus.FAILED.value
                batch.error_message = str(e)
                await session.commit()
                record_batch_outcome(BatchStatus.FAILED.value)
                return batch

            batch.status = BatchStatus.COMPLETED.value
            batch.completed_at = datetime.now(UTC)
            await session.commit()
            record_batch_outcome(BatchStatus.COMPLETED.value)
            log.info(
                "fill_completed", qualified=batch.qualified_count, failed=batch.failed_count
            )
            return batch

    async def _fill_program(self, session: AsyncSession, bureau: Bureau) -> Program:
        name = fill_program_name(bureau)
        repo = ProgramRepository(session)
        existing = await repo.get_active_by_name(name)
        if existing is not None:
            return existing

        template = await repo.oldest_active(exclude_prefix=FILL_PROGRAM_PREFIX)
        if template is None:
            raise ValidationError("No active program to base a fill program on", field="bureau")

        definition = single_bureau_definition(
            await self._gateway.get_program(template.bureau_program_id), bureau, name
        )
        remote = await self._gateway.create_program(definition)

        key = bureau_key(bureau)
        program = Program(
            bureau_program_id=remote.program_id,
            name=name,
            description=definition["description"],
            min_score=_FILL_SCORE_RANGE[0],
            max_score=_FILL_SCORE_RANGE[1],
            eq_enabled=key == "eq",
            ex_enabled=key == "ex",
            tu_enabled=key == "tu",
        )
        await repo.add(program)
        logger.info(
            "fill_program_created",
            bureau=bureau.value,
            bureau_program_id=remote.program_id,
            template_id=str(template.id),
        )
        return program

    async def _fill_chunk(
        self,
        session: AsyncSession,
        batch: Batch,
        program: Program,
        bureau: Bureau,
        chunk: list[Lead],
        programs: dict[UUID, Program],
    ) -> None:
        records = []
        submitted: list[Lead] = []
        for lead in chunk:
            try:
                records.append(lead_record(lead, self._encryptor))
            except DecryptionError:
                logger.error("lead_decryption_failed", lead_id=str(lead.id), batch_id=str(batch.id))
                batch.failed_count += 1
                continue
            submitted.append(lead)

        if not records:
            return

        outcome = await self._gateway.submit_batch(records, program.bureau_program_id)

        scored: list[Lead] = []
        for record in outcome.results:
            lead = submitted[record.index]
            score = next((s for s in record.scores if s.bureau == bureau), None)
            session.add(
                Result(
                    lead_id=lead.id,
                    batch_id=batch.id,
                    bureau=bureau.value,
                    credit_score=score.credit_score if score else None,
                    is_hit=score is not None,
                    raw_output=score.raw_output if score else {},
                )
            )
            scored.append(lead)
            batch.qualified_count += 1

        for failure in outcome.failures:
            lead = submitted[failure.index]
            session.add(
                Result(
                    lead_id=lead.id,
                    batch_id=batch.id,
                    bureau=bureau.value,
                    credit_score=None,
                    is_hit=False,
                    raw_output={"error": failure.reason},
                )
            )
            batch.failed_count += 1

        await session.flush()
        await self._rescore(session, scored, programs)

    async def _rescore(
        self, session: AsyncSession, leads: list[Lead], programs: dict[UUID, Program]
    ) -> None:
        results = await LeadRepository(session).results_for([lead.id for lead in leads])
        for lead in leads:
            # Oldest first, so a later Result for a bureau wins
            latest = {r.bureau: r.credit_score for r in results[lead.id]}
            if lead.program_id not in programs:
                programs[lead.program_id] = await ProgramRepository(session).get_or_raise(
                    lead.program_id
                )
            middle = middle_score(list(latest.values()))
            classification = classify(middle, programs[lead.program_id])
            lead.middle_score = middle
            lead.tier = classification.tier.value
            lead.is_qualified = classification.is_qualified
