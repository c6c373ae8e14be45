"""Lead service: intake, edits, sensitive-field access, listing and stats."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prescreen.core.audit import AuditLogger
from prescreen.core.context import Caller
from prescreen.core.encryption import (
    Encryptor,
    last_four,
    normalize_dob,
    normalize_ssn,
)
from prescreen.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from prescreen.db.models import (
    AuditAction,
    Batch,
    HardPull,
    Lead,
    LeadStatus,
    Program,
    ProgramStatus,
)
from prescreen.db.repositories import (
    AuditLogRepository,
    BatchRepository,
    LeadFilter,
    LeadRepository,
    ProgramRepository,
)
from prescreen.db.repositories.lead import SortField
from prescreen.leads.types import (
    HardPullCreate,
    LeadCreate,
    LeadDetail,
    LeadListItem,
    LeadUpdate,
    SensitiveField,
)

logger = structlog.get_logger()

MAX_INTAKE_RECORDS = 1000
MAX_PAGE_SIZE = 100
RECENT_AUDIT_ENTRIES = 20
RECENT_BATCHES = 5

_DECRYPT_ACTIONS: dict[str, AuditAction] = {
    "ssn": AuditAction.DECRYPT_SSN,
    "dob": AuditAction.DECRYPT_DOB,
}


def _require_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise AuthorizationError("admin")


class LeadService:
    """Operations on leads.

    SSN and date of birth are normalized and encrypted here; plaintext is
    never stored or logged.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        encryptor: Encryptor,
        audit: AuditLogger,
    ):
        self._session_factory = session_factory
        self._encryptor = encryptor
        self._audit = audit

    # =========================================================================
    # Intake and edits
    # =========================================================================

    async def create_leads(self, items: list[LeadCreate], actor: Caller) -> list[Lead]:
        """Validate, encrypt and store new leads.

        All records are validated before any is written.

        Raises:
            AuthorizationError: If the actor is not an admin
            ValidationError: On an empty or oversized request, malformed
                SSN or DOB, or an unknown program
        """
        _require_admin(actor)
        if not items:
            raise ValidationError("At least one record is required", field="records")
        if len(items) > MAX_INTAKE_RECORDS:
            raise ValidationError(
                f"At most {MAX_INTAKE_RECORDS} records per request", field="records"
            )

        async with self._session_factory() as session:
            program_ids = {item.program_id for item in items}
            known = {p.id for p in await ProgramRepository(session).get_many(list(program_ids))}
            missing = program_ids - known
            if missing:
                raise ValidationError(
                    f"Unknown program: {sorted(str(p) for p in missing)[0]}", field="program_id"
                )

            leads = []
            for index, item in enumerate(items):
                try:
                    leads.append(self._build_lead(item))
                except ValidationError as e:
                    raise ValidationError(f"Record {index + 1}: {e.args[0]}", field=e.field) from e

            await LeadRepository(session).add_many(leads)
            await session.commit()

        logger.info("leads_created", count=len(leads))
        return leads

    def _build_lead(self, item: LeadCreate) -> Lead:
        lead = Lead(
            program_id=item.program_id,
            first_name=item.first_name,
            last_name=item.last_name,
            middle_name=item.middle_name or None,
            street=item.street,
            street2=item.street2 or None,
            city=item.city,
            state=item.state,
            zip=item.zip,
        )
        if item.ssn:
            self._set_ssn(lead, item.ssn)
        if item.dob:
            self._set_dob(lead, item.dob)
        return lead

    def _set_ssn(self, lead: Lead, raw: str) -> None:
        if not raw:
            lead.ssn_encrypted = None
            lead.ssn_last_four = None
            return
        digits = normalize_ssn(raw)
        lead.ssn_encrypted = self._encryptor.encrypt(digits)
        lead.ssn_last_four = last_four(digits)

    def _set_dob(self, lead: Lead, raw: str) -> None:
        if not raw:
            lead.dob = None
            lead.dob_encrypted = None
            return
        dob = normalize_dob(raw)
        lead.dob = dob
        lead.dob_encrypted = self._encryptor.encrypt(dob)

    async def update_lead(self, lead_id: UUID, changes: LeadUpdate) -> Lead:
        """Apply a partial edit.

        ``retry_queued`` is never touched here; leaving the queue is an
        explicit retry-queue operation.

        Raises:
            NotFoundError: If the lead does not exist
            ValidationError: On malformed SSN or DOB
        """
        values = changes.model_dump(exclude_unset=True)
        async with self._session_factory() as session:
            lead = await LeadRepository(session).get_or_raise(lead_id)

            if "ssn" in values:
                self._set_ssn(lead, values.pop("ssn") or "")
            if "dob" in values:
                self._set_dob(lead, values.pop("dob") or "")
            if "status" in values:
                status = values.pop("status")
                if status is None:
                    raise ValidationError("Status cannot be cleared", field="status")
                lead.status = LeadStatus(status).value
            if values.get("state"):
                values["state"] = values["state"].upper()

            for key, value in values.items():
                if value is None and key not in ("middle_name", "street2"):
                    raise ValidationError(f"{key} cannot be cleared", field=key)
                setattr(lead, key, value)

            await session.commit()

        logger.info("lead_updated", lead_id=str(lead_id), fields=sorted(changes.model_fields_set))
        return lead

    async def set_status(self, lead_id: UUID, status: LeadStatus) -> Lead:
        """Dismiss or restore a lead. Dismissed leads are never batched."""
        return await self.update_lead(lead_id, LeadUpdate(status=status))

    async def dismiss(self, lead_id: UUID) -> Lead:
        return await self.set_status(lead_id, LeadStatus.DISMISSED)

    async def restore(self, lead_id: UUID) -> Lead:
        return await self.set_status(lead_id, LeadStatus.PENDING)

    async def update_notes(self, lead_id: UUID, notes: str | None, actor: Caller) -> Lead:
        _require_admin(actor)
        async with self._session_factory() as session:
            lead = await LeadRepository(session).get_or_raise(lead_id)
            lead.notes = notes.strip() if notes and notes.strip() else None
            await session.commit()
        return lead

    # =========================================================================
    # Sensitive fields
    # =========================================================================

    async def decrypt_field(self, lead_id: UUID, field: SensitiveField, actor: Caller) -> str:
        """Decrypt a lead's SSN or date of birth for display.

        Every successful decryption is audited.

        Raises:
            AuthorizationError: If the actor is not an admin
            ValidationError: If ``field`` is not ssn or dob
            NotFoundError: If the lead or the stored value does not exist
            DecryptionError: If the stored envelope fails to decrypt
        """
        _require_admin(actor)
        action = _DECRYPT_ACTIONS.get(field)
        if action is None:
            raise ValidationError('field must be "ssn" or "dob"', field="field")

        async with self._session_factory() as session:
            lead = await LeadRepository(session).get_or_raise(lead_id)
            envelope = lead.ssn_encrypted if field == "ssn" else lead.dob_encrypted

        if not envelope:
            raise NotFoundError(field.upper(), lead_id)

        value = self._encryptor.decrypt(envelope)
        self._audit.record(action, lead_id=lead_id, caller=actor)
        return value

    # =========================================================================
    # Hard pulls
    # =========================================================================

    async def list_hard_pulls(self, lead_id: UUID) -> list[HardPull]:
        async with self._session_factory() as session:
            repo = LeadRepository(session)
            await repo.get_or_raise(lead_id)
            return await repo.list_hard_pulls(lead_id)

    async def add_hard_pull(self, lead_id: UUID, data: HardPullCreate, actor: Caller) -> HardPull:
        _require_admin(actor)
        async with self._session_factory() as session:
            await LeadRepository(session).get_or_raise(lead_id)
            hard_pull = HardPull(
                lead_id=lead_id,
                performed_by_email=actor.email,
                **data.model_dump(),
            )
            session.add(hard_pull)
            await session.commit()
        logger.info("hard_pull_recorded", lead_id=str(lead_id))
        return hard_pull

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_lead(self, lead_id: UUID) -> Lead:
        async with self._session_factory() as session:
            return await LeadRepository(session).get_or_raise(lead_id)

    async def get_detail(self, lead_id: UUID, actor: Caller) -> LeadDetail:
        """Lead with results, hard pulls and recent audit history; audited."""
        async with self._session_factory() as session:
            repo = LeadRepository(session)
            lead = await repo.get_or_raise(lead_id)
            results = (await repo.results_for([lead_id]))[lead_id]
            hard_pulls = await repo.list_hard_pulls(lead_id)
            program = await session.get(Program, lead.program_id)
            batch = await session.get(Batch, lead.batch_id) if lead.batch_id else None
            recent, _ = await AuditLogRepository(session).query(
                lead_id=lead_id, limit=RECENT_AUDIT_ENTRIES
            )

        self._audit.record(AuditAction.VIEW_DETAIL, lead_id=lead_id, caller=actor)
        return LeadDetail(
            lead=lead,
            results=results,
            hard_pulls=hard_pulls,
            program_name=program.name if program else None,
            batch=batch,
            recent_audit=recent,
        )

    async def list_leads(
        self,
        filters: LeadFilter,
        actor: Caller,
        *,
        sort_by: SortField = "created_at",
        descending: bool = True,
        page: int = 1,
        limit: int = 25,
    ) -> tuple[list[LeadListItem], int]:
        """One page of leads with scores and related names; audited once per call.

        Returns:
            Tuple of (items, total matching count)
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        page = max(1, page)

        async with self._session_factory() as session:
            repo = LeadRepository(session)
            leads, total = await repo.search(
                filters,
                sort_by=sort_by,
                descending=descending,
                limit=limit,
                offset=(page - 1) * limit,
            )
            ids = [lead.id for lead in leads]
            results = await repo.results_for(ids)
            pulls = await repo.hard_pull_counts(ids)
            program_ids = list({lead.program_id for lead in leads})
            programs = await ProgramRepository(session).names(program_ids)
            batch_ids = list({lead.batch_id for lead in leads if lead.batch_id})
            batches = {b.id: b.name for b in await BatchRepository(session).get_many(batch_ids)}

        items = []
        for lead in leads:
            lead_results = results.get(lead.id, [])
            last_activity = max(
                [lead.created_at, *(r.created_at for r in lead_results)],
                key=lambda d: d.replace(tzinfo=None),
            )
            items.append(
                LeadListItem(
                    lead=lead,
                    bureau_scores={r.bureau: r.credit_score for r in lead_results},
                    program_name=programs.get(lead.program_id),
                    batch_name=batches.get(lead.batch_id) if lead.batch_id else None,
                    hard_pull_count=pulls.get(lead.id, 0),
                    last_activity=last_activity,
                )
            )

        self._audit.record(
            AuditAction.VIEW_RESULTS,
            details={"page": page, "limit": limit, "filters": _filter_details(filters)},
            caller=actor,
        )
        return items, total

    async def stats(self) -> dict[str, Any]:
        """Dashboard counts by tier and score band, plus the latest batches."""
        async with self._session_factory() as session:
            counts = await LeadRepository(session).tier_stats()
            total_batches = (await session.execute(select(func.count(Batch.id)))).scalar() or 0
            active_programs = (
                await session.execute(
                    select(func.count(Program.id)).where(
                        Program.status == ProgramStatus.ACTIVE.value
                    )
                )
            ).scalar() or 0
            recent, _ = await BatchRepository(session).list_recent(limit=RECENT_BATCHES)
            names = await ProgramRepository(session).names(list({b.program_id for b in recent}))

        return {
            **counts,
            "total_batches": int(total_batches),
            "total_programs": int(active_programs),
            "recent_batches": [(batch, names.get(batch.program_id)) for batch in recent],
        }


def _filter_details(filters: LeadFilter) -> dict[str, Any]:
    details = {}
    for key, value in vars(filters).items():
        if value is None:
            continue
        details[key] = str(value) if isinstance(value, UUID) else value
    return details
