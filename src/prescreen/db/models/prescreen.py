"""Prescreen models: programs, leads, batches, bureau results and hard pulls."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import Base, PortableJSON, PortableUUID, TimestampMixin, utcnow


class ProgramStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class LeadStatus(str, Enum):
    """Operator-facing workflow status of a lead."""

    PENDING = "pending"
    DISMISSED = "dismissed"


class Tier(str, Enum):
    """Qualification tier derived from the middle score."""

    TIER_1 = "tier_1"
    TIER_2 = "tier_2"
    TIER_3 = "tier_3"
    BELOW = "below"  # Scored, under every threshold
    FILTERED = "filtered"  # No usable score
    PENDING = "pending"  # No bureau outcome yet

    @property
    def is_qualified(self) -> bool:
        return self in (Tier.TIER_1, Tier.TIER_2, Tier.TIER_3)


class MatchStatus(str, Enum):
    """Per-record bureau outcome."""

    PENDING = "pending"
    MATCHED = "matched"
    NO_MATCH = "no_match"
    MISMATCH = "mismatch"
    NO_SCORE = "no_score"
    REJECTED = "rejected"


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Bureau(str, Enum):
    EQUIFAX = "equifax"
    EXPERIAN = "experian"
    TRANSUNION = "transunion"


class Program(Base, TimestampMixin):
    """Prescreen program on the bureau gateway, mirrored locally.

    Thresholds are edited locally and survive a sync.
    """

    __tablename__ = "prescreen_programs"

    id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    bureau_program_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProgramStatus.ACTIVE.value
    )

    tier_1_min: Mapped[int] = mapped_column(Integer, nullable=False, default=620)
    tier_2_min: Mapped[int] = mapped_column(Integer, nullable=False, default=580)
    tier_3_min: Mapped[int] = mapped_column(Integer, nullable=False, default=500)
    min_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_score: Mapped[int | None] = mapped_column(Integer, nullable=True)

    eq_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    ex_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    tu_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Program(id={self.id}, bureau_program_id={self.bureau_program_id})>"


class Batch(Base, TimestampMixin):
    """One submission of leads to the bureau gateway."""

    __tablename__ = "prescreen_batches"

    id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    program_id: Mapped[UUID] = mapped_column(
        PortableUUID(), ForeignKey("prescreen_programs.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BatchStatus.PENDING.value
    )

    total_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    qualified_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    submitted_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    submitted_by_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Held by the process submitting the batch; renewed after every chunk
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_batch_status", "status"),
        Index("idx_batch_program", "program_id"),
    )

    def __repr__(self) -> str:
        return f"<Batch(id={self.id}, status={self.status}, total={self.total_records})>"


class Lead(Base, TimestampMixin):
    """A consumer record submitted for prescreening.

    ``ssn_encrypted`` and ``dob_encrypted`` hold versioned envelopes; the
    plaintext is never persisted. ``ssn_last_four`` is kept in step with
    ``ssn_encrypted`` by the lead service.
    """

    __tablename__ = "prescreen_leads"

    id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    program_id: Mapped[UUID] = mapped_column(
        PortableUUID(), ForeignKey("prescreen_programs.id"), nullable=False
    )
    batch_id: Mapped[UUID | None] = mapped_column(
        PortableUUID(), ForeignKey("prescreen_batches.id", ondelete="SET NULL"), nullable=True
    )

    # Identity
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    middle_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    street: Mapped[str] = mapped_column(String(255), nullable=False)
    street2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    zip: Mapped[str] = mapped_column(String(10), nullable=False)

    # Sensitive
    ssn_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    ssn_last_four: Mapped[str | None] = mapped_column(String(4), nullable=True)
    dob: Mapped[str | None] = mapped_column(String(10), nullable=True)
    dob_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Scoring
    middle_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tier: Mapped[str] = mapped_column(String(20), nullable=False, default=Tier.PENDING.value)
    is_qualified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    match_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MatchStatus.PENDING.value
    )
    segment_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Workflow
    retry_queued: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LeadStatus.PENDING.value
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Firm offer compliance
    firm_offer_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    firm_offer_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    firm_offer_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_lead_program", "program_id"),
        Index("idx_lead_batch", "batch_id"),
        Index("idx_lead_selection", "status", "match_status", "retry_queued"),
        Index("idx_lead_tier", "tier"),
    )

    def __repr__(self) -> str:
        return f"<Lead(id={self.id}, tier={self.tier}, match_status={self.match_status})>"


class Result(Base):
    """One bureau's answer for one lead in one batch.

    Rows are append-only; re-scoring a lead adds new rows.
    """

    __tablename__ = "prescreen_results"

    id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    lead_id: Mapped[UUID] = mapped_column(
        PortableUUID(), ForeignKey("prescreen_leads.id", ondelete="CASCADE"), nullable=False
    )
    batch_id: Mapped[UUID] = mapped_column(
        PortableUUID(), ForeignKey("prescreen_batches.id"), nullable=False
    )
    bureau: Mapped[str] = mapped_column(String(20), nullable=False)
    credit_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_hit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    raw_output: Mapped[dict] = mapped_column(PortableJSON(), nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_result_lead", "lead_id"),
        Index("idx_result_batch", "batch_id"),
    )

    def __repr__(self) -> str:
        return f"<Result(lead={self.lead_id}, bureau={self.bureau}, score={self.credit_score})>"


class HardPull(Base, TimestampMixin):
    """A manually logged hard credit inquiry for a lead."""

    __tablename__ = "prescreen_hard_pulls"

    id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    lead_id: Mapped[UUID] = mapped_column(
        PortableUUID(), ForeignKey("prescreen_leads.id", ondelete="CASCADE"), nullable=False
    )
    pull_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    agency: Mapped[str | None] = mapped_column(String(50), nullable=True)
    lender: Mapped[str | None] = mapped_column(String(255), nullable=True)
    eq_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tu_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ex_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    result: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    performed_by_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (Index("idx_hard_pull_lead", "lead_id"),)
