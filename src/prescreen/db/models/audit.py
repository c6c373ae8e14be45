"""Audit log model for sensitive-data access and compliance events."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import Base, PortableJSON, PortableUUID, utcnow


class AuditAction(str, Enum):
    """Actions recorded in the audit log."""

    # Sensitive data access
    DECRYPT_SSN = "decrypt_ssn"
    DECRYPT_DOB = "decrypt_dob"
    VIEW_RESULTS = "view_results"
    VIEW_DETAIL = "view_detail"

    # Firm offer compliance
    FIRM_OFFER_SENT = "firm_offer_sent"
    FIRM_OFFER_CLEARED = "firm_offer_cleared"

    # Batch lifecycle
    BATCH_SUBMITTED = "batch_submitted"
    BATCH_RECOVERED = "batch_recovered"
    FILL_MISSING_BUREAU = "fill_missing_bureau"

    # Program administration
    PROGRAM_CREATED = "program_created"
    PROGRAM_UPDATED = "program_updated"


class AuditLogEntry(Base):
    """Immutable audit log entry.

    Entries are append-only. ``lead_id`` and ``batch_id`` are plain columns
    rather than foreign keys so the trail outlives the rows it refers to.
    """

    __tablename__ = "prescreen_audit_log"

    # UUIDv7 is time-ordered, making entries naturally sortable by ID
    id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    action: Mapped[str] = mapped_column(String(50), nullable=False)

    lead_id: Mapped[UUID | None] = mapped_column(PortableUUID(), nullable=True)
    batch_id: Mapped[UUID | None] = mapped_column(PortableUUID(), nullable=True)

    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)  # IPv6 support
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    details: Mapped[dict] = mapped_column(PortableJSON(), nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_audit_log_action", "action"),
        Index("idx_audit_log_lead", "lead_id"),
        Index("idx_audit_log_batch", "batch_id"),
        Index("idx_audit_log_actor", "actor_id"),
        Index("idx_audit_log_created", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLogEntry(id={self.id}, action={self.action}, actor={self.actor_id})>"
