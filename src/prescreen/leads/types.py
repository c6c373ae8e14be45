"""Input and view types for lead operations."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from prescreen.db.models import AuditLogEntry, Batch, HardPull, Lead, LeadStatus, Result

SensitiveField = Literal["ssn", "dob"]


class LeadCreate(BaseModel):
    """One consumer record for intake.

    ``ssn`` and ``dob`` arrive as plaintext and are encrypted before storage.
    """

    program_id: UUID
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    middle_name: str | None = Field(default=None, max_length=100)
    street: str = Field(min_length=1, max_length=255)
    street2: str | None = Field(default=None, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=2, max_length=2)
    zip: str = Field(pattern=r"^\d{5}(-?\d{4})?$")
    ssn: str | None = Field(default=None, repr=False)
    dob: str | None = Field(default=None, repr=False)

    @field_validator("first_name", "last_name", "street", "city", "state", mode="before")
    @classmethod
    def strip_required(cls, v: str) -> str:
        return v.strip() if isinstance(v, str) else v

    @field_validator("state")
    @classmethod
    def upper_state(cls, v: str) -> str:
        return v.upper()


class LeadUpdate(BaseModel):
    """Partial edit of a lead. Omitted fields are left unchanged.

    An empty string for ``ssn`` or ``dob`` removes the stored value.
    """

    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    middle_name: str | None = Field(default=None, max_length=100)
    street: str | None = Field(default=None, min_length=1, max_length=255)
    street2: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, min_length=1, max_length=100)
    state: str | None = Field(default=None, min_length=2, max_length=2)
    zip: str | None = Field(default=None, pattern=r"^\d{5}(-?\d{4})?$")
    ssn: str | None = Field(default=None, repr=False)
    dob: str | None = Field(default=None, repr=False)
    status: LeadStatus | None = None


class HardPullCreate(BaseModel):
    pull_date: datetime
    agency: str | None = Field(default=None, max_length=50)
    lender: str | None = Field(default=None, max_length=255)
    eq_score: int | None = Field(default=None, ge=300, le=900)
    tu_score: int | None = Field(default=None, ge=300, le=900)
    ex_score: int | None = Field(default=None, ge=300, le=900)
    result: str = Field(default="pending", max_length=50)
    notes: str | None = None


@dataclass
class LeadListItem:
    """A lead with the related data shown in listings."""

    lead: Lead
    bureau_scores: dict[str, int | None] = field(default_factory=dict)
    program_name: str | None = None
    batch_name: str | None = None
    hard_pull_count: int = 0
    last_activity: datetime | None = None


@dataclass
class LeadDetail:
    lead: Lead
    results: list[Result]
    hard_pulls: list[HardPull]
    program_name: str | None
    batch: Batch | None
    recent_audit: list[AuditLogEntry]
