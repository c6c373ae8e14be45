"""API schemas for lead endpoints.

Responses never carry SSN or date of birth beyond their masked forms;
plaintext is only returned by the decrypt endpoint.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from prescreen.core.encryption import mask_dob, mask_ssn
from prescreen.db.models import AuditLogEntry, HardPull, Lead, Result
from prescreen.leads import HardPullCreate, LeadCreate, LeadDetail, LeadListItem

# =============================================================================
# Request Schemas
# =============================================================================


class LeadBulkCreateRequest(BaseModel):
    records: list[LeadCreate] = Field(..., min_length=1, max_length=1000)


class DecryptRequest(BaseModel):
    field: Literal["ssn", "dob"]


class FirmOfferRequest(BaseModel):
    sent: bool
    date: datetime | None = None
    method: str | None = Field(default=None, max_length=50)


class NotesRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=10_000)


HardPullRequest = HardPullCreate

# =============================================================================
# Response Schemas
# =============================================================================


class LeadResponse(BaseModel):
    """Lead fields safe to show to any authenticated caller."""

    id: UUID
    program_id: UUID
    batch_id: UUID | None
    first_name: str
    last_name: str
    middle_name: str | None
    street: str
    street2: str | None
    city: str
    state: str
    zip: str
    ssn_masked: str
    dob_masked: str
    has_ssn: bool
    has_dob: bool
    middle_score: int | None
    tier: str
    is_qualified: bool
    match_status: str
    segment_name: str | None
    error_message: str | None
    retry_queued: bool
    status: str
    notes: str | None
    firm_offer_sent: bool
    firm_offer_date: datetime | None
    firm_offer_method: str | None
    created_at: datetime
    updated_at: datetime


class LeadListItemResponse(LeadResponse):
    bureau_scores: dict[str, int | None]
    program_name: str | None
    batch_name: str | None
    hard_pull_count: int
    last_activity: datetime | None


class LeadListResponse(BaseModel):
    items: list[LeadListItemResponse]
    total: int
    page: int
    limit: int


class ResultResponse(BaseModel):
    id: UUID
    batch_id: UUID
    bureau: str
    credit_score: int | None
    is_hit: bool
    created_at: datetime

    @classmethod
    def from_model(cls, result: Result) -> "ResultResponse":
        return cls(
            id=result.id,
            batch_id=result.batch_id,
            bureau=result.bureau,
            credit_score=result.credit_score,
            is_hit=result.is_hit,
            created_at=result.created_at,
        )


class HardPullResponse(BaseModel):
    id: UUID
    lead_id: UUID
    pull_date: datetime
    agency: str | None
    lender: str | None
    eq_score: int | None
    tu_score: int | None
    ex_score: int | None
    result: str | None
    notes: str | None
    performed_by_email: str | None
    created_at: datetime

    @classmethod
    def from_model(cls, hard_pull: HardPull) -> "HardPullResponse":
        return cls.model_validate(hard_pull, from_attributes=True)


class AuditEntryResponse(BaseModel):
    id: UUID
    lead_id: UUID | None
    batch_id: UUID | None
    action: str
    actor_id: str
    actor_email: str | None
    ip_address: str | None
    user_agent: str | None
    details: dict
    created_at: datetime

    @classmethod
    def from_model(cls, entry: AuditLogEntry) -> "AuditEntryResponse":
        return cls.model_validate(entry, from_attributes=True)


class LeadDetailResponse(LeadResponse):
    results: list[ResultResponse]
    hard_pulls: list[HardPullResponse]
    program_name: str | None
    batch_name: str | None
    batch_status: str | None
    recent_audit: list[AuditEntryResponse]


class DecryptResponse(BaseModel):
    lead_id: UUID
    field: Literal["ssn", "dob"]
    value: str


class FirmOfferResponse(BaseModel):
    lead_id: UUID
    sent: bool
    date: datetime | None
    method: str | None


class LeadCreateResponse(BaseModel):
    created: int
    ids: list[UUID]


# =============================================================================
# Conversions
# =============================================================================


def _lead_fields(lead: Lead) -> dict:
    return {
        "id": lead.id,
        "program_id": lead.program_id,
        "batch_id": lead.batch_id,
        "first_name": lead.first_name,
        "last_name": lead.last_name,
        "middle_name": lead.middle_name,
        "street": lead.street,
        "street2": lead.street2,
        "city": lead.city,
        "state": lead.state,
        "zip": lead.zip,
        "ssn_masked": mask_ssn(lead.ssn_last_four),
        "dob_masked": mask_dob(lead.dob),
        "has_ssn": lead.ssn_encrypted is not None,
        "has_dob": lead.dob_encrypted is not None,
        "middle_score": lead.middle_score,
        "tier": lead.tier,
        "is_qualified": lead.is_qualified,
        "match_status": lead.match_status,
        "segment_name": lead.segment_name,
        "error_message": lead.error_message,
        "retry_queued": lead.retry_queued,
        "status": lead.status,
        "notes": lead.notes,
        "firm_offer_sent": lead.firm_offer_sent,
        "firm_offer_date": lead.firm_offer_date,
        "firm_offer_method": lead.firm_offer_method,
        "created_at": lead.created_at,
        "updated_at": lead.updated_at,
    }


def lead_response(lead: Lead) -> LeadResponse:
    return LeadResponse(**_lead_fields(lead))


def lead_list_item_response(item: LeadListItem) -> LeadListItemResponse:
    return LeadListItemResponse(
        **_lead_fields(item.lead),
        bureau_scores=item.bureau_scores,
        program_name=item.program_name,
        batch_name=item.batch_name,
        hard_pull_count=item.hard_pull_count,
        last_activity=item.last_activity,
    )


def lead_detail_response(detail: LeadDetail) -> LeadDetailResponse:
    return LeadDetailResponse(
        **_lead_fields(detail.lead),
        results=[ResultResponse.from_model(r) for r in detail.results],
        hard_pulls=[HardPullResponse.from_model(h) for h in detail.hard_pulls],
        program_name=detail.program_name,
        batch_name=detail.batch.name if detail.batch else None,
        batch_status=detail.batch.status if detail.batch else None,
        recent_audit=[AuditEntryResponse.from_model(e) for e in detail.recent_audit],
    )
