"""API schemas for batch and retry-queue endpoints."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from prescreen.api.schemas.leads import LeadResponse
from prescreen.db.models import Batch, Bureau

# =============================================================================
# Request Schemas
# =============================================================================


class BatchCreateRequest(BaseModel):
    """Submit eligible leads of a program.

    Without ``lead_ids`` every eligible lead of the program is included.
    """

    program_id: UUID
    lead_ids: list[UUID] | None = Field(default=None, max_length=10_000)
    name: str | None = Field(default=None, max_length=255)


class BatchRenameRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class RetryQueueToggleRequest(BaseModel):
    lead_ids: list[UUID] = Field(..., min_length=1)
    queued: bool


class RetryQueueResubmitRequest(BaseModel):
    lead_ids: list[UUID] = Field(..., min_length=1)
    name: str | None = Field(default=None, max_length=255)


class FillMissingRequest(BaseModel):
    """Fill one bureau's score.

    Without ``lead_ids`` every matched lead missing the bureau is included.
    """

    bureau: Bureau
    lead_ids: list[UUID] | None = Field(default=None, max_length=10_000)


# =============================================================================
# Response Schemas
# =============================================================================


class BatchResponse(BaseModel):
    id: UUID
    name: str
    program_id: UUID
    program_name: str | None = None
    status: str
    total_records: int
    qualified_count: int
    failed_count: int
    submitted_by_id: str | None
    submitted_by_email: str | None
    submitted_at: datetime | None
    completed_at: datetime | None
    error_message: str | None
    created_at: datetime

    @classmethod
    def from_model(cls, batch: Batch, program_name: str | None = None) -> "BatchResponse":
        return cls(
            id=batch.id,
            name=batch.name,
            program_id=batch.program_id,
            program_name=program_name,
            status=batch.status,
            total_records=batch.total_records,
            qualified_count=batch.qualified_count,
            failed_count=batch.failed_count,
            submitted_by_id=batch.submitted_by_id,
            submitted_by_email=batch.submitted_by_email,
            submitted_at=batch.submitted_at,
            completed_at=batch.completed_at,
            error_message=batch.error_message,
            created_at=batch.created_at,
        )


class BatchListResponse(BaseModel):
    items: list[BatchResponse]
    total: int
    page: int
    limit: int


class RetryQueueResponse(BaseModel):
    items: list[LeadResponse]
    total: int


class RetryQueueToggleResponse(BaseModel):
    updated: int
    queued: bool


class ResubmitResponse(BaseModel):
    batches: list[BatchResponse]


class MissingBureausItem(BaseModel):
    lead_id: UUID
    first_name: str
    last_name: str
    tier: str
    middle_score: int | None
    scores: dict[str, int | None]
    missing: list[Bureau]


class MissingBureausResponse(BaseModel):
    """Matched leads lacking a bureau score, with counts per bureau."""

    total: int
    missing_counts: dict[str, int]
    items: list[MissingBureausItem]
