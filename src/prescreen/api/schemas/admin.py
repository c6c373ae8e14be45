"""API schemas for audit, dashboard, program and bureau endpoints."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from prescreen.api.schemas.batches import BatchResponse
from prescreen.api.schemas.leads import AuditEntryResponse
from prescreen.bureau import ConnectionStatus
from prescreen.db.models import Program
from prescreen.programs import ProgramCreate, ProgramUpdate

ProgramCreateRequest = ProgramCreate
ProgramUpdateRequest = ProgramUpdate


class AuditLogResponse(BaseModel):
    items: list[AuditEntryResponse]
    total: int
    page: int
    limit: int


class DashboardStatsResponse(BaseModel):
    """Lead counts by tier and score band."""

    total_leads: int
    qualified_count: int
    tier_1_count: int
    tier_2_count: int
    tier_3_count: int
    below_count: int
    filtered_count: int
    pending_count: int
    score_620_plus: int
    score_580_to_619: int
    score_under_580: int
    total_batches: int
    total_programs: int
    recent_batches: list[BatchResponse]


class ProgramResponse(BaseModel):
    id: UUID
    bureau_program_id: str
    name: str
    description: str | None
    status: str
    tier_1_min: int
    tier_2_min: int
    tier_3_min: int
    min_score: int | None
    max_score: int | None
    eq_enabled: bool
    ex_enabled: bool
    tu_enabled: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, program: Program) -> "ProgramResponse":
        return cls.model_validate(program, from_attributes=True)


class ProgramListResponse(BaseModel):
    items: list[ProgramResponse]


class ConnectionResponse(BaseModel):
    status: ConnectionStatus
    message: str
    program_count: int | None = None


class BillingResponse(BaseModel):
    start: date
    end: date
    rows: list[dict[str, Any]] = Field(default_factory=list)
