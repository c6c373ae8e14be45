"""Audit log, dashboard, program and bureau API endpoints."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from prescreen.api.dependencies import (
    AdminCaller,
    CurrentCaller,
    get_audit_logger,
    get_gateway,
    get_lead_service,
    get_program_service,
)
from prescreen.api.schemas.admin import (
    AuditLogResponse,
    BillingResponse,
    ConnectionResponse,
    DashboardStatsResponse,
    ProgramCreateRequest,
    ProgramListResponse,
    ProgramResponse,
    ProgramUpdateRequest,
)
from prescreen.api.schemas.batches import BatchResponse
from prescreen.api.schemas.errors import APIError
from prescreen.api.schemas.leads import AuditEntryResponse
from prescreen.bureau import BureauGatewayClient
from prescreen.core.audit import AuditLogger
from prescreen.db.models import AuditAction
from prescreen.leads import LeadService
from prescreen.programs import ProgramService

audit_router = APIRouter(prefix="/audit-log", tags=["audit"])
dashboard_router = APIRouter(prefix="/dashboard", tags=["dashboard"])
programs_router = APIRouter(prefix="/programs", tags=["programs"])
bureau_router = APIRouter(prefix="/bureau", tags=["bureau"])

Programs = Annotated[ProgramService, Depends(get_program_service)]
Gateway = Annotated[BureauGatewayClient, Depends(get_gateway)]


@audit_router.get("", response_model=AuditLogResponse)
async def query_audit_log(
    caller: AdminCaller,
    audit: Annotated[AuditLogger, Depends(get_audit_logger)],
    action: AuditAction | None = None,
    lead_id: UUID | None = None,
    batch_id: UUID | None = None,
    actor_id: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
) -> AuditLogResponse:
    """Compliance review of sensitive actions, newest first."""
    entries, total = await audit.query(
        action=action,
        lead_id=lead_id,
        batch_id=batch_id,
        actor_id=actor_id,
        page=page,
        limit=limit,
    )
    return AuditLogResponse(
        items=[AuditEntryResponse.from_model(e) for e in entries],
        total=total,
        page=page,
        limit=limit,
    )


@dashboard_router.get("/stats", response_model=DashboardStatsResponse)
async def dashboard_stats(
    caller: CurrentCaller,
    leads: Annotated[LeadService, Depends(get_lead_service)],
) -> DashboardStatsResponse:
    stats = await leads.stats()
    recent = [BatchResponse.from_model(batch, name) for batch, name in stats.pop("recent_batches")]
    return DashboardStatsResponse(**stats, recent_batches=recent)


@programs_router.get("", response_model=ProgramListResponse)
async def list_programs(
    caller: CurrentCaller,
    programs: Programs,
    active_only: bool = False,
) -> ProgramListResponse:
    items = await programs.list_programs(active_only=active_only)
    return ProgramListResponse(items=[ProgramResponse.from_model(p) for p in items])


@programs_router.post(
    "",
    response_model=ProgramResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": APIError}, 502: {"model": APIError}},
)
async def create_program(
    request: ProgramCreateRequest, caller: AdminCaller, programs: Programs
) -> ProgramResponse:
    """Create a program on the bureau gateway and store it locally."""
    return ProgramResponse.from_model(await programs.create_program(request, caller))


@programs_router.get("/{program_id}", response_model=ProgramResponse)
async def get_program(program_id: UUID, caller: CurrentCaller, programs: Programs) -> ProgramResponse:
    return ProgramResponse.from_model(await programs.get_program(program_id))


@programs_router.post("/sync", response_model=ProgramListResponse)
async def sync_programs(caller: AdminCaller, programs: Programs) -> ProgramListResponse:
    """Refresh the local program list from the bureau gateway."""
    items = await programs.sync_from_gateway()
    return ProgramListResponse(items=[ProgramResponse.from_model(p) for p in items])


@programs_router.patch("/{program_id}", response_model=ProgramResponse)
async def update_program(
    program_id: UUID,
    request: ProgramUpdateRequest,
    caller: AdminCaller,
    programs: Programs,
) -> ProgramResponse:
    """Edit a program; name, score range and bureau changes are saved on the gateway too."""
    return ProgramResponse.from_model(
        await programs.update_program(program_id, request, caller)
    )


@bureau_router.get("/connection", response_model=ConnectionResponse)
async def check_connection(caller: AdminCaller, gateway: Gateway) -> ConnectionResponse:
    check = await gateway.check_connection()
    return ConnectionResponse(
        status=check.status, message=check.message, program_count=check.program_count
    )


@bureau_router.get("/billing", response_model=BillingResponse)
async def billing_report(
    caller: AdminCaller,
    gateway: Gateway,
    start: date = Query(..., alias="start_date"),
    end: date = Query(..., alias="end_date"),
) -> BillingResponse:
    rows = await gateway.get_billing_report(start, end)
    return BillingResponse(start=start, end=end, rows=rows)
