"""Lead API endpoints.

- GET /v1/leads - List, filter, sort and paginate leads
- POST /v1/leads - Bulk intake
- GET/PATCH /v1/leads/{lead_id} - Detail and edits
- POST /v1/leads/{lead_id}/decrypt - Reveal SSN or DOB (admin, audited)
- PUT /v1/leads/{lead_id}/firm-offer - Firm-offer compliance (admin)
"""

from typing import Annotated, Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, Response, status

from prescreen.api.dependencies import (
    AdminCaller,
    CurrentCaller,
    get_firm_offer_tracker,
    get_lead_service,
)
from prescreen.api.schemas.errors import APIError
from prescreen.api.schemas.leads import (
    DecryptRequest,
    DecryptResponse,
    FirmOfferRequest,
    FirmOfferResponse,
    HardPullRequest,
    HardPullResponse,
    LeadBulkCreateRequest,
    LeadCreateResponse,
    LeadDetailResponse,
    LeadListResponse,
    LeadResponse,
    NotesRequest,
    lead_detail_response,
    lead_list_item_response,
    lead_response,
)
from prescreen.compliance import FirmOfferTracker
from prescreen.db.repositories import LeadFilter
from prescreen.db.repositories.lead import SortField
from prescreen.leads import LeadService, LeadUpdate

logger = structlog.get_logger()

router = APIRouter(prefix="/leads", tags=["leads"])

Leads = Annotated[LeadService, Depends(get_lead_service)]


@router.get("", response_model=LeadListResponse, summary="List leads")
async def list_leads(
    caller: CurrentCaller,
    leads: Leads,
    search: str | None = Query(default=None, max_length=100),
    tier: str | None = None,
    match_status: str | None = None,
    lead_status: str | None = Query(default=None, alias="status"),
    program_id: UUID | None = None,
    batch_id: UUID | None = None,
    min_score: int | None = Query(default=None, ge=300, le=900),
    max_score: int | None = Query(default=None, ge=300, le=900),
    retry_queued: bool | None = None,
    firm_offer_sent: bool | None = None,
    sort_by: SortField = "created_at",
    order: Literal["asc", "desc"] = "desc",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=25, ge=1, le=100),
) -> LeadListResponse:
    """Page through leads. Each call is recorded as a ``view_results`` audit entry."""
    filters = LeadFilter(
        search=search,
        tier=tier,
        match_status=match_status,
        status=lead_status,
        program_id=program_id,
        batch_id=batch_id,
        min_score=min_score,
        max_score=max_score,
        retry_queued=retry_queued,
        firm_offer_sent=firm_offer_sent,
    )
    items, total = await leads.list_leads(
        filters,
        caller,
        sort_by=sort_by,
        descending=order == "desc",
        page=page,
        limit=limit,
    )
    return LeadListResponse(
        items=[lead_list_item_response(item) for item in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.post(
    "",
    response_model=LeadCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Bulk lead intake",
    responses={400: {"model": APIError}, 403: {"model": APIError}},
)
async def create_leads(
    request: LeadBulkCreateRequest,
    caller: AdminCaller,
    leads: Leads,
) -> LeadCreateResponse:
    created = await leads.create_leads(request.records, caller)
    return LeadCreateResponse(created=len(created), ids=[lead.id for lead in created])


@router.get(
    "/{lead_id}",
    response_model=LeadDetailResponse,
    responses={404: {"model": APIError}},
)
async def get_lead(lead_id: UUID, caller: CurrentCaller, leads: Leads) -> LeadDetailResponse:
    return lead_detail_response(await leads.get_detail(lead_id, caller))


@router.patch(
    "/{lead_id}",
    response_model=LeadResponse,
    responses={400: {"model": APIError}, 404: {"model": APIError}},
)
async def update_lead(
    lead_id: UUID,
    request: LeadUpdate,
    caller: CurrentCaller,
    leads: Leads,
) -> LeadResponse:
    lead = await leads.update_lead(lead_id, request)
    logger.info("lead_edited", lead_id=str(lead_id), actor_id=caller.actor_id)
    return lead_response(lead)


@router.post("/{lead_id}/dismiss", response_model=LeadResponse)
async def dismiss_lead(lead_id: UUID, caller: CurrentCaller, leads: Leads) -> LeadResponse:
    return lead_response(await leads.dismiss(lead_id))


@router.post("/{lead_id}/restore", response_model=LeadResponse)
async def restore_lead(lead_id: UUID, caller: CurrentCaller, leads: Leads) -> LeadResponse:
    return lead_response(await leads.restore(lead_id))


@router.post(
    "/{lead_id}/decrypt",
    response_model=DecryptResponse,
    summary="Reveal SSN or date of birth",
    responses={403: {"model": APIError}, 404: {"model": APIError}, 500: {"model": APIError}},
)
async def decrypt_field(
    lead_id: UUID,
    request: DecryptRequest,
    caller: AdminCaller,
    leads: Leads,
    response: Response,
) -> DecryptResponse:
    """Decrypt one sensitive field. Every success writes an audit entry."""
    value = await leads.decrypt_field(lead_id, request.field, caller)
    response.headers["Cache-Control"] = "no-store"
    return DecryptResponse(lead_id=lead_id, field=request.field, value=value)


@router.put(
    "/{lead_id}/firm-offer",
    response_model=FirmOfferResponse,
    responses={403: {"model": APIError}, 404: {"model": APIError}},
)
async def update_firm_offer(
    lead_id: UUID,
    request: FirmOfferRequest,
    caller: AdminCaller,
    tracker: Annotated[FirmOfferTracker, Depends(get_firm_offer_tracker)],
) -> FirmOfferResponse:
    state = await tracker.update_firm_offer(
        lead_id, request.sent, caller, date=request.date, method=request.method
    )
    return FirmOfferResponse(
        lead_id=state.lead_id, sent=state.sent, date=state.date, method=state.method
    )


@router.put("/{lead_id}/notes", response_model=LeadResponse)
async def update_notes(
    lead_id: UUID,
    request: NotesRequest,
    caller: AdminCaller,
    leads: Leads,
) -> LeadResponse:
    return lead_response(await leads.update_notes(lead_id, request.notes, caller))


@router.get("/{lead_id}/hard-pulls", response_model=list[HardPullResponse])
async def list_hard_pulls(
    lead_id: UUID, caller: CurrentCaller, leads: Leads
) -> list[HardPullResponse]:
    return [HardPullResponse.from_model(h) for h in await leads.list_hard_pulls(lead_id)]


@router.post(
    "/{lead_id}/hard-pulls",
    response_model=HardPullResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_hard_pull(
    lead_id: UUID,
    request: HardPullRequest,
    caller: AdminCaller,
    leads: Leads,
) -> HardPullResponse:
    return HardPullResponse.from_model(await leads.add_hard_pull(lead_id, request, caller))
