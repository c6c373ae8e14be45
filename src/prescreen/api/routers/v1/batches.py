"""Batch, retry-queue and bureau-fill API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from prescreen.api.dependencies import (
    AdminCaller,
    CurrentCaller,
    get_bureau_filler,
    get_gateway,
    get_orchestrator,
    get_retry_queue,
)
from prescreen.api.schemas.batches import (
    BatchCreateRequest,
    BatchListResponse,
    BatchRenameRequest,
    BatchResponse,
    FillMissingRequest,
    MissingBureausItem,
    MissingBureausResponse,
    ResubmitResponse,
    RetryQueueResponse,
    RetryQueueResubmitRequest,
    RetryQueueToggleRequest,
    RetryQueueToggleResponse,
)
from prescreen.api.schemas.errors import APIError
from prescreen.api.schemas.leads import lead_response
from prescreen.bureau import BureauGatewayClient
from prescreen.core.exceptions import GatewayNotConfigured
from prescreen.db.models import BatchStatus, Bureau
from prescreen.screening import BatchOrchestrator, MissingBureauFiller, RetryQueueManager

router = APIRouter(prefix="/batches", tags=["batches"])
retry_queue_router = APIRouter(prefix="/retry-queue", tags=["retry-queue"])
fill_router = APIRouter(prefix="/fill-missing", tags=["batches"])

Orchestrator = Annotated[BatchOrchestrator, Depends(get_orchestrator)]
Gateway = Annotated[BureauGatewayClient, Depends(get_gateway)]
RetryQueue = Annotated[RetryQueueManager, Depends(get_retry_queue)]
Filler = Annotated[MissingBureauFiller, Depends(get_bureau_filler)]


def _require_gateway(gateway: BureauGatewayClient) -> None:
    if not gateway.is_configured:
        raise GatewayNotConfigured()


# =============================================================================
# Batches
# =============================================================================


@router.get("", response_model=BatchListResponse)
async def list_batches(
    caller: CurrentCaller,
    orchestrator: Orchestrator,
    batch_status: BatchStatus | None = Query(default=None, alias="status"),
    program_id: UUID | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=25, ge=1, le=100),
) -> BatchListResponse:
    batches, total, names = await orchestrator.list_batches(
        status=batch_status.value if batch_status else None,
        program_id=program_id,
        page=page,
        limit=limit,
    )
    return BatchListResponse(
        items=[BatchResponse.from_model(b, names.get(b.program_id)) for b in batches],
        total=total,
        page=page,
        limit=limit,
    )


@router.post(
    "",
    response_model=BatchResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create and run a batch",
    responses={400: {"model": APIError}, 503: {"model": APIError}},
)
async def create_batch(
    request: BatchCreateRequest,
    caller: AdminCaller,
    orchestrator: Orchestrator,
    gateway: Gateway,
) -> BatchResponse:
    """Submit eligible leads to the bureau gateway and wait for the outcome.

    A gateway failure is reported on the returned batch (status ``failed``)
    rather than as an error response.
    """
    _require_gateway(gateway)
    batch = await orchestrator.submit(
        request.program_id, caller, lead_ids=request.lead_ids, name=request.name
    )
    return BatchResponse.from_model(batch)


@router.patch("/{batch_id}", response_model=BatchResponse)
async def rename_batch(
    batch_id: UUID,
    request: BatchRenameRequest,
    caller: AdminCaller,
    orchestrator: Orchestrator,
) -> BatchResponse:
    return BatchResponse.from_model(await orchestrator.rename_batch(batch_id, request.name))


@router.post(
    "/{batch_id}/retry",
    response_model=BatchResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": APIError}},
)
async def retry_batch(
    batch_id: UUID,
    caller: AdminCaller,
    orchestrator: Orchestrator,
    gateway: Gateway,
) -> BatchResponse:
    """Resubmit the unscored leads of a failed batch as a new batch."""
    _require_gateway(gateway)
    return BatchResponse.from_model(await orchestrator.retry_failed_batch(batch_id, caller))


@router.post(
    "/{batch_id}/recover",
    response_model=BatchResponse,
    responses={409: {"model": APIError}},
)
async def recover_batch(
    batch_id: UUID,
    caller: AdminCaller,
    orchestrator: Orchestrator,
    gateway: Gateway,
) -> BatchResponse:
    """Finish a batch left ``processing`` by an interrupted run."""
    _require_gateway(gateway)
    return BatchResponse.from_model(await orchestrator.recover_batch(batch_id, caller))


# =============================================================================
# Retry queue
# =============================================================================


@retry_queue_router.get("", response_model=RetryQueueResponse)
async def list_retry_queue(
    caller: CurrentCaller,
    retry_queue: RetryQueue,
    program_id: UUID | None = None,
) -> RetryQueueResponse:
    leads = await retry_queue.list_queued(program_id)
    return RetryQueueResponse(items=[lead_response(lead) for lead in leads], total=len(leads))


@retry_queue_router.patch("", response_model=RetryQueueToggleResponse)
async def toggle_retry_queue(
    request: RetryQueueToggleRequest,
    caller: AdminCaller,
    retry_queue: RetryQueue,
) -> RetryQueueToggleResponse:
    if request.queued:
        updated = await retry_queue.enqueue(request.lead_ids)
    else:
        updated = await retry_queue.dequeue(request.lead_ids)
    return RetryQueueToggleResponse(updated=updated, queued=request.queued)


@retry_queue_router.post(
    "/resubmit",
    response_model=ResubmitResponse,
    status_code=status.HTTP_201_CREATED,
)
async def resubmit_retry_queue(
    request: RetryQueueResubmitRequest,
    caller: AdminCaller,
    retry_queue: RetryQueue,
    gateway: Gateway,
) -> ResubmitResponse:
    _require_gateway(gateway)
    batches = await retry_queue.resubmit(request.lead_ids, caller, name=request.name)
    return ResubmitResponse(batches=[BatchResponse.from_model(b) for b in batches])


# =============================================================================
# Missing bureau fill
# =============================================================================


@fill_router.get("", response_model=MissingBureausResponse)
async def preview_missing_bureaus(
    caller: CurrentCaller,
    filler: Filler,
) -> MissingBureausResponse:
    """Matched leads without a score from every bureau."""
    found = await filler.scan()
    return MissingBureausResponse(
        total=len(found),
        missing_counts={
            bureau.value: sum(1 for item in found if bureau in item.missing) for bureau in Bureau
        },
        items=[
            MissingBureausItem(
                lead_id=item.lead.id,
                first_name=item.lead.first_name,
                last_name=item.lead.last_name,
                tier=item.lead.tier,
                middle_score=item.lead.middle_score,
                scores=item.scores,
                missing=item.missing,
            )
            for item in found
        ],
    )


@fill_router.post(
    "",
    response_model=BatchResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Fill one bureau's missing scores",
    responses={400: {"model": APIError}, 502: {"model": APIError}, 503: {"model": APIError}},
)
async def fill_missing_bureau(
    request: FillMissingRequest,
    caller: AdminCaller,
    filler: Filler,
    gateway: Gateway,
) -> BatchResponse:
    """Submit matched leads lacking the bureau under a single-bureau program.

    Returns the tracking batch; a gateway failure during submission is
    reported on it (status ``failed``).
    """
    _require_gateway(gateway)
    batch = await filler.fill(request.bureau, caller, lead_ids=request.lead_ids)
    return BatchResponse.from_model(batch)
