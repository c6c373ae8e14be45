"""API schemas for request/response validation."""

from .admin import (
    AuditLogResponse,
    BillingResponse,
    ConnectionResponse,
    DashboardStatsResponse,
    ProgramListResponse,
    ProgramCreateRequest,
    ProgramResponse,
    ProgramUpdateRequest,
)
from .batches import (
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
from .errors import APIError, ErrorCode
from .health import ComponentHealth, HealthDetailResponse, HealthResponse, HealthStatus
from .leads import (
    AuditEntryResponse,
    DecryptRequest,
    DecryptResponse,
    FirmOfferRequest,
    FirmOfferResponse,
    HardPullRequest,
    HardPullResponse,
    LeadBulkCreateRequest,
    LeadCreateResponse,
    LeadDetailResponse,
    LeadListItemResponse,
    LeadListResponse,
    LeadResponse,
    NotesRequest,
    ResultResponse,
    lead_detail_response,
    lead_list_item_response,
    lead_response,
)

__all__ = [
    # Error schemas
    "APIError",
    "ErrorCode",
    # Health schemas
    "ComponentHealth",
    "HealthDetailResponse",
    "HealthResponse",
    "HealthStatus",
    # Lead schemas
    "AuditEntryResponse",
    "DecryptRequest",
    "DecryptResponse",
    "FirmOfferRequest",
    "FirmOfferResponse",
    "HardPullRequest",
    "HardPullResponse",
    "LeadBulkCreateRequest",
    "LeadCreateResponse",
    "LeadDetailResponse",
    "LeadListItemResponse",
    "LeadListResponse",
    "LeadResponse",
    "NotesRequest",
    "ResultResponse",
    "lead_detail_response",
    "lead_list_item_response",
    "lead_response",
    # Batch schemas
    "BatchCreateRequest",
    "BatchListResponse",
    "BatchRenameRequest",
    "BatchResponse",
    "FillMissingRequest",
    "MissingBureausItem",
    "MissingBureausResponse",
    "ResubmitResponse",
    "RetryQueueResponse",
    "RetryQueueResubmitRequest",
    "RetryQueueToggleRequest",
    "RetryQueueToggleResponse",
    # Admin schemas
    "AuditLogResponse",
    "BillingResponse",
    "ConnectionResponse",
    "DashboardStatsResponse",
    "ProgramCreateRequest",
    "ProgramListResponse",
    "ProgramResponse",
    "ProgramUpdateRequest",
]
