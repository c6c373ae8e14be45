"""Lead intake, editing and listing."""

from prescreen.leads.service import LeadService
from prescreen.leads.types import (
    HardPullCreate,
    LeadCreate,
    LeadDetail,
    LeadListItem,
    LeadUpdate,
)

__all__ = [
    "HardPullCreate",
    "LeadCreate",
    "LeadDetail",
    "LeadListItem",
    "LeadService",
    "LeadUpdate",
]
