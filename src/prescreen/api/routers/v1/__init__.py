"""API v1 routers."""

from fastapi import APIRouter

from .admin import audit_router, bureau_router, dashboard_router, programs_router
from .batches import fill_router, retry_queue_router
from .batches import router as batches_router
from .leads import router as leads_router

# Create v1 router that includes all v1 endpoints
router = APIRouter(prefix="/v1")

router.include_router(leads_router)
router.include_router(batches_router)
router.include_router(retry_queue_router)
router.include_router(fill_router)
router.include_router(audit_router)
router.include_router(dashboard_router)
router.include_router(programs_router)
router.include_router(bureau_router)

__all__ = [
    "audit_router",
    "batches_router",
    "bureau_router",
    "dashboard_router",
    "fill_router",
    "leads_router",
    "programs_router",
    "retry_queue_router",
    "router",
]
