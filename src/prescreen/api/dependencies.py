"""FastAPI dependencies for API endpoints.

Services are built once by the application factory and stored on
``app.state``; these functions hand them to route handlers.
"""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from prescreen.bureau import BureauGatewayClient
from prescreen.compliance import FirmOfferTracker
from prescreen.core.audit import AuditLogger
from prescreen.core.context import Caller
from prescreen.core.exceptions import AuthenticationError, AuthorizationError
from prescreen.leads import LeadService
from prescreen.programs import ProgramService
from prescreen.screening import BatchOrchestrator, MissingBureauFiller, RetryQueueManager

__all__ = [
    "AdminCaller",
    "CurrentCaller",
    "get_audit_logger",
    "get_bureau_filler",
    "get_caller",
    "get_db",
    "get_firm_offer_tracker",
    "get_gateway",
    "get_lead_service",
    "get_orchestrator",
    "get_program_service",
    "get_retry_queue",
    "require_admin",
]


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for the request.

    Usage:
        @router.get("/health/db")
        async def check(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with request.app.state.session_factory() as session:
        yield session


def get_caller(request: Request) -> Caller:
    """The caller identified by AuthenticationMiddleware.

    Raises:
        AuthenticationError: If the request carries no caller
    """
    caller = getattr(request.state, "caller", None)
    if caller is None:
        raise AuthenticationError()
    return caller


def require_admin(caller: Annotated[Caller, Depends(get_caller)]) -> Caller:
    """The caller, provided it holds the admin role.

    Raises:
        AuthorizationError: If the caller is not an admin
    """
    if not caller.is_admin:
        raise AuthorizationError("admin")
    return caller


CurrentCaller = Annotated[Caller, Depends(get_caller)]
AdminCaller = Annotated[Caller, Depends(require_admin)]


def get_audit_logger(request: Request) -> AuditLogger:
    return request.app.state.audit_logger


def get_gateway(request: Request) -> BureauGatewayClient:
    return request.app.state.gateway


def get_lead_service(request: Request) -> LeadService:
    return request.app.state.lead_service


def get_orchestrator(request: Request) -> BatchOrchestrator:
    return request.app.state.orchestrator


def get_retry_queue(request: Request) -> RetryQueueManager:
    return request.app.state.retry_queue


def get_firm_offer_tracker(request: Request) -> FirmOfferTracker:
    return request.app.state.firm_offer_tracker


def get_program_service(request: Request) -> ProgramService:
    return request.app.state.program_service


def get_bureau_filler(request: Request) -> MissingBureauFiller:
    return request.app.state.bureau_filler
