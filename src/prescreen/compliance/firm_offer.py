"""Firm-offer tracking for prescreened leads.

Consumers whose credit was prescreened must receive a firm offer of credit.
This tracker records whether, when and how the offer went out, and audits
every change.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prescreen.core.audit import AuditLogger
from prescreen.core.context import Caller
from prescreen.core.exceptions import AuthorizationError, ValidationError
from prescreen.db.models import AuditAction
from prescreen.db.repositories import LeadRepository

logger = structlog.get_logger()

MAX_METHOD_LENGTH = 50


@dataclass(frozen=True)
class FirmOfferState:
    lead_id: UUID
    sent: bool
    date: datetime | None
    method: str | None


class FirmOfferTracker:
    """Updates the firm-offer fields of a lead."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditLogger,
    ):
        self._session_factory = session_factory
        self._audit = audit

    async def update_firm_offer(
        self,
        lead_id: UUID,
        sent: bool,
        actor: Caller,
        date: datetime | None = None,
        method: str | None = None,
    ) -> FirmOfferState:
        """Mark a firm offer as sent or clear it.

        Marking sent without a date stamps the current time. Clearing resets
        date and method. The change commits before the audit entry is
        dispatched, so an audit failure cannot undo it.

        Raises:
            AuthorizationError: If the actor is not an admin
            NotFoundError: If the lead does not exist
            ValidationError: If the method is too long
        """
        if not actor.is_admin:
            raise AuthorizationError("admin")

        method = method.strip() if method else None
        if method and len(method) > MAX_METHOD_LENGTH:
            raise ValidationError(
                f"Method must be at most {MAX_METHOD_LENGTH} characters", field="method"
            )

        async with self._session_factory() as session:
            lead = await LeadRepository(session).get_or_raise(lead_id)
            if sent:
                lead.firm_offer_sent = True
                lead.firm_offer_date = date or datetime.now(UTC)
                lead.firm_offer_method = method or None
            else:
                lead.firm_offer_sent = False
                lead.firm_offer_date = None
                lead.firm_offer_method = None
            await session.commit()
            state = FirmOfferState(
                lead_id=lead.id,
                sent=lead.firm_offer_sent,
                date=lead.firm_offer_date,
                method=lead.firm_offer_method,
            )

        logger.info("firm_offer_updated", lead_id=str(lead_id), sent=state.sent)
        self._audit.record(
            AuditAction.FIRM_OFFER_SENT if sent else AuditAction.FIRM_OFFER_CLEARED,
            lead_id=lead_id,
            details={
                "date": state.date.isoformat() if state.date else None,
                "method": state.method,
            },
            caller=actor,
        )
        return state
