"""Lead repository: selection, filtering and aggregate queries."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal
from uuid import UUID

from sqlalchemy import and_, case, func, or_, select

from prescreen.db.models import (
    Batch,
    BatchStatus,
    HardPull,
    Lead,
    LeadStatus,
    MatchStatus,
    Result,
    Tier,
)
from prescreen.db.repositories.base import BaseRepository

SortField = Literal["created_at", "middle_score", "last_name", "tier"]

# Logical tier order for sorting: qualified tiers first, unscored last
_TIER_RANK = case(
    (Lead.tier == Tier.TIER_1.value, 1),
    (Lead.tier == Tier.TIER_2.value, 2),
    (Lead.tier == Tier.TIER_3.value, 3),
    (Lead.tier == Tier.BELOW.value, 4),
    (and_(Lead.tier == Tier.FILTERED.value, Lead.match_status != MatchStatus.NO_MATCH.value), 5),
    (Lead.tier == Tier.FILTERED.value, 6),
    else_=7,
)


@dataclass
class LeadFilter:
    """Listing filters. ``tier="unqualified"`` matches scored-below leads and
    matched leads that came back without scores."""

    search: str | None = None
    tier: str | None = None
    match_status: str | None = None
    status: str | None = None
    program_id: UUID | None = None
    batch_id: UUID | None = None
    min_score: int | None = None
    max_score: int | None = None
    retry_queued: bool | None = None
    firm_offer_sent: bool | None = None


class LeadRepository(BaseRepository[Lead, UUID]):
    """Repository for Lead rows."""

    entity_name = "lead"

    # -------------------------------------------------------------------------
    # Batch selection
    # -------------------------------------------------------------------------

    async def select_eligible(
        self, program_id: UUID, lead_ids: Sequence[UUID] | None = None
    ) -> list[Lead]:
        """Leads that may be placed into a new batch for ``program_id``.

        Eligible means: not dismissed, not retry-queued, no bureau outcome
        yet, and either unassigned or assigned to a failed batch.
        """
        failed_batches = select(Batch.id).where(Batch.status == BatchStatus.FAILED.value)
        stmt = (
            select(Lead)
            .where(
                Lead.program_id == program_id,
                Lead.status == LeadStatus.PENDING.value,
                Lead.retry_queued.is_(False),
                Lead.match_status == MatchStatus.PENDING.value,
                or_(Lead.batch_id.is_(None), Lead.batch_id.in_(failed_batches)),
            )
            .order_by(Lead.id)
        )
        if lead_ids is not None:
            if not lead_ids:
                return []
            stmt = stmt.where(Lead.id.in_(list(lead_ids)))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_for_batch(self, batch_id: UUID, *, pending_only: bool = False) -> list[Lead]:
        """Leads assigned to ``batch_id`` in id order."""
        stmt = select(Lead).where(Lead.batch_id == batch_id).order_by(Lead.id)
        if pending_only:
            stmt = stmt.where(Lead.match_status == MatchStatus.PENDING.value)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def batch_counts(self, batch_id: UUID) -> tuple[int, int, int]:
        """``(total, qualified, failed)`` for the leads of a batch.

        Failed counts leads with a bureau outcome other than ``matched``.
        """
        stmt = select(
            func.count(Lead.id),
            func.count(case((Lead.is_qualified.is_(True), 1))),
            func.count(
                case(
                    (
                        Lead.match_status.notin_(
                            [MatchStatus.PENDING.value, MatchStatus.MATCHED.value]
                        ),
                        1,
                    )
                )
            ),
        ).where(Lead.batch_id == batch_id)
        row = (await self.db.execute(stmt)).one()
        return int(row[0]), int(row[1]), int(row[2])

    async def select_matched_with_identity(
        self, lead_ids: Sequence[UUID] | None = None
    ) -> list[Lead]:
        """Matched leads that still hold an encrypted SSN and DOB, in id order."""
        stmt = (
            select(Lead)
            .where(
                Lead.match_status == MatchStatus.MATCHED.value,
                Lead.ssn_encrypted.is_not(None),
                Lead.dob_encrypted.is_not(None),
            )
            .order_by(Lead.id)
        )
        if lead_ids is not None:
            if not lead_ids:
                return []
            stmt = stmt.where(Lead.id.in_(list(lead_ids)))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_retry_queued(self, program_id: UUID | None = None) -> list[Lead]:
        stmt = select(Lead).where(Lead.retry_queued.is_(True)).order_by(Lead.updated_at.desc())
        if program_id is not None:
            stmt = stmt.where(Lead.program_id == program_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    async def search(
        self,
        filters: LeadFilter,
        *,
        sort_by: SortField = "created_at",
        descending: bool = True,
        limit: int = 25,
        offset: int = 0,
    ) -> tuple[list[Lead], int]:
        """Filter, sort and paginate leads.

        Returns:
            Tuple of (page of leads, total matching count)
        """
        conditions = self._conditions(filters)

        total = (
            await self.db.execute(select(func.count(Lead.id)).where(*conditions))
        ).scalar() or 0

        if sort_by == "tier":
            order = [_TIER_RANK.desc() if descending else _TIER_RANK, Lead.id]
        elif sort_by == "middle_score":
            # Nulls last regardless of direction
            score = Lead.middle_score.desc() if descending else Lead.middle_score.asc()
            order = [Lead.middle_score.is_(None), score, Lead.id]
        else:
            col = getattr(Lead, sort_by)
            order = [col.desc() if descending else col.asc(), Lead.id]

        stmt = select(Lead).where(*conditions).order_by(*order).limit(limit).offset(offset)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), int(total)

    def _conditions(self, filters: LeadFilter) -> list:
        conditions = []
        if filters.search:
            term = f"%{_escape_like(filters.search.strip())}%"
            conditions.append(
                or_(
                    Lead.first_name.ilike(term, escape="\\"),
                    Lead.last_name.ilike(term, escape="\\"),
                    Lead.ssn_last_four.like(term, escape="\\"),
                )
            )
        if filters.tier == "unqualified":
            conditions.append(
                or_(
                    Lead.tier == Tier.BELOW.value,
                    and_(
                        Lead.tier == Tier.FILTERED.value,
                        Lead.match_status == MatchStatus.MATCHED.value,
                    ),
                )
            )
        elif filters.tier:
            conditions.append(Lead.tier == filters.tier)
        if filters.match_status:
            conditions.append(Lead.match_status == filters.match_status)
        if filters.status:
            conditions.append(Lead.status == filters.status)
        if filters.program_id is not None:
            conditions.append(Lead.program_id == filters.program_id)
        if filters.batch_id is not None:
            conditions.append(Lead.batch_id == filters.batch_id)
        if filters.min_score is not None:
            conditions.append(Lead.middle_score >= filters.min_score)
        if filters.max_score is not None:
            conditions.append(Lead.middle_score <= filters.max_score)
        if filters.retry_queued is not None:
            conditions.append(Lead.retry_queued.is_(filters.retry_queued))
        if filters.firm_offer_sent is not None:
            conditions.append(Lead.firm_offer_sent.is_(filters.firm_offer_sent))
        return conditions

    # -------------------------------------------------------------------------
    # Related rows and aggregates
    # -------------------------------------------------------------------------

    async def results_for(self, lead_ids: Sequence[UUID]) -> dict[UUID, list[Result]]:
        """Bureau results grouped by lead, oldest first."""
        grouped: dict[UUID, list[Result]] = {lead_id: [] for lead_id in lead_ids}
        if not lead_ids:
            return grouped
        stmt = (
            select(Result)
            .where(Result.lead_id.in_(list(lead_ids)))
            .order_by(Result.created_at, Result.id)
        )
        for row in (await self.db.execute(stmt)).scalars():
            grouped[row.lead_id].append(row)
        return grouped

    async def hard_pull_counts(self, lead_ids: Sequence[UUID]) -> dict[UUID, int]:
        if not lead_ids:
            return {}
        stmt = (
            select(HardPull.lead_id, func.count(HardPull.id))
            .where(HardPull.lead_id.in_(list(lead_ids)))
            .group_by(HardPull.lead_id)
        )
        return {lead_id: int(n) for lead_id, n in (await self.db.execute(stmt)).all()}

    async def list_hard_pulls(self, lead_id: UUID) -> list[HardPull]:
        stmt = (
            select(HardPull)
            .where(HardPull.lead_id == lead_id)
            .order_by(HardPull.pull_date.desc(), HardPull.id.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def tier_stats(self) -> dict[str, int]:
        """Lead counts by tier and by score band."""
        stmt = select(
            func.count(Lead.id),
            func.count(case((Lead.is_qualified.is_(True), 1))),
            func.count(case((Lead.tier == Tier.TIER_1.value, 1))),
            func.count(case((Lead.tier == Tier.TIER_2.value, 1))),
            func.count(case((Lead.tier == Tier.TIER_3.value, 1))),
            func.count(case((Lead.tier == Tier.BELOW.value, 1))),
            func.count(case((Lead.tier == Tier.FILTERED.value, 1))),
            func.count(case((Lead.tier == Tier.PENDING.value, 1))),
            func.count(case((Lead.middle_score >= 620, 1))),
            func.count(case((and_(Lead.middle_score >= 580, Lead.middle_score < 620), 1))),
            func.count(case((Lead.middle_score < 580, 1))),
        )
        row = (await self.db.execute(stmt)).one()
        keys = (
            "total_leads",
            "qualified_count",
            "tier_1_count",
            "tier_2_count",
            "tier_3_count",
            "below_count",
            "filtered_count",
            "pending_count",
            "score_620_plus",
            "score_580_to_619",
            "score_under_580",
        )
        return {key: int(value) for key, value in zip(keys, row, strict=True)}


def _escape_like(value: str) -> str:
    """Match ``%`` and ``_`` literally in a LIKE pattern."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
