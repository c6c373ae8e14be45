"""Middle-score resolution and tier classification.

Pure functions; no I/O.
"""

from dataclasses import dataclass
from typing import Protocol

from prescreen.db.models import Tier


class TierThresholds(Protocol):
    """Anything carrying the three minimum scores (a Program row qualifies)."""

    tier_1_min: int
    tier_2_min: int
    tier_3_min: int


@dataclass(frozen=True)
class Thresholds:
    tier_1_min: int = 620
    tier_2_min: int = 580
    tier_3_min: int = 500


@dataclass(frozen=True)
class Classification:
    tier: Tier
    is_qualified: bool


def middle_score(scores: list[int | None]) -> int | None:
    """Resolve up to three bureau scores into one middle score.

    Three scores give the median and two give the lower of the two. One
    gives itself and none gives None.
    """
    valid = sorted(s for s in scores if s is not None)
    if not valid:
        return None
    if len(valid) == 2:
        return valid[0]
    return valid[(len(valid) - 1) // 2]


def classify(score: int | None, thresholds: TierThresholds) -> Classification:
    """Map a middle score onto a qualification tier.

    ``None`` (no usable score) is ``filtered``. Scores under every threshold
    are ``below``. Only ``tier_1`` to ``tier_3`` qualify.
    """
    if score is None:
        tier = Tier.FILTERED
    elif score >= thresholds.tier_1_min:
        tier = Tier.TIER_1
    elif score >= thresholds.tier_2_min:
        tier = Tier.TIER_2
    elif score >= thresholds.tier_3_min:
        tier = Tier.TIER_3
    else:
        tier = Tier.BELOW
    return Classification(tier=tier, is_qualified=tier.is_qualified)
