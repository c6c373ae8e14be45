"""Score resolution and tier classification."""

from prescreen.scoring.tiers import Classification, Thresholds, classify, middle_score

__all__ = ["Classification", "Thresholds", "classify", "middle_score"]
