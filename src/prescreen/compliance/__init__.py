"""Consumer-credit compliance tracking."""

from prescreen.compliance.firm_offer import FirmOfferState, FirmOfferTracker

__all__ = ["FirmOfferState", "FirmOfferTracker"]
