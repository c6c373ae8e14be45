"""Credit-bureau gateway client and wire types."""

from prescreen.bureau.client import BureauGatewayClient
from prescreen.bureau.token_cache import IssuedToken, TokenCache
from prescreen.bureau.types import (
    BureauScore,
    ConnectionCheck,
    ConnectionStatus,
    GatewayProgram,
    LeadRecord,
    RecordFailure,
    ScoredRecord,
    SubmitOutcome,
)

__all__ = [
    "BureauGatewayClient",
    "BureauScore",
    "ConnectionCheck",
    "ConnectionStatus",
    "GatewayProgram",
    "IssuedToken",
    "LeadRecord",
    "RecordFailure",
    "ScoredRecord",
    "SubmitOutcome",
    "TokenCache",
]
