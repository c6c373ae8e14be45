"""Wire-facing types for the bureau gateway."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from prescreen.db.models import Bureau, MatchStatus

_NON_DIGITS_RE = re.compile(r"\D")

# Bureau keys in the gateway's "outputs" object
BUREAU_OUTPUT_KEYS: dict[str, Bureau] = {
    "eq": Bureau.EQUIFAX,
    "ex": Bureau.EXPERIAN,
    "tu": Bureau.TRANSUNION,
}


def _upper(value: str | None) -> str | None:
    if not value:
        return None
    value = value.strip().upper()
    return value or None


@dataclass(frozen=True)
class LeadRecord:
    """One consumer as submitted to the gateway.

    ``ssn`` and ``dob`` are plaintext here and exist only for the duration
    of a submission; never log a LeadRecord.
    """

    first_name: str
    last_name: str
    street: str
    city: str
    state: str
    zip: str
    middle_name: str | None = None
    street2: str | None = None
    ssn: str | None = field(default=None, repr=False)
    dob: str | None = field(default=None, repr=False)

    def to_payload(self, input_id: int) -> dict[str, Any]:
        """Gateway record format: uppercased text, digits-only SSN, 5-digit zip."""
        payload: dict[str, Any] = {
            "input_id": input_id,
            "first_name": _upper(self.first_name),
            "last_name": _upper(self.last_name),
        }
        optional = {
            "middle_initial": _upper(self.middle_name[:1]) if self.middle_name else None,
            "address": _upper(self.street),
            "address_2": _upper(self.street2),
            "city": _upper(self.city),
            "state": _upper(self.state),
            "zip": _NON_DIGITS_RE.sub("", self.zip or "")[:5] or None,
            "ssn": _NON_DIGITS_RE.sub("", self.ssn) if self.ssn else None,
            "date_of_birth": self.dob,
        }
        payload.update({key: value for key, value in optional.items() if value})
        return payload


@dataclass(frozen=True)
class BureauScore:
    """One bureau's answer for one record."""

    bureau: Bureau
    credit_score: int | None
    raw_output: dict[str, Any]


@dataclass(frozen=True)
class ScoredRecord:
    """A record the gateway matched and returned bureau outputs for."""

    index: int
    scores: list[BureauScore]
    segment_name: str | None = None

    @property
    def credit_scores(self) -> list[int | None]:
        return [s.credit_score for s in self.scores]


@dataclass(frozen=True)
class RecordFailure:
    """A record the gateway could not score.

    ``match_status`` is one of no_match, mismatch, no_score or rejected.
    """

    index: int
    match_status: MatchStatus
    reason: str

    @property
    def is_correctable(self) -> bool:
        """Whether editing the lead and resubmitting could change the outcome."""
        return self.match_status != MatchStatus.NO_SCORE


@dataclass
class SubmitOutcome:
    """Result of one submission. ``index`` refers to the submitted list."""

    results: list[ScoredRecord] = field(default_factory=list)
    failures: list[RecordFailure] = field(default_factory=list)


@dataclass(frozen=True)
class GatewayProgram:
    """Program as listed by the gateway."""

    program_id: str
    name: str
    description: str | None = None
    min_score: int | None = None
    max_score: int | None = None
    eq_enabled: bool = True
    ex_enabled: bool = True
    tu_enabled: bool = True

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "GatewayProgram":
        return cls(
            program_id=str(data["id"]),
            name=str(data.get("name") or f"Program {data['id']}"),
            description=data.get("description"),
            min_score=data.get("min_score"),
            max_score=data.get("max_score"),
            eq_enabled=bool(data.get("eq_enabled", True)),
            ex_enabled=bool(data.get("ex_enabled", True)),
            tu_enabled=bool(data.get("tu_enabled", True)),
        )


class ConnectionStatus(str, Enum):
    NOT_CONFIGURED = "not_configured"
    CONNECTED = "connected"
    BLOCKED = "blocked"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionCheck:
    status: ConnectionStatus
    message: str
    program_count: int | None = None
