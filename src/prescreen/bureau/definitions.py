"""Program definitions as the gateway stores them.

The gateway replaces a program's whole definition on update, so edits are
merged over the current remote document with server-managed fields removed.
"""

import copy
from typing import Any

from prescreen.bureau.types import BUREAU_OUTPUT_KEYS
from prescreen.db.models import Bureau

DEFAULT_SCORE_VERSION = "FICO_CLASSIC"

# Set by the gateway and refused when sent back
READ_ONLY_FIELDS = ("id", "created_at", "updated_at")

# Multi-bureau matching settings a single-bureau program must not carry
_MULTI_BUREAU_FIELDS = ("min_bureau_matches", "credit_score_mode")

# Default credit score criterion for a bureau without one
_DEFAULT_SCORE_CRITERION = {"min": 500, "max": 850}


def bureau_key(bureau: Bureau) -> str:
    """The gateway's two-letter key for ``bureau`` (``eq``, ``ex``, ``tu``)."""
    for key, value in BUREAU_OUTPUT_KEYS.items():
        if value == bureau:
            return key
    raise ValueError(f"Unknown bureau: {bureau}")


def new_definition(
    *,
    name: str,
    description: str | None,
    min_score: int,
    max_score: int,
    eq_enabled: bool,
    ex_enabled: bool,
    tu_enabled: bool,
) -> dict[str, Any]:
    """Definition for a new program, one score version per bureau."""
    definition: dict[str, Any] = {
        "name": name,
        "description": description,
        "min_score": min_score,
        "max_score": max_score,
        "eq_enabled": eq_enabled,
        "ex_enabled": ex_enabled,
        "tu_enabled": tu_enabled,
    }
    for key in BUREAU_OUTPUT_KEYS:
        definition[f"{key}_credit_score_version"] = DEFAULT_SCORE_VERSION
    return definition


def merge_definition(remote: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    """``changes`` applied over a fetched definition, ready to send back."""
    merged = {k: v for k, v in copy.deepcopy(remote).items() if k not in READ_ONLY_FIELDS}
    merged.update(changes)
    return merged


def single_bureau_definition(
    template: dict[str, Any], bureau: Bureau, name: str
) -> dict[str, Any]:
    """Clone ``template`` into a program that pulls from ``bureau`` alone.

    Other bureaus are disabled and their segment criteria and outputs
    dropped. Matching switches to priority mode with ``bureau`` first.
    """
    key = bureau_key(bureau)
    upper = key.upper()
    score_version = (
        template.get(f"{key}_credit_score_version")
        or template.get("eq_credit_score_version")
        or DEFAULT_SCORE_VERSION
    )

    definition = {
        k: v
        for k, v in copy.deepcopy(template).items()
        if k not in READ_ONLY_FIELDS and k not in _MULTI_BUREAU_FIELDS
    }
    definition.update(
        {
            "name": name,
            "description": f"Single-bureau fill program: {upper} only",
            "match_mode": "priority",
            "bureau_priority": {"bureau_1": upper, "bureau_2": None, "bureau_3": None},
        }
    )
    for other in BUREAU_OUTPUT_KEYS:
        definition[f"{other}_enabled"] = other == key
        definition[f"{other}_credit_score_version"] = score_version if other == key else None

    for segment in definition.get("segments") or []:
        if not isinstance(segment, dict):
            continue
        criteria = segment.get("criteria")
        if isinstance(criteria, dict):
            own = criteria.get(key) or {}
            if not own.get("credit_score"):
                own = {**own, "credit_score": dict(_DEFAULT_SCORE_CRITERION)}
            segment["criteria"] = {key: own}
        outputs = segment.get("outputs")
        if isinstance(outputs, dict):
            own_outputs = outputs.get(key)
            if own_outputs is None:
                # Borrow another bureau's output fields
                own_outputs = next(
                    (outputs[k] for k in BUREAU_OUTPUT_KEYS if isinstance(outputs.get(k), dict)),
                    None,
                )
            segment["outputs"] = {key: own_outputs} if own_outputs is not None else {}
    return definition
