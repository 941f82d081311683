from __future__ import annotations

from typing import Any, Mapping

RISK_LOW = "low"
RISK_MEDIUM = "medium"
RISK_HIGH = "high"
RISK_CRITICAL = "critical"

_ACTION_RISK = {
    "deleted": 5,
    "admin_override": 5,
    "approved": 4,
    "rejected": 4,
    "created": 3,
    "exported": 3,
    "escalated": 3,
    "updated": 2,
    "status_changed": 2,
    "read": 1,
    "activity": 1,
}

_ENTITY_RISK = {
    "Contract": 1.8,
    "Procurement": 1.6,
    "Award": 1.6,
    "Approval": 1.4,
}


def _monetary_value(details: Mapping[str, Any]) -> float:
    for k in ("value", "amount", "estimatedValue", "awardedAmount", "contractValue"):
        v = details.get(k)
        if isinstance(v, bool):
            continue
        try:
            return float(v)
        except (TypeError, ValueError):
            continue
    return 0.0


def risk_level(action: str, entity_type: str, details: Mapping[str, Any] | None = None) -> str:
    d = details or {}
    score = float(_ACTION_RISK.get(str(action or ""), 2))
    score *= _ENTITY_RISK.get(str(entity_type or ""), 1.0)

    value = _monetary_value(d)
    if value >= 1_000_000:
        score += 3
    elif value >= 100_000:
        score += 2
    elif value >= 10_000:
        score += 1

    if d.get("emergency"):
        score += 2
    if d.get("override"):
        score += 2
    if d.get("bulkOperation"):
        score += 1

    if score >= 10:
        return RISK_CRITICAL
    if score >= 7:
        return RISK_HIGH
    if score >= 4:
        return RISK_MEDIUM
    return RISK_LOW
