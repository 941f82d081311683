"""
Weighted technical/financial scoring and ranking.

All functions are pure. Arithmetic is done in Decimal and rounded half-even
to two places at the output boundary, so `88.0` stays `88.0`.
"""

from __future__ import annotations

import statistics
from decimal import Decimal
from typing import Any, Iterable, Mapping

from ...domain.rounding import round_half_even, to_decimal
from ...errors import ValidationError

METHOD_QCBS = "QCBS"
METHOD_LCS = "LCS"
METHOD_FBS = "FBS"
METHODS = (METHOD_QCBS, METHOD_LCS, METHOD_FBS)

FLAG_WEIGHTS = "weights_do_not_sum_to_one"

RELIABILITY_THRESHOLD = 0.8

_NAMED_SCALES = {
    "five_point": 5,
    "ten_point": 10,
    "hundred_point": 100,
    "percentage": 100,
}

_HUNDRED = Decimal(100)


def scale_of(value: Any) -> Decimal:
    if value is None or value == "":
        return _HUNDRED
    if isinstance(value, str) and value.strip().lower() in _NAMED_SCALES:
        return Decimal(_NAMED_SCALES[value.strip().lower()])
    try:
        scale = to_decimal(value)
    except ArithmeticError as e:
        raise ValidationError(message=f"Invalid scoringScale '{value}'") from e
    if scale <= 0:
        raise ValidationError(message="scoringScale must be positive")
    return scale


def criterion_weights(criteria: Iterable[Mapping[str, Any]] | None) -> dict[str, Decimal]:
    out: dict[str, Decimal] = {}
    for c in criteria or []:
        cid = str(c.get("id") or "").strip()
        if not cid:
            raise ValidationError(message="Evaluation criterion requires an id")
        w = to_decimal(c.get("weight", 1))
        if w < 0:
            raise ValidationError(message=f"Criterion '{cid}' has a negative weight")
        out[cid] = w
    return out


def raw_weighted_score(
    scores: Mapping[str, Any],
    weights: Mapping[str, Decimal] | None,
    *,
    scale: Decimal = _HUNDRED,
) -> Decimal:
    """Weighted mean of per-criterion scores on the criterion scale.

    Weights are normalized by their sum; they need not total 1 (or 100).
    Criteria missing from `weights` weigh 1 when no weights are configured.
    """
    total = Decimal(0)
    total_weight = Decimal(0)
    for cid, raw in (scores or {}).items():
        if raw is None:
            continue
        s = to_decimal(raw)
        if s < 0 or s > scale:
            raise ValidationError(
                message=f"Score {raw} for '{cid}' is outside 0..{scale}",
                details={"criterion": cid},
            )
        if weights:
            if cid not in weights:
                continue
            w = weights[cid]
        else:
            w = Decimal(1)
        total += s * w
        total_weight += w
    if total_weight == 0:
        raise ValidationError(message="No weighted criteria were scored")
    return total / total_weight


def to_percent(raw: Decimal, scale: Decimal) -> Decimal:
    return raw * _HUNDRED / scale


def financial_scores(prices: Mapping[str, Any]) -> dict[str, Decimal]:
    """Relative scaling against the lowest bid: lowest scores 100, others 100 * lowest / price."""
    valid = {sid: to_decimal(p) for sid, p in prices.items() if p is not None}
    for sid, p in valid.items():
        if p <= 0:
            raise ValidationError(message=f"Submission {sid} has a non-positive price", entity_id=sid)
    if not valid:
        return {}
    lowest = min(valid.values())
    return {sid: _HUNDRED * lowest / p for sid, p in valid.items()}


def weights_sum_to_one(technical_weight: Any, financial_weight: Any) -> bool:
    return to_decimal(technical_weight) + to_decimal(financial_weight) == Decimal(1)


def weighted_score(technical: Any, financial: Any, technical_weight: Any, financial_weight: Any) -> float:
    total = to_decimal(technical) * to_decimal(technical_weight) + to_decimal(financial) * to_decimal(financial_weight)
    return round_half_even(total)


def quality_signals(raw_scores: list[Decimal], *, scale: Decimal, responded: int, assigned: int) -> dict[str, Any]:
    if len(raw_scores) > 1:
        spread = Decimal(str(statistics.pstdev([float(s) for s in raw_scores])))
        consistency = Decimal(1) - spread / scale
    else:
        consistency = Decimal(1)
    completeness = Decimal(responded) / Decimal(assigned) if assigned else Decimal(0)
    return {
        "consistency": round_half_even(consistency),
        "completeness": round_half_even(completeness),
        "reliability": "low" if completeness < Decimal(str(RELIABILITY_THRESHOLD)) else "normal",
        "respondedEvaluators": responded,
        "assignedEvaluators": assigned,
    }


def rank_results(
    results: list[dict[str, Any]], exact_scores: Mapping[str, Decimal] | None = None
) -> list[dict[str, Any]]:
    """Rank eligible results by overall score desc, then earlier submission, then id.

    `exact_scores` maps submission id to the unrounded overall score; when
    given it orders the results, so scores that round alike still rank apart.
    Ineligible results keep `rank=None` and follow the ranked ones.
    """
    exact = exact_scores or {}

    def _score(r: Mapping[str, Any]) -> Decimal:
        sid = str(r.get("submissionId") or "")
        if exact.get(sid) is not None:
            return exact[sid]
        return to_decimal(r.get("overallScore") or 0)

    eligible = [r for r in results if r.get("eligible")]
    ineligible = [r for r in results if not r.get("eligible")]
    eligible.sort(
        key=lambda r: (
            -_score(r),
            str(r.get("submittedAt") or ""),
            str(r.get("submissionId") or ""),
        )
    )
    for i, r in enumerate(eligible, start=1):
        r["rank"] = i
    for r in ineligible:
        r["rank"] = None
    ineligible.sort(key=lambda r: str(r.get("submissionId") or ""))
    return eligible + ineligible
