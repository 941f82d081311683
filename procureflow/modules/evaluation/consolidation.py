from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping

from ...domain.entities import EntityType, utcnow_iso
from ...domain.rounding import round_half_even, to_decimal
from ...domain.statuses import EvaluationStatus, SubmissionStatus
from ...errors import InsufficientPermissionError, ValidationError
from ...observability.logging import get_logger
from ...repositories.entity_store import EntityStore
from ..identity.actor import Actor
from ..identity.roles import Role, has_at_least
from .scoring import (
    FLAG_WEIGHTS,
    METHOD_FBS,
    METHOD_LCS,
    METHOD_QCBS,
    METHODS,
    criterion_weights,
    financial_scores,
    quality_signals,
    rank_results,
    raw_weighted_score,
    scale_of,
    to_percent,
    weights_sum_to_one,
)

log = get_logger(__name__)

DEFAULT_TECHNICAL_WEIGHT = 0.7
DEFAULT_FINANCIAL_WEIGHT = 0.3

# Submissions still in the running when results are consolidated.
LIVE_SUBMISSION_STATUSES = (
    SubmissionStatus.SUBMITTED.value,
    SubmissionStatus.UNDER_REVIEW.value,
    SubmissionStatus.TECHNICAL_EVALUATION.value,
    SubmissionStatus.FINANCIAL_EVALUATION.value,
    SubmissionStatus.QUALIFIED.value,
)

_RESPONDED = (EvaluationStatus.COMPLETED.value, EvaluationStatus.CONSOLIDATED.value)


def _optional_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return to_decimal(value)


def _out(value: Decimal | None) -> float | None:
    return None if value is None else round_half_even(value)


def consolidate_scores(
    config: Mapping[str, Any],
    submissions: Iterable[Mapping[str, Any]],
    evaluations: Mapping[str, list[Mapping[str, Any]]],
) -> dict[str, Any]:
    """
    Score and rank one RFQ's submissions.

    `evaluations` maps submission id to its Evaluation records; only
    completed ones count towards the technical score, all of them count as
    assigned.
    """
    method = str(config.get("method") or METHOD_QCBS).upper()
    if method not in METHODS:
        raise ValidationError(message=f"Unknown evaluation method '{method}'", details={"supported": list(METHODS)})

    tw = to_decimal(config.get("technicalWeight", DEFAULT_TECHNICAL_WEIGHT))
    fw = to_decimal(config.get("financialWeight", DEFAULT_FINANCIAL_WEIGHT))
    scale = scale_of(config.get("scoringScale"))
    weights = criterion_weights(config.get("criteria"))
    min_technical = _optional_decimal(config.get("minTechnicalScore"))
    budget = _optional_decimal(config.get("budget"))
    if method == METHOD_FBS and budget is None:
        raise ValidationError(message="FBS evaluation requires a budget")

    flags: list[str] = []
    if method == METHOD_QCBS and not weights_sum_to_one(tw, fw):
        flags.append(FLAG_WEIGHTS)
        log.warning(
            "evaluation.weights_inconsistent",
            technical_weight=float(tw),
            financial_weight=float(fw),
        )

    rows: list[dict[str, Any]] = []
    for sub in submissions:
        sid = str(sub.get("id") or "")
        records = list(evaluations.get(sid) or [])
        responded = [e for e in records if str(e.get("status") or "") in _RESPONDED and e.get("scores")]
        raw_scores = [raw_weighted_score(e.get("scores") or {}, weights, scale=scale) for e in responded]
        technical = (
            sum((to_percent(r, scale) for r in raw_scores), Decimal(0)) / Decimal(len(raw_scores))
            if raw_scores
            else None
        )
        price = _optional_decimal(sub.get("price"))

        reasons: list[str] = []
        if technical is None:
            reasons.append("no_completed_evaluations")
        elif min_technical is not None and technical < min_technical:
            reasons.append("below_min_technical_score")
        if price is None:
            reasons.append("missing_price")
        elif method == METHOD_FBS and budget is not None and price > budget:
            reasons.append("over_budget")

        rows.append(
            {
                "submissionId": sid,
                "vendorId": sub.get("vendorId"),
                "submittedAt": sub.get("submittedAt") or sub.get("createdAt"),
                "price": price,
                "technical": technical,
                "reasons": reasons,
                "quality": quality_signals(raw_scores, scale=scale, responded=len(responded), assigned=len(records)),
                "evaluatorScores": [_out(to_percent(r, scale)) for r in raw_scores],
            }
        )

    eligible_prices = {r["submissionId"]: r["price"] for r in rows if not r["reasons"]}
    fin = financial_scores(eligible_prices)

    results: list[dict[str, Any]] = []
    exact: dict[str, Decimal] = {}
    for r in rows:
        eligible = not r["reasons"]
        financial = fin.get(r["submissionId"])
        overall: Decimal | None = None
        if eligible:
            if method == METHOD_QCBS:
                overall = r["technical"] * tw + financial * fw
            elif method == METHOD_LCS:
                overall = financial
            else:
                overall = r["technical"]
            exact[r["submissionId"]] = overall
        results.append(
            {
                "submissionId": r["submissionId"],
                "vendorId": r["vendorId"],
                "submittedAt": r["submittedAt"],
                "price": None if r["price"] is None else float(r["price"]),
                "technicalScore": _out(r["technical"]),
                "financialScore": _out(financial),
                "overallScore": _out(overall),
                "eligible": eligible,
                "reasons": r["reasons"],
                "evaluatorScores": r["evaluatorScores"],
                "quality": r["quality"],
            }
        )

    ranked = rank_results(results, exact)
    winner = next((r for r in ranked if r["rank"] == 1), None)
    return {
        "method": method,
        "technicalWeight": float(tw),
        "financialWeight": float(fw),
        "scoringScale": float(scale),
        "flags": flags,
        "results": ranked,
        "ranking": [r["submissionId"] for r in ranked if r["rank"] is not None],
        "winner": winner["submissionId"] if winner else None,
    }


class EvaluationConsolidationEngine:
    """Loads an RFQ's live submissions and evaluations, scores them and writes the results back."""

    def __init__(self, *, store: EntityStore, clock: Callable[[], str] = utcnow_iso):
        self.store = store
        self.clock = clock

    def _load_all(self, entity_type: EntityType, filters: Mapping[str, Any]) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        page = 1
        while True:
            resp = self.store.query(entity_type, filters, page=page, page_size=500, order_by="createdAt", descending=False)
            out.extend(resp["items"])
            if page * resp["pageSize"] >= resp["total"]:
                return out
            page += 1

    def consolidate(self, rfq_id: str, rfq_partition_key: str, *, actor: Actor) -> dict[str, Any]:
        if not has_at_least(actor.role, Role.PROCUREMENT_OFFICER):
            raise InsufficientPermissionError(
                message="Consolidating evaluations requires PROCUREMENT_OFFICER or higher",
                entity_type=EntityType.RFQ.value,
                entity_id=str(rfq_id),
                required_role=Role.PROCUREMENT_OFFICER.name,
                actor_role=actor.role.name,
            )

        rfq = self.store.get_required(EntityType.RFQ, rfq_id, rfq_partition_key)
        config = dict(rfq.get("evaluationConfig") or {})
        submissions = self._load_all(
            EntityType.SUBMISSION,
            {"rfqId": str(rfq_id), "status": list(LIVE_SUBMISSION_STATUSES)},
        )
        evaluations: dict[str, list[dict[str, Any]]] = {}
        for sub in submissions:
            evaluations[sub["id"]] = self._load_all(
                EntityType.EVALUATION,
                {"submissionId": sub["id"], "status": {"ne": EvaluationStatus.DELETED.value}},
            )

        result = consolidate_scores(config, submissions, evaluations)
        now = self.clock()
        result["rfqId"] = str(rfq_id)
        result["consolidatedAt"] = now
        result["consolidatedBy"] = actor.id

        by_id = {r["submissionId"]: r for r in result["results"]}
        for sub in submissions:
            row = by_id[sub["id"]]

            def _set_result(doc: dict[str, Any], row=row) -> None:
                doc["evaluationResult"] = {**row, "method": result["method"], "consolidatedAt": now}

            self.store.update(
                EntityType.SUBMISSION,
                sub["id"],
                sub["partitionKey"],
                _set_result,
                actor=actor,
                action="evaluation_consolidated",
                details={"rank": row["rank"], "overallScore": row["overallScore"], "rfqId": str(rfq_id)},
                snapshots={"rfq": rfq},
            )

        def _set_rfq(doc: dict[str, Any]) -> None:
            doc["evaluationResults"] = result

        self.store.update(
            EntityType.RFQ,
            str(rfq_id),
            rfq_partition_key,
            _set_rfq,
            actor=actor,
            action="evaluation_consolidated",
            details={"method": result["method"], "winner": result["winner"], "flags": result["flags"]},
        )

        for records in evaluations.values():
            for ev in records:
                if ev.get("status") != EvaluationStatus.COMPLETED.value:
                    continue

                def _consolidated(doc: dict[str, Any]) -> None:
                    doc["status"] = EvaluationStatus.CONSOLIDATED.value

                self.store.update(
                    EntityType.EVALUATION,
                    ev["id"],
                    ev["partitionKey"],
                    _consolidated,
                    actor=actor,
                    action="status_changed",
                    details={"from": EvaluationStatus.COMPLETED.value, "to": EvaluationStatus.CONSOLIDATED.value},
                )

        log.info(
            "evaluation.consolidated",
            rfq_id=str(rfq_id),
            method=result["method"],
            submissions=len(submissions),
            winner=result["winner"],
            flags=result["flags"],
        )
        return result
