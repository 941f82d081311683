"""
Per-entity-type status graphs.

Each table lists its edges explicitly; anything absent is illegal. A status
with no outgoing edge is terminal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from ..errors import ValidationError
from ..modules.identity.roles import Role
from .entities import EntityType, entity_type_of
from .statuses import (
    ApprovalStatus,
    AwardStatus,
    ClarificationStatus,
    ContractStatus,
    EvaluationStatus,
    PlanStatus,
    ProcurementStatus,
    RFQStatus,
    SubmissionStatus,
    TemplateStatus,
)

DEFAULT_ROLE = Role.PROCUREMENT_OFFICER


@dataclass(frozen=True, slots=True)
class Edge:
    source: str
    target: str
    min_role: Role = DEFAULT_ROLE
    requires_approval: bool = False
    publishes: bool = False


@dataclass(slots=True)
class TransitionTable:
    entity_type: EntityType
    statuses: type[Enum]
    initial: str
    deletion_status: str
    edges: dict[tuple[str, str], Edge] = field(default_factory=dict)

    def edge(self, source: Any, target: Any) -> Edge | None:
        return self.edges.get((_value(source), _value(target)))

    def targets(self, source: Any) -> list[str]:
        s = _value(source)
        return [t for (src, t) in self.edges if src == s]

    def is_terminal(self, status: Any) -> bool:
        return not self.targets(status)

    @property
    def terminal_statuses(self) -> frozenset[str]:
        return frozenset(s.value for s in self.statuses if self.is_terminal(s.value))

    def is_known(self, status: Any) -> bool:
        return _value(status) in {s.value for s in self.statuses}


def _value(status: Any) -> str:
    return status.value if isinstance(status, Enum) else str(status or "")


def _build(
    entity_type: EntityType,
    statuses: type[Enum],
    *,
    initial: Enum,
    deletion_status: Enum,
    edges: Iterable[tuple],
    cancel_from_all: bool = False,
) -> TransitionTable:
    table = TransitionTable(
        entity_type=entity_type,
        statuses=statuses,
        initial=initial.value,
        deletion_status=deletion_status.value,
    )
    for spec in edges:
        source, target, *rest = spec
        opts = rest[0] if rest else {}
        e = Edge(source=source.value, target=target.value, **opts)
        table.edges[(e.source, e.target)] = e

    if cancel_from_all:
        # Cancellation is open from every status that still has somewhere to go.
        for s in statuses:
            if s.value != deletion_status.value and table.targets(s.value):
                key = (s.value, deletion_status.value)
                table.edges.setdefault(key, Edge(source=s.value, target=deletion_status.value))
    return table


P = ProcurementStatus
R = RFQStatus
S = SubmissionStatus
E = EvaluationStatus
A = ApprovalStatus
W = AwardStatus
C = ContractStatus
L = PlanStatus
Q = ClarificationStatus
T = TemplateStatus

_GATED = {"requires_approval": True}
_PUBLISH = {"publishes": True}


TABLES: dict[EntityType, TransitionTable] = {
    EntityType.PROCUREMENT: _build(
        EntityType.PROCUREMENT,
        P,
        initial=P.PLANNING,
        deletion_status=P.CANCELLED,
        cancel_from_all=True,
        edges=[
            (P.PLANNING, P.RFQ_PREPARATION),
            (P.RFQ_PREPARATION, P.RFQ_PUBLISHED, _PUBLISH),
            (P.RFQ_PUBLISHED, P.SUBMISSION_CLOSING),
            (P.SUBMISSION_CLOSING, P.EVALUATION),
            (P.EVALUATION, P.AWARD_PENDING),
            (P.AWARD_PENDING, P.EVALUATION),
            (P.AWARD_PENDING, P.AWARDED, _GATED),
            (P.AWARDED, P.CONTRACT_EXECUTION),
            (P.CONTRACT_EXECUTION, P.COMPLETED),
        ],
    ),
    EntityType.RFQ: _build(
        EntityType.RFQ,
        R,
        initial=R.DRAFT,
        deletion_status=R.CANCELLED,
        cancel_from_all=True,
        edges=[
            (R.DRAFT, R.UNDER_REVIEW),
            (R.UNDER_REVIEW, R.DRAFT),
            (R.UNDER_REVIEW, R.APPROVED, {"min_role": Role.APPROVER}),
            (R.APPROVED, R.PUBLISHED, {"requires_approval": True, "publishes": True}),
            (R.PUBLISHED, R.OPEN),
            (R.PUBLISHED, R.EXPIRED),
            (R.OPEN, R.CLOSED),
            (R.OPEN, R.EXPIRED),
            (R.CLOSED, R.EVALUATED),
            (R.EVALUATED, R.AWARDED, _GATED),
        ],
    ),
    EntityType.SUBMISSION: _build(
        EntityType.SUBMISSION,
        S,
        initial=S.DRAFT,
        deletion_status=S.WITHDRAWN,
        edges=[
            (S.DRAFT, S.SUBMITTED, {"min_role": Role.VENDOR}),
            (S.DRAFT, S.WITHDRAWN, {"min_role": Role.VENDOR}),
            (S.SUBMITTED, S.WITHDRAWN, {"min_role": Role.VENDOR}),
            (S.SUBMITTED, S.UNDER_REVIEW),
            (S.UNDER_REVIEW, S.TECHNICAL_EVALUATION, {"min_role": Role.EVALUATOR}),
            (S.UNDER_REVIEW, S.REJECTED),
            (S.TECHNICAL_EVALUATION, S.FINANCIAL_EVALUATION, {"min_role": Role.EVALUATOR}),
            (S.FINANCIAL_EVALUATION, S.QUALIFIED),
            (S.FINANCIAL_EVALUATION, S.DISQUALIFIED),
            (S.QUALIFIED, S.AWARDED),
            (S.QUALIFIED, S.NOT_AWARDED),
        ],
    ),
    EntityType.EVALUATION: _build(
        EntityType.EVALUATION,
        E,
        initial=E.NOT_STARTED,
        deletion_status=E.DELETED,
        edges=[
            (E.NOT_STARTED, E.IN_PROGRESS, {"min_role": Role.EVALUATOR}),
            (E.IN_PROGRESS, E.COMPLETED, {"min_role": Role.EVALUATOR}),
            (E.COMPLETED, E.IN_PROGRESS),
            (E.COMPLETED, E.CONSOLIDATED),
            (E.NOT_STARTED, E.DELETED),
            (E.IN_PROGRESS, E.DELETED),
        ],
    ),
    EntityType.APPROVAL: _build(
        EntityType.APPROVAL,
        A,
        initial=A.PENDING,
        deletion_status=A.DELETED,
        edges=[
            (A.PENDING, A.APPROVED, {"min_role": Role.APPROVER}),
            (A.PENDING, A.REJECTED, {"min_role": Role.APPROVER}),
            (A.PENDING, A.RETURNED, {"min_role": Role.APPROVER}),
            (A.RETURNED, A.PENDING),
            (A.PENDING, A.ESCALATED),
            (A.ESCALATED, A.APPROVED, {"min_role": Role.APPROVER}),
            (A.ESCALATED, A.REJECTED, {"min_role": Role.APPROVER}),
            (A.PENDING, A.RECALLED),
            (A.PENDING, A.EXPIRED),
            (A.PENDING, A.DELETED),
            (A.RETURNED, A.DELETED),
        ],
    ),
    EntityType.AWARD: _build(
        EntityType.AWARD,
        W,
        initial=W.DRAFT,
        deletion_status=W.CANCELLED,
        cancel_from_all=True,
        edges=[
            (W.DRAFT, W.PENDING_APPROVAL),
            (W.PENDING_APPROVAL, W.DRAFT),
            (W.PENDING_APPROVAL, W.APPROVED, {"min_role": Role.APPROVER}),
            (W.APPROVED, W.AWARDED, {"requires_approval": True, "publishes": True}),
            (W.AWARDED, W.CONTRACT_GENERATED),
            (W.AWARDED, W.DISPUTED),
            (W.DISPUTED, W.AWARDED),
            (W.CONTRACT_GENERATED, W.COMPLETED),
        ],
    ),
    EntityType.CONTRACT: _build(
        EntityType.CONTRACT,
        C,
        initial=C.DRAFT,
        deletion_status=C.CANCELLED,
        cancel_from_all=True,
        edges=[
            (C.DRAFT, C.UNDER_REVIEW),
            (C.UNDER_REVIEW, C.PENDING_APPROVAL),
            (C.PENDING_APPROVAL, C.APPROVED, {"min_role": Role.APPROVER}),
            (C.APPROVED, C.PENDING_SIGNATURE),
            (C.PENDING_SIGNATURE, C.EXECUTED, {"min_role": Role.APPROVER}),
            (C.EXECUTED, C.ACTIVE),
            (C.ACTIVE, C.SUSPENDED),
            (C.SUSPENDED, C.ACTIVE),
            (C.ACTIVE, C.AMENDED),
            (C.AMENDED, C.ACTIVE),
            (C.ACTIVE, C.TERMINATED, {"min_role": Role.APPROVER}),
            (C.ACTIVE, C.COMPLETED),
        ],
    ),
    EntityType.PLAN: _build(
        EntityType.PLAN,
        L,
        initial=L.DRAFT,
        deletion_status=L.CANCELLED,
        cancel_from_all=True,
        edges=[
            (L.DRAFT, L.UNDER_REVIEW),
            (L.UNDER_REVIEW, L.DRAFT),
            (L.UNDER_REVIEW, L.APPROVED, {"min_role": Role.APPROVER}),
            (L.APPROVED, L.ACTIVE),
            (L.APPROVED, L.EXPIRED),
            (L.ACTIVE, L.ON_HOLD),
            (L.ON_HOLD, L.ACTIVE),
            (L.ACTIVE, L.COMPLETED),
            (L.ACTIVE, L.EXPIRED),
        ],
    ),
    EntityType.CLARIFICATION: _build(
        EntityType.CLARIFICATION,
        Q,
        initial=Q.PENDING,
        deletion_status=Q.DELETED,
        edges=[
            (Q.PENDING, Q.ANSWERED),
            (Q.ANSWERED, Q.PUBLISHED, _PUBLISH),
            (Q.PENDING, Q.DELETED),
            (Q.ANSWERED, Q.DELETED),
        ],
    ),
    EntityType.TEMPLATE: _build(
        EntityType.TEMPLATE,
        T,
        initial=T.DRAFT,
        deletion_status=T.ARCHIVED,
        edges=[
            (T.DRAFT, T.ACTIVE),
            (T.ACTIVE, T.INACTIVE),
            (T.INACTIVE, T.ACTIVE),
            (T.DRAFT, T.ARCHIVED),
            (T.ACTIVE, T.ARCHIVED),
            (T.INACTIVE, T.ARCHIVED),
        ],
    ),
}


def table_for(entity_type: Any) -> TransitionTable:
    et = entity_type_of(entity_type)
    table = TABLES.get(et)
    if table is None:
        raise ValidationError(message=f"{et.value} has no status workflow", entity_type=et.value)
    return table


# Share of the procurement process completed at each status, in percent.
PROCUREMENT_STAGE_PROGRESS: dict[str, int] = {
    P.PLANNING.value: 10,
    P.RFQ_PREPARATION.value: 20,
    P.RFQ_PUBLISHED.value: 30,
    P.SUBMISSION_CLOSING.value: 50,
    P.EVALUATION.value: 70,
    P.AWARD_PENDING.value: 85,
    P.AWARDED.value: 90,
    P.CONTRACT_EXECUTION.value: 95,
    P.COMPLETED.value: 100,
    P.CANCELLED.value: 0,
}
