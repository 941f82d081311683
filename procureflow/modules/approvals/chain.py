"""
Approval chain resolution.

A chain resolves `rejected` as soon as any mandatory step is rejected;
undecided steps are left as they are. Otherwise it resolves `approved` when
every mandatory step is approved (`requireAll`), or when any one of them is
(`requireAll=false`). Optional steps never block. A chain without mandatory
steps needs at least one approval.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from ...domain.statuses import StepStatus

PENDING = StepStatus.PENDING.value
APPROVED = StepStatus.APPROVED.value
REJECTED = StepStatus.REJECTED.value

MODE_SEQUENTIAL = "sequential"
MODE_PARALLEL = "parallel"
MODES = (MODE_SEQUENTIAL, MODE_PARALLEL)


def _status(step: Mapping[str, Any]) -> str:
    return str(step.get("status") or PENDING)


def resolve_chain(steps: Iterable[Mapping[str, Any]], *, require_all: bool = True) -> str:
    steps = list(steps)
    mandatory = [s for s in steps if bool(s.get("mandatory", True))]

    if any(_status(s) == REJECTED for s in mandatory):
        return REJECTED

    if mandatory:
        approved = [s for s in mandatory if _status(s) == APPROVED]
        if require_all and len(approved) == len(mandatory):
            return APPROVED
        if not require_all and approved:
            return APPROVED
    elif any(_status(s) == APPROVED for s in steps):
        return APPROVED

    # Everything decided and still no approval: nothing left that could approve it.
    if steps and all(_status(s) != PENDING for s in steps):
        return REJECTED
    return PENDING


def ordered(steps: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
    return sorted(steps, key=lambda s: (int(s.get("priority") or 0), str(s.get("stepId") or "")))


def next_to_assign(steps: Iterable[dict[str, Any]]) -> dict[str, Any] | None:
    """First undecided, unassigned step by priority (sequential mode)."""
    for s in ordered(steps):
        if _status(s) == PENDING and not s.get("assignedAt"):
            return s  # type: ignore[return-value]
    return None


def has_assigned_pending(steps: Iterable[Mapping[str, Any]]) -> bool:
    return any(_status(s) == PENDING and s.get("assignedAt") for s in steps)
