from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from contextvars import copy_context
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from ...domain.entities import EntityType, entity_type_of, utcnow_iso
from ...domain.statuses import ApprovalStatus
from ...errors import (
    InsufficientPermissionError,
    InvalidTransitionError,
    ProcurementError,
    ValidationError,
)
from ...observability.logging import get_logger
from ...repositories.entity_store import EntityStore
from ..identity.actor import Actor
from ..identity.roles import is_admin
from .chain import (
    APPROVED,
    MODE_PARALLEL,
    MODE_SEQUENTIAL,
    MODES,
    PENDING,
    REJECTED,
    has_assigned_pending,
    next_to_assign,
    ordered,
    resolve_chain,
)

log = get_logger(__name__)

APPROVAL = EntityType.APPROVAL.value

# Statuses in which an approval still accepts step decisions.
_OPEN = (ApprovalStatus.PENDING.value, ApprovalStatus.ESCALATED.value)

# Value thresholds for the default approval ladder.
_MANAGER_LIMIT = 100_000
_DIRECTOR_LIMIT = 1_000_000


def _parse_iso(value: Any) -> datetime | None:
    s = str(value or "").strip()
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def approval_partition_key(subject_type: str, subject_id: str) -> str:
    return f"{subject_type}|{subject_id}"


class ApprovalCoordinator:
    """
    Multi-step approval chains stored as Approval entities.

    Each decision is one optimistic-concurrency write: the step is updated
    and, when the chain resolves, the Approval's own status moves from
    `pending` to `approved`/`rejected` in the same replace.
    """

    def __init__(
        self,
        *,
        store: EntityStore,
        max_batch: int = 50,
        parallelism: int = 5,
        clock: Callable[[], str] = utcnow_iso,
    ):
        self.store = store
        self.max_batch = max(1, int(max_batch))
        self.parallelism = max(1, int(parallelism))
        self.clock = clock

    # --- requests ---

    def request_approval(
        self,
        subject: Mapping[str, Any],
        steps: Iterable[Mapping[str, Any]],
        *,
        actor: Actor,
        mode: str = MODE_SEQUENTIAL,
        require_all: bool = True,
        expires_at: str | None = None,
        title: str | None = None,
        value: float | None = None,
    ) -> dict[str, Any]:
        if mode not in MODES:
            raise ValidationError(message=f"Unknown approval mode '{mode}'", entity_type=APPROVAL)
        subject_type = entity_type_of(subject.get("entityType")).value
        subject_id = str(subject.get("id") or "").strip()
        if not subject_id:
            raise ValidationError(message="Approval subject requires an id", entity_type=APPROVAL)

        now = self.clock()
        built: list[dict[str, Any]] = []
        seen: set[str] = set()
        for i, raw in enumerate(steps or []):
            approver = str(raw.get("approverId") or "").strip()
            if not approver:
                raise ValidationError(message=f"Approval step {i + 1} requires an approverId", entity_type=APPROVAL)
            step_id = str(raw.get("stepId") or f"step_{i + 1}")
            if step_id in seen:
                raise ValidationError(message=f"Duplicate approval step '{step_id}'", entity_type=APPROVAL)
            seen.add(step_id)
            built.append(
                {
                    "stepId": step_id,
                    "approverId": approver,
                    "role": raw.get("role"),
                    "mandatory": bool(raw.get("mandatory", True)),
                    "priority": int(raw.get("priority", i + 1)),
                    "status": PENDING,
                    "assignedAt": now if mode == MODE_PARALLEL else None,
                    "respondedAt": None,
                    "responseTime": None,
                    "comments": None,
                    "delegatedTo": None,
                }
            )
        if not built:
            raise ValidationError(message="An approval chain needs at least one step", entity_type=APPROVAL)
        if mode == MODE_SEQUENTIAL:
            first = next_to_assign(built)
            if first is not None:
                first["assignedAt"] = now

        attrs = {
            "subjectType": subject_type,
            "subjectId": subject_id,
            "title": title or subject.get("title"),
            "mode": mode,
            "requireAll": bool(require_all),
            "steps": [dict(s) for s in ordered(built)],
            "requestedBy": actor.id,
            "expiresAt": expires_at,
            "value": value,
            "department": subject.get("department"),
        }
        approval = self.store.create(
            APPROVAL,
            attrs,
            actor=actor,
            snapshots={"subject": subject},
            details={"subjectType": subject_type, "subjectId": subject_id, "value": value},
        )
        log.info(
            "approval.requested",
            approval_id=approval["id"],
            subject_type=subject_type,
            subject_id=subject_id,
            steps=len(built),
            mode=mode,
        )
        return approval

    # --- decisions ---

    def _ensure_open(self, doc: Mapping[str, Any]) -> None:
        status = str(doc.get("status") or "")
        if status not in _OPEN:
            raise InvalidTransitionError(
                message=f"Approval {doc.get('id')} is already {status}",
                entity_type=APPROVAL,
                entity_id=str(doc.get("id") or ""),
                current_status=status,
            )
        expires = _parse_iso(doc.get("expiresAt"))
        now = _parse_iso(self.clock())
        if expires is not None and now is not None and now > expires:
            raise InvalidTransitionError(
                message=f"Approval {doc.get('id')} expired at {doc.get('expiresAt')}",
                entity_type=APPROVAL,
                entity_id=str(doc.get("id") or ""),
                current_status=status,
                details={"expiresAt": doc.get("expiresAt")},
            )

    @staticmethod
    def _find_step(doc: Mapping[str, Any], step_id: str) -> dict[str, Any]:
        for s in doc.get("steps") or []:
            if str(s.get("stepId")) == str(step_id):
                return s
        raise ValidationError(
            message=f"Approval {doc.get('id')} has no step '{step_id}'",
            entity_type=APPROVAL,
            entity_id=str(doc.get("id") or ""),
        )

    def record_decision(
        self,
        approval_id: str,
        partition_key: str,
        step_id: str,
        decision: str,
        *,
        actor: Actor,
        comments: str | None = None,
        bulk: bool = False,
    ) -> dict[str, Any]:
        decision = str(getattr(decision, "value", decision) or "").strip().lower()
        if decision not in (APPROVED, REJECTED):
            raise ValidationError(
                message=f"Decision must be '{APPROVED}' or '{REJECTED}'",
                entity_type=APPROVAL,
                entity_id=str(approval_id),
            )

        outcome: dict[str, Any] = {}

        def _mutate(doc: dict[str, Any]) -> None:
            self._ensure_open(doc)
            step = self._find_step(doc, step_id)
            if actor.id not in (step.get("approverId"), step.get("delegatedTo")):
                raise InsufficientPermissionError(
                    message=f"{actor.id} is not the approver for step '{step_id}'",
                    entity_type=APPROVAL,
                    entity_id=str(approval_id),
                    actor_role=actor.role.name,
                )
            if str(step.get("status") or PENDING) != PENDING:
                raise InvalidTransitionError(
                    message=f"Step '{step_id}' was already {step.get('status')}",
                    entity_type=APPROVAL,
                    entity_id=str(approval_id),
                    current_status=str(step.get("status")),
                    target_status=decision,
                )
            if doc.get("mode") == MODE_SEQUENTIAL and not step.get("assignedAt"):
                raise InvalidTransitionError(
                    message=f"Step '{step_id}' is not yet assigned",
                    entity_type=APPROVAL,
                    entity_id=str(approval_id),
                    current_status=PENDING,
                    target_status=decision,
                )

            now = self.clock()
            assigned = _parse_iso(step.get("assignedAt"))
            responded = _parse_iso(now)
            step["status"] = decision
            step["respondedAt"] = now
            step["responseTime"] = (
                round((responded - assigned).total_seconds(), 3) if assigned and responded else None
            )
            step["comments"] = comments

            resolution = resolve_chain(doc.get("steps") or [], require_all=bool(doc.get("requireAll", True)))
            if resolution == PENDING and doc.get("mode") == MODE_SEQUENTIAL and not has_assigned_pending(doc["steps"]):
                nxt = next_to_assign(doc["steps"])
                if nxt is not None:
                    nxt["assignedAt"] = now
            if resolution != PENDING:
                doc["status"] = resolution
                doc["resolvedAt"] = now
            outcome["resolution"] = resolution

        details: dict[str, Any] = {"stepId": str(step_id), "decision": decision, "comments": comments}
        if bulk:
            details["bulkOperation"] = True
        updated = self.store.update(
            APPROVAL,
            str(approval_id),
            str(partition_key),
            _mutate,
            actor=actor,
            action=decision,
            details=details,
        )
        log.info(
            "approval.decision_recorded",
            approval_id=str(approval_id),
            step_id=str(step_id),
            decision=decision,
            resolution=outcome.get("resolution"),
            actor_id=actor.id,
        )
        return updated

    def apply_bulk(self, decisions: list[Mapping[str, Any]], *, actor: Actor) -> dict[str, Any]:
        """Apply a batch of decisions; one item's failure never aborts the rest.

        Decisions on the same approval run one after another in a single worker
        so they never race each other's version; distinct approvals run in parallel.
        """
        items = list(decisions or [])
        if len(items) > self.max_batch:
            raise ValidationError(
                message=f"Bulk batch of {len(items)} exceeds the limit of {self.max_batch}",
                entity_type=APPROVAL,
                details={"maxBatch": self.max_batch},
            )

        results: list[dict[str, Any]] = [{} for _ in items]

        def _one(i: int) -> None:
            item = items[i]
            base = {"index": i, "approvalId": item.get("approvalId"), "stepId": item.get("stepId")}
            try:
                updated = self.record_decision(
                    str(item.get("approvalId") or ""),
                    str(item.get("partitionKey") or ""),
                    str(item.get("stepId") or ""),
                    str(item.get("decision") or ""),
                    actor=actor,
                    comments=item.get("comments"),
                    bulk=True,
                )
            except ProcurementError as e:
                results[i] = {**base, "success": False, "error": e.to_dict()}
            except Exception as e:  # noqa: BLE001
                log.exception("approval.bulk_item_failed", index=i, approval_id=item.get("approvalId"))
                results[i] = {
                    **base,
                    "success": False,
                    "error": {"error": type(e).__name__, "message": str(e), "retryable": False},
                }
            else:
                results[i] = {
                    **base,
                    "success": True,
                    "status": updated["status"],
                    "version": updated["version"],
                    "error": None,
                }

        def _group(indexes: list[int]) -> None:
            for i in indexes:
                _one(i)

        groups: dict[tuple[str, str], list[int]] = {}
        for i, item in enumerate(items):
            key = (str(item.get("approvalId") or ""), str(item.get("partitionKey") or ""))
            groups.setdefault(key, []).append(i)

        if groups:
            with ThreadPoolExecutor(max_workers=min(self.parallelism, len(groups))) as ex:
                # Each worker runs in a copy of the caller's context so the correlation id follows.
                futures = [ex.submit(copy_context().run, _group, indexes) for indexes in groups.values()]
                for fut in futures:
                    fut.result()

        succeeded = sum(1 for r in results if r.get("success"))
        summary = {
            "processed": len(items),
            "succeeded": succeeded,
            "failed": len(items) - succeeded,
            "results": results,
        }
        log.info(
            "approval.bulk_completed",
            processed=summary["processed"],
            succeeded=summary["succeeded"],
            failed=summary["failed"],
            approvals=len(groups),
            actor_id=actor.id,
        )
        return summary

    # --- chain management ---

    def delegate(
        self,
        approval_id: str,
        partition_key: str,
        step_id: str,
        delegate_to: str,
        *,
        actor: Actor,
        reason: str | None = None,
    ) -> dict[str, Any]:
        target = str(delegate_to or "").strip()
        if not target:
            raise ValidationError(message="delegate_to is required", entity_type=APPROVAL)

        def _mutate(doc: dict[str, Any]) -> None:
            self._ensure_open(doc)
            step = self._find_step(doc, step_id)
            if actor.id not in (step.get("approverId"), step.get("delegatedTo")):
                raise InsufficientPermissionError(
                    message=f"{actor.id} cannot delegate step '{step_id}'",
                    entity_type=APPROVAL,
                    entity_id=str(approval_id),
                    actor_role=actor.role.name,
                )
            if str(step.get("status") or PENDING) != PENDING:
                raise InvalidTransitionError(
                    message=f"Step '{step_id}' was already {step.get('status')}",
                    entity_type=APPROVAL,
                    entity_id=str(approval_id),
                    current_status=str(step.get("status")),
                )
            step["delegatedTo"] = target

        return self.store.update(
            APPROVAL,
            str(approval_id),
            str(partition_key),
            _mutate,
            actor=actor,
            action="delegated",
            details={"stepId": str(step_id), "delegatedTo": target, "reason": reason},
        )

    def escalate(
        self,
        approval_id: str,
        partition_key: str,
        step_id: str,
        escalate_to: str,
        *,
        actor: Actor,
        reason: str | None = None,
    ) -> dict[str, Any]:
        """Reassign a pending step to a higher approver and mark the approval escalated."""
        target = str(escalate_to or "").strip()
        if not target:
            raise ValidationError(message="escalate_to is required", entity_type=APPROVAL)

        def _mutate(doc: dict[str, Any]) -> None:
            self._ensure_open(doc)
            step = self._find_step(doc, step_id)
            allowed = {doc.get("requestedBy"), step.get("approverId"), step.get("delegatedTo")}
            if actor.id not in allowed and not is_admin(actor.role):
                raise InsufficientPermissionError(
                    message=f"{actor.id} cannot escalate step '{step_id}'",
                    entity_type=APPROVAL,
                    entity_id=str(approval_id),
                    actor_role=actor.role.name,
                )
            if str(step.get("status") or PENDING) != PENDING:
                raise InvalidTransitionError(
                    message=f"Step '{step_id}' was already {step.get('status')}",
                    entity_type=APPROVAL,
                    entity_id=str(approval_id),
                    current_status=str(step.get("status")),
                    target_status=ApprovalStatus.ESCALATED.value,
                )
            if target == step.get("approverId"):
                raise ValidationError(
                    message=f"Step '{step_id}' is already assigned to {target}",
                    entity_type=APPROVAL,
                    entity_id=str(approval_id),
                )

            now = self.clock()
            history = list(doc.get("escalationHistory") or [])
            history.append(
                {
                    "stepId": str(step_id),
                    "fromUserId": step.get("delegatedTo") or step.get("approverId"),
                    "toUserId": target,
                    "reason": reason,
                    "timestamp": now,
                    "escalatedBy": actor.id,
                }
            )
            step["approverId"] = target
            step["delegatedTo"] = None
            step["escalated"] = True
            if step.get("assignedAt"):
                # Response time counts from the new assignment.
                step["assignedAt"] = now
            doc["status"] = ApprovalStatus.ESCALATED.value
            doc["escalatedAt"] = now
            doc["escalatedBy"] = actor.id
            doc["escalationReason"] = reason
            doc["escalationHistory"] = history

        updated = self.store.update(
            APPROVAL,
            str(approval_id),
            str(partition_key),
            _mutate,
            actor=actor,
            action="escalated",
            details={"stepId": str(step_id), "toUserId": target, "reason": reason},
        )
        log.info(
            "approval.escalated",
            approval_id=str(approval_id),
            step_id=str(step_id),
            to_user_id=target,
            actor_id=actor.id,
        )
        return updated

    def recall(self, approval_id: str, partition_key: str, *, actor: Actor, reason: str | None = None) -> dict[str, Any]:
        def _mutate(doc: dict[str, Any]) -> None:
            self._ensure_open(doc)
            if actor.id != doc.get("requestedBy"):
                raise InsufficientPermissionError(
                    message="Only the requester can recall an approval",
                    entity_type=APPROVAL,
                    entity_id=str(approval_id),
                    actor_role=actor.role.name,
                )
            doc["status"] = ApprovalStatus.RECALLED.value
            doc["resolvedAt"] = self.clock()

        return self.store.update(
            APPROVAL,
            str(approval_id),
            str(partition_key),
            _mutate,
            actor=actor,
            action="recalled",
            details={"reason": reason},
        )

    # --- queries ---

    def latest_for(self, subject_type: str, subject_id: str) -> dict[str, Any] | None:
        page = self.store.query(
            APPROVAL,
            partition_key=approval_partition_key(entity_type_of(subject_type).value, str(subject_id)),
            page_size=1,
        )
        return page["items"][0] if page["items"] else None

    def is_approved(self, subject_type: str, subject_id: str) -> bool:
        latest = self.latest_for(subject_type, subject_id)
        return bool(latest) and latest.get("status") == ApprovalStatus.APPROVED.value

    @staticmethod
    def chain_for_value(value: float, approvers_by_level: Mapping[str, str]) -> list[dict[str, Any]]:
        """Default approval ladder: manager; then director from 100k; then executive from 1M."""
        v = float(value or 0)
        levels = ["manager"]
        if v >= _MANAGER_LIMIT:
            levels.append("director")
        if v >= _DIRECTOR_LIMIT:
            levels.append("executive")

        steps: list[dict[str, Any]] = []
        for i, level in enumerate(levels):
            approver = str((approvers_by_level or {}).get(level) or "").strip()
            if not approver:
                raise ValidationError(
                    message=f"No approver configured for level '{level}'",
                    entity_type=APPROVAL,
                    details={"level": level, "value": v},
                )
            steps.append({"stepId": level, "approverId": approver, "role": level, "mandatory": True, "priority": i + 1})
        return steps
