from __future__ import annotations

from typing import Any, Callable, Mapping, Protocol

from ...domain.entities import append_stage, entity_type_of, utcnow_iso
from ...domain.transitions import PROCUREMENT_STAGE_PROGRESS, Edge, table_for
from ...errors import (
    ApprovalPendingError,
    InsufficientPermissionError,
    InvalidTransitionError,
    ValidationError,
)
from ...observability.logging import get_logger
from ...repositories.entity_store import EntityStore
from ..identity.actor import Actor
from ..identity.roles import Role, has_at_least

log = get_logger(__name__)


class ApprovalGate(Protocol):
    def is_approved(self, subject_type: str, subject_id: str) -> bool: ...


class Notifier(Protocol):
    def notify(self, event: dict[str, Any]) -> None: ...


class DocumentGenerator(Protocol):
    def generate(self, entity: dict[str, Any], event: dict[str, Any]) -> Any: ...


def _status_value(status: Any) -> str:
    return str(getattr(status, "value", status) or "")


class WorkflowStateMachine:
    """Moves entities along their status graph, one audited edge at a time."""

    def __init__(
        self,
        *,
        store: EntityStore,
        approval_gate: ApprovalGate | None = None,
        notifier: Notifier | None = None,
        document_generator: DocumentGenerator | None = None,
        clock: Callable[[], str] = utcnow_iso,
    ):
        self.store = store
        self.approval_gate = approval_gate
        self.notifier = notifier
        self.document_generator = document_generator
        self.clock = clock

    def _check_edge(self, entity: Mapping[str, Any], target: str, actor: Actor) -> Edge:
        et = entity_type_of(entity.get("entityType"))
        workflow = table_for(et)
        current = str(entity.get("status") or "")
        entity_id = str(entity.get("id") or "")

        if workflow.is_terminal(current):
            raise InvalidTransitionError(
                message=f"{et.value} {entity_id} is in terminal status '{current}'",
                entity_type=et.value,
                entity_id=entity_id,
                current_status=current,
                target_status=target,
            )
        edge = workflow.edge(current, target)
        if edge is None:
            raise InvalidTransitionError(
                message=f"{et.value} cannot move from '{current}' to '{target}'",
                entity_type=et.value,
                entity_id=entity_id,
                current_status=current,
                target_status=target,
                details={"allowed": workflow.targets(current)},
            )
        if not has_at_least(actor.role, edge.min_role):
            raise InsufficientPermissionError(
                message=f"{edge.min_role.name} or higher is required to move {et.value} to '{target}'",
                entity_type=et.value,
                entity_id=entity_id,
                required_role=edge.min_role.name,
                actor_role=actor.role.name,
            )
        if edge.requires_approval:
            approved = self.approval_gate is not None and self.approval_gate.is_approved(et.value, entity_id)
            if not approved:
                raise ApprovalPendingError(
                    message=f"{et.value} {entity_id} needs an approved chain before '{target}'",
                    entity_type=et.value,
                    entity_id=entity_id,
                    current_status=current,
                    target_status=target,
                )
        return edge

    def transition(
        self,
        entity: Mapping[str, Any],
        target_status: Any,
        *,
        actor: Actor,
        notes: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        target = _status_value(target_status)
        edge = self._check_edge(entity, target, actor)
        et = entity_type_of(entity.get("entityType"))

        def _mutate(doc: dict[str, Any]) -> None:
            doc["status"] = target
            append_stage(doc, stage=target, actor_id=actor.id, at=self.clock(), notes=notes)

        updated = self.store.update(
            et,
            str(entity["id"]),
            str(entity["partitionKey"]),
            _mutate,
            actor=actor,
            action="status_changed",
            details={"from": edge.source, "to": edge.target, "notes": notes, **dict(details or {})},
            expected_version=int(entity.get("version") or 0),
        )
        log.info(
            "workflow.transition",
            entity_type=et.value,
            entity_id=updated["id"],
            from_status=edge.source,
            to_status=edge.target,
            actor_id=actor.id,
            version=updated["version"],
        )

        event = {
            "type": "status_changed",
            "entityType": et.value,
            "entityId": updated["id"],
            "from": edge.source,
            "to": edge.target,
            "actorId": actor.id,
            "publishes": edge.publishes,
        }
        self._dispatch(event, updated, publishes=edge.publishes)
        return updated

    def _dispatch(self, event: dict[str, Any], entity: dict[str, Any], *, publishes: bool) -> None:
        # Side channels after a committed write: failures are logged, never raised.
        if self.notifier is not None:
            try:
                self.notifier.notify(event)
            except Exception as e:  # noqa: BLE001
                log.warning(
                    "workflow.notification_failed",
                    entity_type=event["entityType"],
                    entity_id=event["entityId"],
                    error=str(e),
                    error_type=type(e).__name__,
                )
        if publishes and self.document_generator is not None:
            try:
                self.document_generator.generate(entity, event)
            except Exception as e:  # noqa: BLE001
                log.warning(
                    "workflow.document_generation_failed",
                    entity_type=event["entityType"],
                    entity_id=event["entityId"],
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def allowed_targets(self, entity_type: Any, status: Any, actor: Actor | None = None) -> list[str]:
        workflow = table_for(entity_type)
        current = _status_value(status)
        out: list[str] = []
        for target in workflow.targets(current):
            edge = workflow.edge(current, target)
            if actor is None or (edge is not None and has_at_least(actor.role, edge.min_role)):
                out.append(target)
        return out

    def override(
        self,
        entity: Mapping[str, Any],
        target_status: Any,
        *,
        actor: Actor,
        reason: str,
    ) -> dict[str, Any]:
        """Administrative move to any known status, including out of a terminal one."""
        et = entity_type_of(entity.get("entityType"))
        target = _status_value(target_status)
        if actor.role != Role.ADMIN:
            raise InsufficientPermissionError(
                message="Administrative override requires ADMIN",
                entity_type=et.value,
                entity_id=str(entity.get("id") or ""),
                required_role=Role.ADMIN.name,
                actor_role=actor.role.name,
            )
        if not str(reason or "").strip():
            raise ValidationError(message="An override requires a reason", entity_type=et.value)
        if not table_for(et).is_known(target):
            raise ValidationError(message=f"Unknown {et.value} status '{target}'", entity_type=et.value)

        source = str(entity.get("status") or "")

        def _mutate(doc: dict[str, Any]) -> None:
            doc["status"] = target
            append_stage(doc, stage=target, actor_id=actor.id, at=self.clock(), notes=f"override: {reason}")

        updated = self.store.update(
            et,
            str(entity["id"]),
            str(entity["partitionKey"]),
            _mutate,
            actor=actor,
            action="admin_override",
            details={"from": source, "to": target, "reason": reason, "override": True},
            expected_version=int(entity.get("version") or 0),
            override=True,
        )
        log.warning(
            "workflow.admin_override",
            entity_type=et.value,
            entity_id=updated["id"],
            from_status=source,
            to_status=target,
            actor_id=actor.id,
        )
        return updated

    @staticmethod
    def stage_progress(procurement: Mapping[str, Any]) -> dict[str, Any]:
        status = str(procurement.get("status") or "")
        workflow = table_for("Procurement")
        return {
            "status": status,
            "progress": PROCUREMENT_STAGE_PROGRESS.get(status, 0),
            "next": [t for t in workflow.targets(status) if t != workflow.deletion_status],
            "terminal": workflow.is_terminal(status),
        }
