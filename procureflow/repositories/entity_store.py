from __future__ import annotations

import copy
from typing import Any, Callable, Mapping

from ..db.base import DocumentTable
from ..domain.entities import (
    append_stage,
    entity_type_of,
    immutable_fields_for,
    new_document,
    utcnow_iso,
)
from ..domain.snapshots import refresh_snapshots
from ..domain.transitions import table_for
from ..errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ProcurementError,
    ValidationError,
)
from ..modules.audit.recorder import AuditTrailRecorder
from ..modules.identity.actor import Actor
from ..observability.logging import get_logger
from ..observability.store_metrics import OperationRecorder

log = get_logger(__name__)

Mutator = Callable[[dict[str, Any]], "dict[str, Any] | None"]

MAX_PAGE_SIZE = 500


class EntityStore:
    """
    Generic create/read/query/update over the document table.

    Every mutation goes through `update`: load current, mutate a deep copy,
    validate immutables and status legality, stamp an audit entry, bump the
    version and replace conditionally on the version that was read.
    """

    def __init__(
        self,
        *,
        table: DocumentTable,
        audit: AuditTrailRecorder,
        recorder: OperationRecorder | None = None,
        clock: Callable[[], str] = utcnow_iso,
    ):
        self.table = table
        self.audit = audit
        self.recorder = recorder or OperationRecorder()
        self.clock = clock

    # --- create ---

    def create(
        self,
        entity_type: Any,
        attributes: Mapping[str, Any],
        *,
        actor: Actor,
        entity_id: str | None = None,
        initial_status: str | None = None,
        snapshots: Mapping[str, Mapping[str, Any]] | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        et = entity_type_of(entity_type)
        workflow = table_for(et)
        status = workflow.initial
        if initial_status is not None and str(getattr(initial_status, "value", initial_status)) != workflow.initial:
            target = str(getattr(initial_status, "value", initial_status))
            # Records may be born one step past the initial status (e.g. a submission
            # that is filed directly), never further.
            if workflow.edge(workflow.initial, target) is None:
                raise ValidationError(
                    message=f"{et.value} cannot be created in status '{target}'",
                    entity_type=et.value,
                )
            status = target

        if entity_id is not None and self.find_by_id(et, str(entity_id)) is not None:
            # Ids are unique per entity type, not just per partition.
            raise ConflictError(
                message=f"{et.value} {entity_id} already exists",
                entity_type=et.value,
                entity_id=str(entity_id),
                retryable=False,
            )

        now = self.clock()
        doc = new_document(et, attributes, status=status, actor_id=actor.id, entity_id=entity_id, now=now)
        append_stage(doc, stage=status, actor_id=actor.id, at=now, notes="created")
        refresh_snapshots(doc, snapshots, captured_at=now)
        entry = self.audit.append(doc, action="created", actor=actor, details={"status": status, **dict(details or {})})

        with self.recorder.track("create", collection=et.value) as sample:
            resp = self.table.insert(collection=et.value, document=doc)
            sample.request_charge = resp.request_charge
        self._persist_audit(doc, entry)

        log.info(
            "store.entity_created",
            entity_type=et.value,
            entity_id=doc["id"],
            partition_key=doc["partitionKey"],
            status=status,
        )
        return doc

    # --- reads ---

    def find_by_id(self, entity_type: Any, entity_id: str, partition_key: str | None = None) -> dict[str, Any] | None:
        et = entity_type_of(entity_type)
        if partition_key:
            with self.recorder.track("read", collection=et.value) as sample:
                resp = self.table.read(collection=et.value, partition_key=partition_key, item_id=str(entity_id))
                sample.request_charge = resp.request_charge
            return resp.resource

        with self.recorder.track("cross_partition_read", collection=et.value) as sample:
            resp = self.table.query(collection=et.value, filters={"id": str(entity_id)})
            sample.request_charge = resp.request_charge
        log.warning(
            "store.cross_partition_read",
            entity_type=et.value,
            entity_id=str(entity_id),
            request_charge=resp.request_charge,
        )
        return resp.resource[0] if resp.resource else None

    def get_required(self, entity_type: Any, entity_id: str, partition_key: str | None = None) -> dict[str, Any]:
        doc = self.find_by_id(entity_type, entity_id, partition_key)
        if doc is None:
            et = entity_type_of(entity_type)
            raise NotFoundError(
                message=f"{et.value} {entity_id} not found",
                entity_type=et.value,
                entity_id=str(entity_id),
                partition_key=partition_key,
            )
        return doc

    def query(
        self,
        entity_type: Any,
        filters: Mapping[str, Any] | None = None,
        *,
        page: int = 1,
        page_size: int = 50,
        partition_key: str | None = None,
        order_by: str = "createdAt",
        descending: bool = True,
    ) -> dict[str, Any]:
        et = entity_type_of(entity_type)
        if int(page) < 1:
            raise ValidationError(message="page must be >= 1", entity_type=et.value)
        if not 1 <= int(page_size) <= MAX_PAGE_SIZE:
            raise ValidationError(message=f"page_size must be between 1 and {MAX_PAGE_SIZE}", entity_type=et.value)

        op = "query" if partition_key else "cross_partition_query"
        with self.recorder.track(op, collection=et.value) as sample:
            resp = self.table.query(collection=et.value, partition_key=partition_key, filters=filters)
            sample.request_charge = resp.request_charge

        items = sorted(
            resp.resource,
            key=lambda d: (str(d.get(order_by) or ""), str(d.get("id") or "")),
            reverse=bool(descending),
        )
        start = (int(page) - 1) * int(page_size)
        return {
            "items": items[start : start + int(page_size)],
            "total": len(items),
            "page": int(page),
            "pageSize": int(page_size),
        }

    # --- mutations ---

    def update(
        self,
        entity_type: Any,
        entity_id: str,
        partition_key: str,
        mutator: Mutator,
        *,
        actor: Actor,
        action: str = "updated",
        details: Mapping[str, Any] | None = None,
        snapshots: Mapping[str, Mapping[str, Any]] | None = None,
        expected_version: int | None = None,
        override: bool = False,
    ) -> dict[str, Any]:
        et = entity_type_of(entity_type)
        workflow = table_for(et)
        current = self.get_required(et, entity_id, partition_key)
        read_version = int(current.get("version") or 0)

        if expected_version is not None and int(expected_version) != read_version:
            raise ConflictError(
                message=f"{et.value} {entity_id} changed since it was read",
                entity_type=et.value,
                entity_id=str(entity_id),
                retryable=True,
                expected_version=int(expected_version),
                actual_version=read_version,
            )

        draft = copy.deepcopy(current)
        out = mutator(draft)
        if out is not None:
            draft = out

        for f in immutable_fields_for(et):
            if draft.get(f) != current.get(f):
                raise ValidationError(
                    message=f"'{f}' is immutable on {et.value}",
                    entity_type=et.value,
                    entity_id=str(entity_id),
                    details={"field": f},
                )

        old_status = str(current.get("status") or "")
        new_status = str(getattr(draft.get("status"), "value", draft.get("status")) or "")
        draft["status"] = new_status
        if new_status != old_status:
            if not workflow.is_known(new_status):
                raise ValidationError(
                    message=f"Unknown {et.value} status '{new_status}'",
                    entity_type=et.value,
                    entity_id=str(entity_id),
                )
            if not override and workflow.edge(old_status, new_status) is None:
                reason = "is terminal" if workflow.is_terminal(old_status) else "has no such transition"
                raise InvalidTransitionError(
                    message=f"{et.value} {entity_id}: '{old_status}' {reason} (to '{new_status}')",
                    entity_type=et.value,
                    entity_id=str(entity_id),
                    current_status=old_status,
                    target_status=new_status,
                )
            if (draft.get("lifecycle") or {}).get("currentStage") != new_status:
                append_stage(draft, stage=new_status, actor_id=actor.id, at=self.clock())

        # Heal any log entry a previous write committed but failed to persist,
        # so the new entry never links to a fingerprint missing from the log.
        self.audit.reconcile(current)

        now = self.clock()
        draft["version"] = read_version + 1
        draft["updatedAt"] = now
        refresh_snapshots(draft, snapshots, captured_at=now)
        entry = self.audit.append(draft, action=action, actor=actor, details=details, previous=current)

        with self.recorder.track("replace", collection=et.value) as sample:
            try:
                resp = self.table.replace(collection=et.value, document=draft, expected_version=read_version)
            except ConflictError as e:
                if e.expected_version is None:
                    e.expected_version = read_version
                e.entity_type = e.entity_type or et.value
                e.entity_id = e.entity_id or str(entity_id)
                raise
            sample.request_charge = resp.request_charge
        self._persist_audit(draft, entry)

        log.info(
            "store.entity_updated",
            entity_type=et.value,
            entity_id=str(entity_id),
            action=action,
            version=draft["version"],
            status=new_status,
        )
        return draft

    def _persist_audit(self, doc: dict[str, Any], entry: Mapping[str, Any]) -> None:
        # The entity write has committed; the entry is already embedded in `doc`
        # and the next update backfills it through `AuditTrailRecorder.reconcile`.
        try:
            self.audit.persist(doc, entry)
        except ProcurementError as e:
            log.warning(
                "store.audit_persist_deferred",
                entity_type=doc.get("entityType"),
                entity_id=doc.get("id"),
                sequence=entry.get("sequence"),
                error=e.message,
                error_type=type(e).__name__,
            )

    def reconcile_audit(self, entity_type: Any, entity_id: str, partition_key: str) -> list[dict[str, Any]]:
        """Backfill the audit log for one entity from its embedded trail."""
        return self.audit.reconcile(self.get_required(entity_type, entity_id, partition_key))

    def soft_delete(
        self,
        entity_type: Any,
        entity_id: str,
        partition_key: str,
        *,
        actor: Actor,
        reason: str | None = None,
    ) -> dict[str, Any]:
        et = entity_type_of(entity_type)
        target = table_for(et).deletion_status

        def _mutate(doc: dict[str, Any]) -> None:
            doc["status"] = target
            doc["deletedAt"] = self.clock()
            doc["deletedBy"] = actor.id
            append_stage(doc, stage=target, actor_id=actor.id, at=doc["deletedAt"], notes=reason)

        return self.update(
            et,
            entity_id,
            partition_key,
            _mutate,
            actor=actor,
            action="deleted",
            details={"reason": reason, "status": target},
        )

    def record_activity(
        self,
        entity_type: Any,
        entity_id: str,
        partition_key: str,
        *,
        actor: Actor,
        activity: str,
        details: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Audited no-op write, e.g. a document download or export."""
        return self.update(
            entity_type,
            entity_id,
            partition_key,
            lambda doc: None,
            actor=actor,
            action="activity",
            details={"activity": activity, **dict(details or {})},
        )
