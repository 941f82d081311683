from __future__ import annotations

import uuid
from enum import Enum
from typing import Any, Callable, Mapping

from ...db.base import DocumentTable
from ...domain.entities import EntityType, utcnow_iso
from ...errors import ConflictError, IntegrityError
from ...observability.context import get_correlation_id
from ...observability.logging import get_logger
from ...observability.store_metrics import OperationRecorder
from ..identity.actor import Actor
from .fingerprint import compute_fingerprint
from .risk import risk_level

log = get_logger(__name__)

AUDIT_COLLECTION = EntityType.AUDIT_LOG_ENTRY.value

# Bookkeeping fields that change on every write; never reported as changes.
_UNTRACKED = frozenset({"version", "updatedAt", "metadata"})


def _json_safe(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(v) for v in value]
    return value


def changed_fields(before: Mapping[str, Any] | None, after: Mapping[str, Any]) -> list[str]:
    if before is None:
        return []
    keys = (set(before) | set(after)) - _UNTRACKED
    return sorted(k for k in keys if before.get(k) != after.get(k))


def audit_partition_key(entity_type: str, entity_id: str) -> str:
    return f"{entity_type}|{entity_id}"


class AuditTrailRecorder:
    """
    Append-only change history per entity.

    Each entry is chained to the previous one by `prevFingerprint`, and its
    own `integrityFingerprint` is the SHA-256 of its canonical JSON. The most
    recent entries are embedded in `metadata.auditTrail`; the complete history
    goes to the audit log collection, one document per entity version.
    """

    def __init__(
        self,
        *,
        table: DocumentTable,
        embedded_limit: int = 20,
        recorder: OperationRecorder | None = None,
        clock: Callable[[], str] = utcnow_iso,
    ):
        self.table = table
        self.embedded_limit = max(1, int(embedded_limit))
        self.recorder = recorder or OperationRecorder()
        self.clock = clock

    def append(
        self,
        doc: dict[str, Any],
        *,
        action: str,
        actor: Actor,
        details: Mapping[str, Any] | None = None,
        previous: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Stamp a new entry into `doc`'s embedded trail and return it.

        `doc` must already carry the version it is about to be written with.
        The entry is persisted to the full log with `persist` once that write
        has succeeded.
        """
        meta = doc.setdefault("metadata", {})
        trail = list(meta.get("auditTrail") or [])
        prev_fp = str(trail[-1].get("integrityFingerprint") or "") if trail else ""

        safe_details = _json_safe(dict(details or {}))
        entry: dict[str, Any] = {
            "entryId": f"aud_{uuid.uuid4().hex[:20]}",
            "sequence": int(doc.get("version") or 1),
            "action": str(action),
            "actor": actor.to_audit(),
            "timestamp": self.clock(),
            "details": safe_details,
            "changes": changed_fields(previous, doc),
            "riskLevel": risk_level(action, str(doc.get("entityType") or ""), safe_details),
            "correlationId": get_correlation_id(),
            "prevFingerprint": prev_fp,
        }
        entry["integrityFingerprint"] = compute_fingerprint(entry, prev_fingerprint=prev_fp)

        trail.append(entry)
        meta["auditTrail"] = trail[-self.embedded_limit :]
        meta["auditCount"] = int(meta.get("auditCount") or 0) + 1
        meta["lastActivity"] = entry["timestamp"]
        return entry

    def persist(self, doc: Mapping[str, Any], entry: Mapping[str, Any]) -> dict[str, Any]:
        subject_type = str(doc.get("entityType") or "")
        subject_id = str(doc.get("id") or "")
        record = {
            **dict(entry),
            "id": entry["entryId"],
            "entityType": AUDIT_COLLECTION,
            "partitionKey": audit_partition_key(subject_type, subject_id),
            "subjectType": subject_type,
            "subjectId": subject_id,
            "createdAt": entry["timestamp"],
        }
        with self.recorder.track("audit_persist", collection=AUDIT_COLLECTION) as sample:
            resp = self.table.insert(collection=AUDIT_COLLECTION, document=record)
            sample.request_charge = resp.request_charge
        return resp.resource

    def reconcile(self, doc: Mapping[str, Any]) -> list[dict[str, Any]]:
        """Backfill log entries that are embedded in `doc` but missing from the audit log.

        A committed entity write whose log insert failed leaves its entry only in
        `metadata.auditTrail`; this copies such entries into the log so the chain
        stays complete. Returns the entries written.
        """
        meta = doc.get("metadata") or {}
        trail = list(meta.get("auditTrail") or [])
        if not trail:
            return []
        subject_type = str(doc.get("entityType") or "")
        subject_id = str(doc.get("id") or "")
        oldest = int(trail[0].get("sequence") or 0)

        with self.recorder.track("audit_reconcile", collection=AUDIT_COLLECTION) as sample:
            resp = self.table.query(
                collection=AUDIT_COLLECTION,
                partition_key=audit_partition_key(subject_type, subject_id),
                filters={"sequence": {"gte": oldest}},
            )
            sample.request_charge = resp.request_charge
        logged = {int(e.get("sequence") or 0) for e in resp.resource}

        written: list[dict[str, Any]] = []
        for entry in trail:
            if int(entry.get("sequence") or 0) in logged:
                continue
            try:
                self.persist(doc, entry)
            except ConflictError:
                # Another writer backfilled it first.
                continue
            written.append(dict(entry))
        if written:
            log.warning(
                "audit.log_backfilled",
                entity_type=subject_type,
                entity_id=subject_id,
                sequences=[e["sequence"] for e in written],
            )
        return written

    def get_history(self, entity_type: str, entity_id: str) -> list[dict[str, Any]]:
        """Complete chronological history from the audit log, independent of embedded truncation."""
        with self.recorder.track("audit_history", collection=AUDIT_COLLECTION) as sample:
            resp = self.table.query(
                collection=AUDIT_COLLECTION,
                partition_key=audit_partition_key(str(entity_type), str(entity_id)),
            )
            sample.request_charge = resp.request_charge
        return sorted(resp.resource, key=lambda e: int(e.get("sequence") or 0))

    @staticmethod
    def _verify_chain(entries: list[Mapping[str, Any]], *, anchored: bool, entity_type: str | None, entity_id: str | None) -> dict[str, Any]:
        prev_fp: str | None = "" if anchored else None
        prev_seq = 0
        for e in entries:
            seq = int(e.get("sequence") or 0)
            stored_prev = str(e.get("prevFingerprint") or "")
            if seq <= prev_seq:
                raise IntegrityError(
                    message=f"Audit sequence out of order at {seq}",
                    entity_type=entity_type,
                    entity_id=entity_id,
                    sequence=seq,
                    details={"reason": "sequence_out_of_order"},
                )
            if prev_fp is not None and stored_prev != prev_fp:
                raise IntegrityError(
                    message=f"Audit chain broken at sequence {seq}",
                    entity_type=entity_type,
                    entity_id=entity_id,
                    sequence=seq,
                    details={"reason": "prev_fingerprint_mismatch"},
                )
            entry = {k: e.get(k) for k in _ENTRY_FIELDS}
            expected = compute_fingerprint(entry, prev_fingerprint=stored_prev)
            actual = str(e.get("integrityFingerprint") or "")
            if actual != expected:
                raise IntegrityError(
                    message=f"Audit fingerprint mismatch at sequence {seq}",
                    entity_type=entity_type,
                    entity_id=entity_id,
                    sequence=seq,
                    details={"reason": "fingerprint_mismatch"},
                )
            prev_fp = actual
            prev_seq = seq
        return {"valid": True, "checkedCount": len(entries), "lastFingerprint": prev_fp or ""}

    def verify_history(self, entity_type: str, entity_id: str) -> dict[str, Any]:
        entries = self.get_history(entity_type, entity_id)
        result = self._verify_chain(entries, anchored=True, entity_type=str(entity_type), entity_id=str(entity_id))
        log.info("audit.history_verified", entity_type=str(entity_type), entity_id=str(entity_id), checked=len(entries))
        return result

    def verify_embedded(self, doc: Mapping[str, Any]) -> dict[str, Any]:
        meta = doc.get("metadata") or {}
        trail = list(meta.get("auditTrail") or [])
        # A truncated trail cannot vouch for the link into its first entry.
        anchored = int(meta.get("auditCount") or 0) <= len(trail)
        return self._verify_chain(
            trail,
            anchored=anchored,
            entity_type=str(doc.get("entityType") or "") or None,
            entity_id=str(doc.get("id") or "") or None,
        )


_ENTRY_FIELDS = (
    "entryId",
    "sequence",
    "action",
    "actor",
    "timestamp",
    "details",
    "changes",
    "riskLevel",
    "correlationId",
    "prevFingerprint",
)
