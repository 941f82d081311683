"""
Embedded snapshots: denormalized copies of related entities.

A snapshot is a cached projection, `{...fields, sourceVersion, capturedAt}`.
Readers never assume it is fresh; a write that is handed the current source
re-embeds it when the source version moved.
"""

from __future__ import annotations

from typing import Any, Mapping

from .entities import EntityType, entity_type_of

SNAPSHOT_FIELDS: dict[EntityType, tuple[str, ...]] = {
    EntityType.PROCUREMENT: ("id", "title", "department", "status", "estimatedValue"),
    EntityType.RFQ: ("id", "title", "rfqNumber", "status", "closingDate", "procurementId"),
    EntityType.SUBMISSION: ("id", "vendorId", "vendorName", "status", "price", "submittedAt"),
    EntityType.EVALUATION: ("id", "evaluatorId", "status", "technicalScore"),
    EntityType.APPROVAL: ("id", "subjectType", "subjectId", "status"),
    EntityType.AWARD: ("id", "vendorId", "awardedAmount", "status"),
    EntityType.CONTRACT: ("id", "vendorId", "contractValue", "status"),
    EntityType.PLAN: ("id", "title", "status"),
    EntityType.CLARIFICATION: ("id", "question", "status"),
    EntityType.TEMPLATE: ("id", "name", "templateType", "status"),
}


def build_snapshot(source: Mapping[str, Any], *, captured_at: str) -> dict[str, Any]:
    fields = SNAPSHOT_FIELDS.get(entity_type_of(source.get("entityType")), ("id", "status"))
    snap = {f: source.get(f) for f in fields if f in source}
    snap["sourceVersion"] = int(source.get("version") or 0)
    snap["capturedAt"] = captured_at
    return snap


def is_stale(snapshot: Mapping[str, Any] | None, source: Mapping[str, Any]) -> bool:
    if not snapshot:
        return True
    return int(snapshot.get("sourceVersion") or 0) != int(source.get("version") or 0)


def refresh_snapshots(
    doc: dict[str, Any],
    sources: Mapping[str, Mapping[str, Any]] | None,
    *,
    captured_at: str,
) -> list[str]:
    """Re-embed each `doc[field]` whose source version differs. Returns the refreshed fields."""
    refreshed: list[str] = []
    for field_name, source in (sources or {}).items():
        if source and is_stale(doc.get(field_name), source):
            doc[field_name] = build_snapshot(source, captured_at=captured_at)
            refreshed.append(field_name)
    return refreshed
