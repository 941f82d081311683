"""
Entity types, partition keys and the canonical persisted record shape.

Every record is routed to a partition by two of its own attributes,
`{first}|{second}`. The key is computed once, at creation, and never
recomputed: the attributes it was built from become immutable.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from ..errors import ValidationError

PARTITION_SEPARATOR = "|"


class EntityType(str, Enum):
    PROCUREMENT = "Procurement"
    RFQ = "RFQ"
    SUBMISSION = "Submission"
    EVALUATION = "Evaluation"
    APPROVAL = "Approval"
    AWARD = "Award"
    CONTRACT = "Contract"
    PLAN = "Plan"
    CLARIFICATION = "Clarification"
    TEMPLATE = "Template"
    AUDIT_LOG_ENTRY = "AuditLogEntry"


def entity_type_of(value: Any) -> EntityType:
    if isinstance(value, EntityType):
        return value
    s = str(value or "").strip()
    for et in EntityType:
        if s == et.value or s.lower() == et.value.lower() or s.upper() == et.name:
            return et
    raise ValidationError(message=f"Unknown entity type '{s}'")


@dataclass(frozen=True, slots=True)
class PartitionKeySpec:
    first: str
    second: str
    first_default: str | None = None
    second_default: str | None = None

    @property
    def attributes(self) -> tuple[str, str]:
        return (self.first, self.second)


PARTITION_KEYS: dict[EntityType, PartitionKeySpec] = {
    EntityType.PROCUREMENT: PartitionKeySpec("department", "createdBy"),
    EntityType.RFQ: PartitionKeySpec("procurementId", "department", second_default="general"),
    EntityType.SUBMISSION: PartitionKeySpec("rfqId", "vendorId"),
    EntityType.EVALUATION: PartitionKeySpec("submissionId", "evaluatorId"),
    EntityType.APPROVAL: PartitionKeySpec("subjectType", "subjectId"),
    EntityType.AWARD: PartitionKeySpec("rfqId", "vendorId", second_default="unknown"),
    EntityType.CONTRACT: PartitionKeySpec("vendorId", "awardId"),
    EntityType.PLAN: PartitionKeySpec("procurementId", "department", second_default="general"),
    EntityType.CLARIFICATION: PartitionKeySpec("rfqId", "vendorId"),
    EntityType.TEMPLATE: PartitionKeySpec("templateType", "category"),
    EntityType.AUDIT_LOG_ENTRY: PartitionKeySpec("subjectType", "subjectId"),
}

# Never change after creation. The two partition attributes of each type are added per type.
IMMUTABLE_FIELDS = ("id", "entityType", "type", "partitionKey", "createdAt", "createdBy")


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id() -> str:
    return str(uuid.uuid4())


def _partition_part(entity_type: EntityType, attrs: Mapping[str, Any], name: str, default: str | None) -> str:
    raw = attrs.get(name)
    value = str(raw).strip() if raw is not None else ""
    if not value:
        if default is None:
            raise ValidationError(
                message=f"{entity_type.value} requires '{name}' to compute its partition key",
                entity_type=entity_type.value,
            )
        value = default
    if PARTITION_SEPARATOR in value:
        raise ValidationError(
            message=f"'{name}' must not contain '{PARTITION_SEPARATOR}'",
            entity_type=entity_type.value,
            details={"field": name},
        )
    return value


def partition_key_for(entity_type: Any, attrs: Mapping[str, Any]) -> str:
    et = entity_type_of(entity_type)
    spec = PARTITION_KEYS[et]
    first = _partition_part(et, attrs, spec.first, spec.first_default)
    second = _partition_part(et, attrs, spec.second, spec.second_default)
    return f"{first}{PARTITION_SEPARATOR}{second}"


def immutable_fields_for(entity_type: Any) -> tuple[str, ...]:
    et = entity_type_of(entity_type)
    return IMMUTABLE_FIELDS + PARTITION_KEYS[et].attributes


def new_document(
    entity_type: Any,
    attributes: Mapping[str, Any],
    *,
    status: str,
    actor_id: str,
    entity_id: str | None = None,
    now: str | None = None,
) -> dict[str, Any]:
    """Build the version-1 record for a new entity. Audit fields are stamped by the caller."""
    et = entity_type_of(entity_type)
    attrs = dict(attributes or {})
    for reserved in ("id", "entityType", "type", "partitionKey", "version", "status", "createdAt", "updatedAt"):
        attrs.pop(reserved, None)

    spec = PARTITION_KEYS[et]
    # Defaults used for the key are persisted so the key stays a function of the record.
    if not str(attrs.get(spec.first) or "").strip() and spec.first_default:
        attrs[spec.first] = spec.first_default
    if not str(attrs.get(spec.second) or "").strip() and spec.second_default:
        attrs[spec.second] = spec.second_default
    attrs.setdefault("createdBy", actor_id)

    pk = partition_key_for(et, attrs)
    ts = now or utcnow_iso()
    metadata = dict(attrs.pop("metadata", None) or {})
    metadata.setdefault("department", attrs.get("department"))
    metadata.setdefault("category", attrs.get("category"))
    metadata.setdefault("tags", [])
    metadata["lastActivity"] = ts
    metadata["auditTrail"] = []
    metadata["auditCount"] = 0

    doc: dict[str, Any] = {
        **attrs,
        "id": str(entity_id or new_id()),
        "entityType": et.value,
        "type": et.value.lower(),
        "partitionKey": pk,
        "status": str(status),
        "version": 1,
        "createdAt": ts,
        "updatedAt": ts,
        "lifecycle": {"currentStage": str(status), "stages": []},
        "metadata": metadata,
    }
    return doc


def append_stage(doc: dict[str, Any], *, stage: str, actor_id: str, at: str, notes: str | None = None) -> None:
    lifecycle = doc.setdefault("lifecycle", {"currentStage": stage, "stages": []})
    stages = lifecycle.setdefault("stages", [])
    stages.append({"stage": str(stage), "completedAt": at, "completedBy": actor_id, "notes": notes})
    lifecycle["currentStage"] = str(stage)
