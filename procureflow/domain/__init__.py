from .entities import (
    EntityType,
    PARTITION_KEYS,
    append_stage,
    entity_type_of,
    immutable_fields_for,
    new_document,
    partition_key_for,
    utcnow_iso,
)
from .rounding import round_half_even
from .snapshots import build_snapshot, is_stale, refresh_snapshots
from .transitions import TABLES, Edge, TransitionTable, table_for

__all__ = [
    "Edge",
    "EntityType",
    "PARTITION_KEYS",
    "TABLES",
    "TransitionTable",
    "append_stage",
    "build_snapshot",
    "entity_type_of",
    "immutable_fields_for",
    "is_stale",
    "new_document",
    "partition_key_for",
    "refresh_snapshots",
    "round_half_even",
    "table_for",
    "utcnow_iso",
]
