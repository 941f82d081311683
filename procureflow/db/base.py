"""
Document table contract.

Every backend stores documents in named collections (one per entity type),
addressed by `(partitionKey, id)`. Writes are conditional: `insert` only
succeeds when the document is absent, `replace` only when the stored version
matches the version the caller read.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, Mapping, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class StoreResponse(Generic[T]):
    resource: T
    request_charge: float = 0.0
    attempts: int = 1


class DocumentTable(ABC):
    """Base document table interface."""

    name: str

    @abstractmethod
    def read(self, *, collection: str, partition_key: str, item_id: str) -> StoreResponse[dict[str, Any] | None]:
        """Point read by (partitionKey, id)."""

    @abstractmethod
    def insert(self, *, collection: str, document: dict[str, Any]) -> StoreResponse[dict[str, Any]]:
        """Insert a new document; raise ConflictError if it already exists."""

    @abstractmethod
    def replace(
        self,
        *,
        collection: str,
        document: dict[str, Any],
        expected_version: int,
    ) -> StoreResponse[dict[str, Any]]:
        """Replace a document only if the stored version equals `expected_version`."""

    @abstractmethod
    def query(
        self,
        *,
        collection: str,
        partition_key: str | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> StoreResponse[list[dict[str, Any]]]:
        """Filtered read within one partition, or across the collection when no partition is given."""
