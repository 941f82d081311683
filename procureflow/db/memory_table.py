from __future__ import annotations

import copy
import threading
from typing import Any, Mapping

from ..errors import ConflictError, ValidationError
from .base import DocumentTable, StoreResponse
from .filters import matches


class MemoryTable(DocumentTable):
    """In-process document table with the same conditional-write contract as DynamoDB.

    Documents are deep-copied on the way in and out so callers never share
    mutable state with the table.
    """

    def __init__(self, *, name: str = "memory"):
        self.name = str(name)
        self._lock = threading.Lock()
        # collection -> (partitionKey, id) -> document
        self._data: dict[str, dict[tuple[str, str], dict[str, Any]]] = {}

    @staticmethod
    def _key(document: Mapping[str, Any]) -> tuple[str, str]:
        pk = str(document.get("partitionKey") or "").strip()
        item_id = str(document.get("id") or "").strip()
        if not pk or not item_id:
            raise ValidationError(message="Document requires id and partitionKey")
        return pk, item_id

    def read(self, *, collection: str, partition_key: str, item_id: str) -> StoreResponse[dict[str, Any] | None]:
        with self._lock:
            doc = self._data.get(collection, {}).get((str(partition_key), str(item_id)))
            return StoreResponse(resource=copy.deepcopy(doc) if doc is not None else None, request_charge=1.0)

    def insert(self, *, collection: str, document: dict[str, Any]) -> StoreResponse[dict[str, Any]]:
        key = self._key(document)
        with self._lock:
            bucket = self._data.setdefault(collection, {})
            if key in bucket:
                raise ConflictError(
                    message=f"{collection} {key[1]} already exists in partition {key[0]}",
                    entity_type=collection,
                    entity_id=key[1],
                    retryable=False,
                )
            bucket[key] = copy.deepcopy(document)
        return StoreResponse(resource=copy.deepcopy(document), request_charge=1.0)

    def replace(
        self,
        *,
        collection: str,
        document: dict[str, Any],
        expected_version: int,
    ) -> StoreResponse[dict[str, Any]]:
        key = self._key(document)
        with self._lock:
            bucket = self._data.setdefault(collection, {})
            current = bucket.get(key)
            actual = current.get("version") if current is not None else None
            if current is None or actual != expected_version:
                raise ConflictError(
                    message=f"{collection} {key[1]} was modified concurrently",
                    entity_type=collection,
                    entity_id=key[1],
                    retryable=True,
                    expected_version=expected_version,
                    actual_version=actual,
                )
            bucket[key] = copy.deepcopy(document)
        return StoreResponse(resource=copy.deepcopy(document), request_charge=1.0)

    def query(
        self,
        *,
        collection: str,
        partition_key: str | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> StoreResponse[list[dict[str, Any]]]:
        with self._lock:
            docs = [
                d
                for (pk, _), d in self._data.get(collection, {}).items()
                if partition_key is None or pk == partition_key
            ]
            out = [copy.deepcopy(d) for d in docs if matches(d, filters)]
        # A cross-partition read touches the whole collection.
        charge = float(len(docs)) if partition_key is None else max(1.0, float(len(out)))
        return StoreResponse(resource=out, request_charge=charge)
