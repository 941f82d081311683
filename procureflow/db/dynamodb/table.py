from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping

from boto3.dynamodb.conditions import Key

from ...errors import ValidationError
from ..base import DocumentTable, StoreResponse
from ..filters import to_condition
from ..retry import RetryPolicy, store_call

TYPE_INDEX = "GSI1"

# Collections keyed by sequence number instead of id.
SEQUENCE_COLLECTIONS = frozenset({"AuditLogEntry"})

_KEY_ATTRS = ("pk", "sk", "gsi1pk", "gsi1sk")


def to_ddb(value: Any) -> Any:
    """Convert floats (recursively) into Decimals; boto3 rejects Python floats."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, Mapping):
        return {k: to_ddb(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_ddb(v) for v in value]
    return value


def from_ddb(value: Any) -> Any:
    if isinstance(value, Decimal):
        if value == value.to_integral_value() and value.as_tuple().exponent >= 0:
            return int(value)
        return float(value)
    if isinstance(value, Mapping):
        return {k: from_ddb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_ddb(v) for v in value]
    if isinstance(value, set):
        return {from_ddb(v) for v in value}
    return value


def _consumed(resp: Mapping[str, Any] | None) -> float:
    cap = (resp or {}).get("ConsumedCapacity") or {}
    try:
        return float(cap.get("CapacityUnits") or 0.0)
    except (TypeError, ValueError):
        return 0.0


def entity_pk(collection: str, partition_key: str) -> str:
    return f"{str(collection).upper()}#{partition_key}"


def entity_sk(collection: str, document: Mapping[str, Any]) -> str:
    if collection in SEQUENCE_COLLECTIONS:
        try:
            seq = int(document.get("sequence"))
        except (TypeError, ValueError) as e:
            raise ValidationError(message=f"{collection} document requires an integer sequence") from e
        return f"SEQ#{seq:010d}"
    return f"ID#{document.get('id')}"


class DynamoTable(DocumentTable):
    """Single-table DynamoDB layout.

    pk     = {ENTITYTYPE}#{partitionKey}
    sk     = ID#{id}           (audit log: SEQ#{sequence:010d})
    gsi1pk = TYPE#{entityType}
    gsi1sk = {createdAt}#{id}
    """

    def __init__(self, *, table_name: str, resource: Any, retry_policy: RetryPolicy | None = None):
        self.name = str(table_name)
        self.table_name = self.name
        self._table = resource.Table(self.table_name)
        self.retry_policy = retry_policy or RetryPolicy()

    def _item(self, collection: str, document: Mapping[str, Any]) -> dict[str, Any]:
        pk = str(document.get("partitionKey") or "").strip()
        if not pk or not str(document.get("id") or "").strip():
            raise ValidationError(message="Document requires id and partitionKey", entity_type=collection)
        item = dict(to_ddb(dict(document)))
        item["pk"] = entity_pk(collection, pk)
        item["sk"] = entity_sk(collection, document)
        item["gsi1pk"] = f"TYPE#{collection}"
        item["gsi1sk"] = f"{document.get('createdAt') or ''}#{document.get('id')}"
        return item

    @staticmethod
    def _document(item: Mapping[str, Any] | None) -> dict[str, Any] | None:
        if not item:
            return None
        return {k: from_ddb(v) for k, v in item.items() if k not in _KEY_ATTRS}

    def read(self, *, collection: str, partition_key: str, item_id: str) -> StoreResponse[dict[str, Any] | None]:
        key = {"pk": entity_pk(collection, partition_key), "sk": f"ID#{item_id}"}

        def _op():
            return self._table.get_item(Key=key, ReturnConsumedCapacity="TOTAL")

        resp = store_call(
            "GetItem", _op, collection=collection, key={"id": item_id, **key}, retry_policy=self.retry_policy
        )
        return StoreResponse(resource=self._document(resp.get("Item")), request_charge=_consumed(resp))

    def insert(self, *, collection: str, document: dict[str, Any]) -> StoreResponse[dict[str, Any]]:
        item = self._item(collection, document)

        def _op():
            return self._table.put_item(
                Item=item,
                ConditionExpression="attribute_not_exists(pk) AND attribute_not_exists(sk)",
                ReturnConsumedCapacity="TOTAL",
            )

        resp = store_call(
            "PutItem",
            _op,
            collection=collection,
            key={"id": document.get("id"), "pk": item["pk"], "sk": item["sk"]},
            retry_policy=self.retry_policy,
        )
        return StoreResponse(resource=dict(document), request_charge=_consumed(resp))

    def replace(
        self,
        *,
        collection: str,
        document: dict[str, Any],
        expected_version: int,
    ) -> StoreResponse[dict[str, Any]]:
        item = self._item(collection, document)

        def _op():
            return self._table.put_item(
                Item=item,
                ConditionExpression="attribute_exists(pk) AND #v = :expected",
                ExpressionAttributeNames={"#v": "version"},
                ExpressionAttributeValues={":expected": int(expected_version)},
                ReturnConsumedCapacity="TOTAL",
            )

        resp = store_call(
            "ReplaceItem",
            _op,
            collection=collection,
            key={"id": document.get("id"), "pk": item["pk"], "sk": item["sk"]},
            retry_policy=self.retry_policy,
        )
        return StoreResponse(resource=dict(document), request_charge=_consumed(resp))

    def query(
        self,
        *,
        collection: str,
        partition_key: str | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> StoreResponse[list[dict[str, Any]]]:
        kwargs: dict[str, Any] = {"ReturnConsumedCapacity": "TOTAL"}
        if partition_key is not None:
            kwargs["KeyConditionExpression"] = Key("pk").eq(entity_pk(collection, partition_key))
        else:
            kwargs["IndexName"] = TYPE_INDEX
            kwargs["KeyConditionExpression"] = Key("gsi1pk").eq(f"TYPE#{collection}")
        cond = to_condition(filters, convert=to_ddb)
        if cond is not None:
            kwargs["FilterExpression"] = cond

        items: list[dict[str, Any]] = []
        charge = 0.0
        lek: dict[str, Any] | None = None
        while True:
            page_kwargs = dict(kwargs)
            # Only pass ExclusiveStartKey when present.
            if lek:
                page_kwargs["ExclusiveStartKey"] = lek

            def _op(page_kwargs=page_kwargs):
                return self._table.query(**page_kwargs)

            resp = store_call("Query", _op, collection=collection, retry_policy=self.retry_policy)
            charge += _consumed(resp)
            for it in resp.get("Items") or []:
                doc = self._document(it)
                if doc is not None:
                    items.append(doc)
            lek = resp.get("LastEvaluatedKey")
            if not lek:
                break
        return StoreResponse(resource=items, request_charge=charge)
