from __future__ import annotations

from decimal import Decimal

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from procureflow.db.dynamodb.table import TYPE_INDEX, DynamoTable, from_ddb, to_ddb
from procureflow.db.retry import RetryPolicy, store_call
from procureflow.errors import ConflictError, StoreUnavailableError, ValidationError


def _client_error(code: str, status: int = 400, op: str = "PutItem") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        op,
    )


class FakeBotoTable:
    """Records calls; pops a queued exception (or response) per call."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.failures: list[Exception] = []
        self.get_response: dict = {}
        self.query_pages: list[dict] = []

    def _maybe_fail(self):
        if self.failures:
            raise self.failures.pop(0)

    def put_item(self, **kwargs):
        self.calls.append(("put_item", kwargs))
        self._maybe_fail()
        return {"ConsumedCapacity": {"CapacityUnits": 1.0}}

    def get_item(self, **kwargs):
        self.calls.append(("get_item", kwargs))
        self._maybe_fail()
        return self.get_response

    def query(self, **kwargs):
        self.calls.append(("query", kwargs))
        self._maybe_fail()
        return self.query_pages.pop(0)


class FakeResource:
    def __init__(self, table: FakeBotoTable):
        self.table = table
        self.names: list[str] = []

    def Table(self, name):  # noqa: N802 - boto3 API
        self.names.append(name)
        return self.table


@pytest.fixture
def boto_table():
    return FakeBotoTable()


@pytest.fixture
def ddb(boto_table):
    return DynamoTable(
        table_name="procureflow-test",
        resource=FakeResource(boto_table),
        retry_policy=RetryPolicy(max_attempts=3, delay_s=0),
    )


def _doc(**extra):
    return {
        "id": "p1",
        "partitionKey": "works|officer-1",
        "entityType": "Procurement",
        "version": 2,
        "createdAt": "2025-03-03T09:00:01Z",
        "estimatedValue": 1250.5,
        **extra,
    }


def test_throttling_is_retried_until_success(ddb, boto_table):
    boto_table.failures = [
        _client_error("ProvisionedThroughputExceededException"),
        _client_error("ThrottlingException"),
    ]
    resp = ddb.insert(collection="Procurement", document=_doc())
    assert len(boto_table.calls) == 3
    assert resp.request_charge == 1.0


def test_retries_are_bounded_and_report_attempts(ddb, boto_table):
    boto_table.failures = [_client_error("InternalServerError", status=500) for _ in range(5)]
    with pytest.raises(StoreUnavailableError) as ei:
        ddb.insert(collection="Procurement", document=_doc())
    assert ei.value.attempts == 3
    assert ei.value.retryable is True
    assert ei.value.operation == "PutItem"
    assert isinstance(ei.value.__cause__, ClientError)
    assert len(boto_table.calls) == 3


def test_connection_errors_are_transient(ddb, boto_table):
    boto_table.failures = [EndpointConnectionError(endpoint_url="https://dynamodb.local")]
    ddb.insert(collection="Procurement", document=_doc())
    assert len(boto_table.calls) == 2


def test_conditional_failure_is_a_conflict_and_not_retried(ddb, boto_table):
    boto_table.failures = [_client_error("ConditionalCheckFailedException")]
    with pytest.raises(ConflictError) as ei:
        ddb.replace(collection="Procurement", document=_doc(), expected_version=1)
    assert ei.value.retryable is True
    assert ei.value.entity_id == "p1"
    assert len(boto_table.calls) == 1


def test_duplicate_insert_is_a_permanent_conflict(ddb, boto_table):
    boto_table.failures = [_client_error("ConditionalCheckFailedException")]
    with pytest.raises(ConflictError) as ei:
        ddb.insert(collection="Procurement", document=_doc())
    assert ei.value.retryable is False
    assert ei.value.entity_id == "p1"
    assert "already exists" in ei.value.message
    assert len(boto_table.calls) == 1


def test_validation_and_access_errors_surface_immediately(ddb, boto_table):
    boto_table.failures = [_client_error("ValidationException")]
    with pytest.raises(ValidationError):
        ddb.insert(collection="Procurement", document=_doc())
    assert len(boto_table.calls) == 1

    boto_table.failures = [_client_error("AccessDeniedException")]
    with pytest.raises(StoreUnavailableError) as ei:
        ddb.insert(collection="Procurement", document=_doc())
    assert ei.value.retryable is False
    assert len(boto_table.calls) == 2


def test_store_call_passes_domain_errors_through():
    original = ConflictError(message="stale", expected_version=1, actual_version=2)
    slept: list[float] = []

    def _fn():
        raise original

    with pytest.raises(ConflictError) as ei:
        store_call("ReplaceItem", _fn, sleep=slept.append)
    assert ei.value is original
    assert ei.value.__cause__ is None
    assert slept == []


def test_store_call_sleeps_fixed_delay_between_attempts():
    attempts = {"n": 0}
    slept: list[float] = []

    def _fn():
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise _client_error("RequestLimitExceeded")
        return "ok"

    out = store_call("Query", _fn, retry_policy=RetryPolicy(max_attempts=3, delay_s=0.25), sleep=slept.append)
    assert out == "ok"
    assert slept == [0.25, 0.25]


def test_insert_item_layout_and_condition(ddb, boto_table):
    ddb.insert(collection="Procurement", document=_doc())
    _, kwargs = boto_table.calls[0]
    item = kwargs["Item"]
    assert item["pk"] == "PROCUREMENT#works|officer-1"
    assert item["sk"] == "ID#p1"
    assert item["gsi1pk"] == "TYPE#Procurement"
    assert item["gsi1sk"] == "2025-03-03T09:00:01Z#p1"
    assert item["estimatedValue"] == Decimal("1250.5")
    assert kwargs["ConditionExpression"] == "attribute_not_exists(pk) AND attribute_not_exists(sk)"


def test_replace_is_conditional_on_expected_version(ddb, boto_table):
    ddb.replace(collection="Procurement", document=_doc(version=3), expected_version=2)
    _, kwargs = boto_table.calls[0]
    assert kwargs["ConditionExpression"] == "attribute_exists(pk) AND #v = :expected"
    assert kwargs["ExpressionAttributeNames"] == {"#v": "version"}
    assert kwargs["ExpressionAttributeValues"] == {":expected": 2}
    assert kwargs["Item"]["version"] == 3


def test_audit_entries_are_keyed_by_sequence(ddb, boto_table):
    entry = {
        "id": "aud_1",
        "partitionKey": "Procurement|p1",
        "entityType": "AuditLogEntry",
        "sequence": 7,
        "createdAt": "2025-03-03T09:00:01Z",
    }
    ddb.insert(collection="AuditLogEntry", document=entry)
    assert boto_table.calls[0][1]["Item"]["sk"] == "SEQ#0000000007"

    with pytest.raises(ValidationError):
        ddb.insert(collection="AuditLogEntry", document={**entry, "sequence": None})


def test_read_strips_keys_and_converts_decimals(ddb, boto_table):
    boto_table.get_response = {
        "Item": {
            "pk": "PROCUREMENT#works|officer-1",
            "sk": "ID#p1",
            "gsi1pk": "TYPE#Procurement",
            "gsi1sk": "x#p1",
            "id": "p1",
            "version": Decimal("4"),
            "estimatedValue": Decimal("1250.5"),
            "metadata": {"auditCount": Decimal("4")},
        },
        "ConsumedCapacity": {"CapacityUnits": 0.5},
    }
    resp = ddb.read(collection="Procurement", partition_key="works|officer-1", item_id="p1")
    assert resp.resource == {
        "id": "p1",
        "version": 4,
        "estimatedValue": 1250.5,
        "metadata": {"auditCount": 4},
    }
    assert resp.request_charge == 0.5
    assert boto_table.calls[0][1]["Key"] == {"pk": "PROCUREMENT#works|officer-1", "sk": "ID#p1"}


def test_read_missing_item_returns_none(ddb, boto_table):
    boto_table.get_response = {}
    assert ddb.read(collection="RFQ", partition_key="a|b", item_id="x").resource is None


def test_query_follows_pages_and_sums_charge(ddb, boto_table):
    boto_table.query_pages = [
        {"Items": [{"id": "a", "pk": "x"}], "LastEvaluatedKey": {"pk": "x", "sk": "ID#a"}, "ConsumedCapacity": {"CapacityUnits": 2.0}},
        {"Items": [{"id": "b", "pk": "x"}], "ConsumedCapacity": {"CapacityUnits": 1.5}},
    ]
    resp = ddb.query(collection="RFQ", filters={"status": "open"})
    assert [d["id"] for d in resp.resource] == ["a", "b"]
    assert resp.request_charge == 3.5

    first, second = boto_table.calls[0][1], boto_table.calls[1][1]
    assert first["IndexName"] == TYPE_INDEX
    assert "ExclusiveStartKey" not in first
    assert second["ExclusiveStartKey"] == {"pk": "x", "sk": "ID#a"}
    assert "FilterExpression" in first


def test_partition_query_uses_the_base_table(ddb, boto_table):
    boto_table.query_pages = [{"Items": []}]
    ddb.query(collection="Submission", partition_key="rfq-1|v1")
    kwargs = boto_table.calls[0][1]
    assert "IndexName" not in kwargs
    assert "FilterExpression" not in kwargs


def test_decimal_conversion_helpers():
    assert to_ddb({"a": [1.5, True, 2]}) == {"a": [Decimal("1.5"), True, 2]}
    assert from_ddb(Decimal("10")) == 10
    assert isinstance(from_ddb(Decimal("10")), int)
    assert from_ddb(Decimal("0.1")) == 0.1
