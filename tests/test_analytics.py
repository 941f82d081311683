from __future__ import annotations

from datetime import date

import pytest

from procureflow.errors import ValidationError
from procureflow.modules.analytics.aggregator import aggregate, time_bucket

ITEMS = [
    {"status": "open", "category": "goods", "price": 100.0, "createdAt": "2025-03-03T10:00:00Z"},
    {"status": "open", "category": "works", "price": 250.5, "createdAt": "2025-03-05T10:00:00Z"},
    {"status": "closed", "category": "goods", "price": None, "createdAt": "2025-03-12T10:00:00Z"},
    {"status": "closed", "price": 10.125, "createdAt": "2025-04-01T00:00:00Z"},
    {"status": "draft", "category": "goods", "createdAt": "not-a-date"},
]


def _groups(result):
    return {g["key"]: g for g in result["groups"]}


def test_group_by_field_with_sums_and_averages():
    result = aggregate(ITEMS, group_by="category", value_field="price")
    groups = _groups(result)
    assert result["total"] == 5
    assert result["sum"] == 360.62
    assert groups["goods"]["count"] == 3
    assert groups["goods"]["sum"] == 100.0
    assert groups["goods"]["average"] == 100.0
    assert groups["unknown"]["count"] == 1
    assert groups["unknown"]["sum"] == 10.12
    assert [g["key"] for g in result["groups"]] == ["goods", "unknown", "works"]


def test_filters_apply_before_grouping():
    result = aggregate(ITEMS, group_by="status", filters={"category": "goods"})
    assert {k: g["count"] for k, g in _groups(result).items()} == {"open": 1, "closed": 1, "draft": 1}


@pytest.mark.parametrize(
    "bucket,expected",
    [
        ("day", {"2025-03-03": 1, "2025-03-05": 1, "2025-03-12": 1, "2025-04-01": 1, "unknown": 1}),
        ("week", {"2025-03-03": 2, "2025-03-10": 1, "2025-03-31": 1, "unknown": 1}),
        ("month", {"2025-03": 3, "2025-04": 1, "unknown": 1}),
    ],
)
def test_time_buckets(bucket, expected):
    result = aggregate(ITEMS, bucket=bucket)
    assert result["groupBy"] == bucket
    assert {k: g["count"] for k, g in _groups(result).items()} == expected


def test_date_range_is_inclusive_and_skips_undated():
    result = aggregate(ITEMS, date_from="2025-03-05T10:00:00Z", date_to="2025-03-12T10:00:00Z")
    assert result["total"] == 2


def test_date_only_end_covers_the_whole_day():
    assert aggregate(ITEMS, date_from="2025-03-05", date_to="2025-03-12")["total"] == 2
    assert aggregate(ITEMS, date_to=date(2025, 3, 31))["total"] == 3
    assert aggregate(ITEMS, date_to="2025-03-12T09:59:59Z")["total"] == 2


def test_bad_arguments_are_rejected():
    with pytest.raises(ValidationError):
        aggregate(ITEMS, bucket="quarter")
    with pytest.raises(ValidationError):
        aggregate(ITEMS, date_from="yesterday")


def test_time_bucket_normalizes_to_utc():
    assert time_bucket("2025-03-02T23:30:00-02:00", "day") == "2025-03-03"
    assert time_bucket(None, "month") == "unknown"


def test_rollup_over_the_store(services, make_entity):
    make_entity("Procurement", category="goods", estimatedValue=1000.0)
    make_entity("Procurement", category="goods", estimatedValue=3000.0)
    make_entity("Procurement", category="services", estimatedValue=500.0)

    result = services.analytics.rollup("Procurement", group_by="category", value_field="estimatedValue")
    groups = _groups(result)
    assert result["entityType"] == "Procurement"
    assert result["total"] == 3
    assert groups["goods"]["average"] == 2000.0
    assert groups["services"]["sum"] == 500.0


def test_rollup_paginates_through_everything(services, make_entity):
    services.analytics.page_size = 2
    for i in range(5):
        make_entity("Plan", title=f"plan {i}")
    assert services.analytics.rollup("Plan")["total"] == 5


def test_approval_summary(services, officer, approver, make_entity):
    first = services.approvals.request_approval(make_entity("Procurement"), [{"approverId": approver.id}], actor=officer)
    services.approvals.request_approval(make_entity("Procurement"), [{"approverId": approver.id}], actor=officer)
    services.approvals.record_decision(first["id"], first["partitionKey"], "step_1", "approved", actor=approver)

    summary = services.analytics.approval_summary()
    assert summary["total"] == 2
    assert summary["byStatus"] == {"approved": 1, "pending": 1}
    assert summary["pending"] == 1
    assert summary["decidedSteps"] == 1
    assert summary["averageResponseHours"] >= 0
