from __future__ import annotations

from decimal import Decimal

import pytest
from boto3.dynamodb.conditions import ConditionBase

from procureflow.db.dynamodb.table import to_ddb
from procureflow.db.filters import get_path, matches, to_condition
from procureflow.errors import ValidationError

DOC = {
    "status": "open",
    "price": 1500.5,
    "createdAt": "2025-02-10T10:00:00Z",
    "title": "Asphalt supply",
    "metadata": {"department": "works", "tags": ["urgent", "roads"]},
}


def test_get_path_walks_nested_maps():
    assert get_path(DOC, "metadata.department") == "works"
    assert get_path(DOC, "status") == "open"


@pytest.mark.parametrize(
    "spec, expected",
    [
        ({"status": "open"}, True),
        ({"status": "closed"}, False),
        ({"status": ["open", "closed"]}, True),
        ({"metadata.department": "works"}, True),
        ({"metadata.department": "health"}, False),
        ({"price": {"gt": 1000}}, True),
        ({"price": {"gte": 1500.5, "lt": 2000}}, True),
        ({"price": {"lte": 1000}}, False),
        ({"price": {"between": [1000, 2000]}}, True),
        ({"createdAt": {"between": ["2025-02-01", "2025-03-01"]}}, True),
        ({"metadata.tags": {"contains": "urgent"}}, True),
        ({"title": {"contains": "Asph"}}, True),
        ({"title": {"begins_with": "Road"}}, False),
        ({"deletedAt": {"exists": False}}, True),
        ({"metadata.department": {"exists": True}}, True),
        ({"status": {"ne": "cancelled"}}, True),
        ({"deletedAt": {"ne": "x"}}, True),
        ({"missing.path": "x"}, False),
        ({"status": "open", "price": {"gt": 5000}}, False),
        ({"price": {"gt": "abc"}}, False),
    ],
)
def test_matches(spec, expected):
    assert matches(DOC, spec) is expected


def test_empty_filter_matches_everything():
    assert matches(DOC, None)
    assert matches(DOC, {})


def test_unknown_operator_is_rejected():
    with pytest.raises(ValidationError):
        matches(DOC, {"price": {"approx": 10}})


def test_malformed_between_is_rejected():
    with pytest.raises(ValidationError):
        matches(DOC, {"price": {"between": [1]}})


def test_to_condition_builds_boto3_conditions():
    assert to_condition(None) is None

    cond = to_condition({"status": "open"})
    assert isinstance(cond, ConditionBase)
    assert cond.get_expression()["operator"] == "="

    combined = to_condition({"status": ["open", "closed"], "price": {"gt": 1.5}}, convert=to_ddb)
    assert combined.get_expression()["operator"] == "AND"

    gt = to_condition({"price": {"gt": 1.5}}, convert=to_ddb)
    assert gt.get_expression()["values"][1] == Decimal("1.5")


def test_to_condition_exists_and_not_exists():
    assert to_condition({"deletedAt": {"exists": True}}).get_expression()["operator"] == "attribute_exists"
    assert to_condition({"deletedAt": {"exists": False}}).get_expression()["operator"] == "attribute_not_exists"
