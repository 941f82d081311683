from __future__ import annotations

import pytest

from procureflow.errors import ConflictError, InsufficientPermissionError
from procureflow.modules.identity import Actor, Role
from procureflow.modules.identity.roles import has_at_least, is_admin, normalize_role
from procureflow.observability.context import correlation_scope, get_correlation_id
from procureflow.observability.logging import _add_correlation_id


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("admin", Role.ADMIN),
        ("Procurement-Officer", Role.PROCUREMENT_OFFICER),
        ("procurement_officer", Role.PROCUREMENT_OFFICER),
        ("supplier", Role.VENDOR),
        ("APPROVER", Role.APPROVER),
        ("", Role.VIEWER),
        (None, Role.VIEWER),
        ("janitor", Role.VIEWER),
        (Role.EVALUATOR, Role.EVALUATOR),
    ],
)
def test_normalize_role(raw, expected):
    assert normalize_role(raw) == expected


def test_role_order():
    assert has_at_least(Role.APPROVER, Role.PROCUREMENT_OFFICER)
    assert not has_at_least("evaluator", "officer")
    assert is_admin("administrator")
    assert not is_admin(Role.APPROVER)


def test_actor_of_and_audit_view():
    actor = Actor.of("u1", "buyer", name="Bo")
    assert actor.role is Role.PROCUREMENT_OFFICER
    assert actor.to_audit() == {"id": "u1", "role": "PROCUREMENT_OFFICER", "name": "Bo"}


def test_error_to_dict():
    e = InsufficientPermissionError(
        message="nope", entity_type="RFQ", entity_id="r1", required_role="APPROVER", actor_role="VIEWER"
    )
    assert e.to_dict() == {
        "error": "InsufficientPermissionError",
        "message": "nope",
        "retryable": False,
        "entityType": "RFQ",
        "entityId": "r1",
    }
    assert str(ConflictError(message="stale", retryable=True)) == "stale"


def test_correlation_scope_nests_and_resets():
    assert get_correlation_id() is None
    with correlation_scope() as outer:
        assert outer.startswith("corr_")
        with correlation_scope("inner"):
            assert _add_correlation_id(None, "info", {"event": "x"})["correlation_id"] == "inner"
        assert get_correlation_id() == outer
    assert get_correlation_id() is None
    assert "correlation_id" not in _add_correlation_id(None, "info", {"event": "x"})
