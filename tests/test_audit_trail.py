from __future__ import annotations

import pytest

from procureflow.bootstrap import build_services
from procureflow.errors import IntegrityError
from procureflow.modules.audit.fingerprint import canonical_json, compute_fingerprint
from procureflow.modules.audit.recorder import AUDIT_COLLECTION, audit_partition_key, changed_fields
from procureflow.modules.audit.risk import risk_level
from procureflow.observability.context import correlation_scope
from procureflow.settings import Settings


def _touch(services, actor, doc, **fields):
    return services.store.update(
        doc["entityType"], doc["id"], doc["partitionKey"], lambda d: d.update(fields), actor=actor
    )


def test_history_is_a_hash_chain_keyed_by_version(services, officer, make_entity):
    proc = make_entity("Procurement")
    proc = _touch(services, officer, proc, title="v2")
    proc = _touch(services, officer, proc, title="v3")

    history = services.audit.get_history("Procurement", proc["id"])
    assert [e["sequence"] for e in history] == [1, 2, 3]
    assert history[0]["prevFingerprint"] == ""
    for prev, cur in zip(history, history[1:]):
        assert cur["prevFingerprint"] == prev["integrityFingerprint"]

    result = services.audit.verify_history("Procurement", proc["id"])
    assert result["valid"] is True
    assert result["checkedCount"] == 3
    assert result["lastFingerprint"] == history[-1]["integrityFingerprint"]
    assert services.audit.verify_embedded(proc)["checkedCount"] == 3


def test_tampered_log_entry_is_detected(services, officer, make_entity):
    proc = make_entity("Procurement")
    proc = _touch(services, officer, proc, title="v2")

    entries = services.audit_table._data[AUDIT_COLLECTION]
    key = next(k for k, e in entries.items() if e["subjectId"] == proc["id"] and e["sequence"] == 1)
    entries[key]["actor"]["id"] = "someone-else"

    with pytest.raises(IntegrityError) as ei:
        services.audit.verify_history("Procurement", proc["id"])
    assert ei.value.sequence == 1
    assert ei.value.details["reason"] == "fingerprint_mismatch"


def test_tampered_embedded_trail_is_detected(services, officer, make_entity):
    proc = make_entity("Procurement")
    proc = _touch(services, officer, proc, title="v2")
    proc["metadata"]["auditTrail"][0]["action"] = "read"

    with pytest.raises(IntegrityError):
        services.audit.verify_embedded(proc)


def test_embedded_trail_is_truncated_but_log_is_complete(clock, officer):
    services = build_services(
        Settings(store_backend="memory", environment="test", audit_embedded_limit=3), clock=clock
    )
    proc = services.store.create("Procurement", {"department": "works", "title": "t"}, actor=officer)
    for i in range(5):
        proc = _touch(services, officer, proc, title=f"t{i}")

    trail = proc["metadata"]["auditTrail"]
    assert [e["sequence"] for e in trail] == [4, 5, 6]
    assert proc["metadata"]["auditCount"] == 6
    assert len(services.audit.get_history("Procurement", proc["id"])) == 6

    # The surviving window still chains internally.
    assert services.audit.verify_embedded(proc)["checkedCount"] == 3
    assert services.audit.verify_history("Procurement", proc["id"])["checkedCount"] == 6


def test_log_entries_live_in_their_own_partition(services, make_entity):
    rfq = make_entity("RFQ")
    entry = services.audit.get_history("RFQ", rfq["id"])[0]
    assert entry["partitionKey"] == audit_partition_key("RFQ", rfq["id"]) == f"RFQ|{rfq['id']}"
    assert entry["subjectType"] == "RFQ"
    assert entry["actor"] == {"id": "officer-1", "role": "PROCUREMENT_OFFICER", "name": "Olu Officer"}


def test_correlation_id_is_stamped(services, officer, make_entity):
    with correlation_scope("corr-test-1") as cid:
        proc = make_entity("Procurement")
    assert cid == "corr-test-1"
    assert proc["metadata"]["auditTrail"][0]["correlationId"] == "corr-test-1"

    outside = _touch(services, officer, proc, title="later")
    assert outside["metadata"]["auditTrail"][-1]["correlationId"] is None


@pytest.mark.parametrize(
    "action,entity_type,details,expected",
    [
        ("deleted", "Contract", {"value": 2_000_000}, "critical"),
        ("read", "Plan", {}, "low"),
        ("created", "Procurement", {}, "medium"),
        ("updated", "Approval", {"override": True}, "medium"),
        ("approved", "Contract", {}, "high"),
        ("admin_override", "Procurement", {"override": True}, "critical"),
        ("status_changed", "RFQ", {"amount": 150_000}, "medium"),
        ("updated", "Template", {"bulkOperation": True}, "low"),
    ],
)
def test_risk_levels(action, entity_type, details, expected):
    assert risk_level(action, entity_type, details) == expected


def test_changed_fields_ignores_bookkeeping():
    before = {"title": "a", "version": 1, "updatedAt": "x", "metadata": {}, "status": "draft"}
    after = {"title": "b", "version": 2, "updatedAt": "y", "metadata": {"auditCount": 1}, "status": "draft", "notes": "n"}
    assert changed_fields(before, after) == ["notes", "title"]
    assert changed_fields(None, after) == []


def test_fingerprint_is_stable_across_numeric_representations():
    a = {"sequence": 1, "details": {"value": 100.0}}
    b = {"sequence": 1, "details": {"value": 100}}
    assert canonical_json(a) == canonical_json(b)
    assert compute_fingerprint(a, prev_fingerprint="") == compute_fingerprint(b, prev_fingerprint="")
    assert compute_fingerprint(a, prev_fingerprint="") != compute_fingerprint(a, prev_fingerprint="abc")
