from __future__ import annotations

import pytest

from procureflow.db.memory_table import MemoryTable
from procureflow.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)


def test_create_sets_version_status_stage_and_audit(services, make_entity):
    proc = make_entity("Procurement")
    assert proc["version"] == 1
    assert proc["status"] == "planning"
    assert len(proc["lifecycle"]["stages"]) == 1
    assert proc["metadata"]["auditCount"] == 1
    assert proc["metadata"]["auditTrail"][0]["action"] == "created"

    history = services.audit.get_history("Procurement", proc["id"])
    assert [e["sequence"] for e in history] == [1]


def test_find_by_id_with_and_without_partition_hint(services, make_entity):
    proc = make_entity("Procurement")

    direct = services.store.find_by_id("Procurement", proc["id"], proc["partitionKey"])
    assert direct["id"] == proc["id"]

    scanned = services.store.find_by_id("Procurement", proc["id"])
    assert scanned["id"] == proc["id"]
    assert services.recorder.stats_for("cross_partition_read", collection="Procurement").calls == 1
    assert services.recorder.stats_for("read", collection="Procurement").calls == 1


def test_get_required_raises_not_found(services):
    with pytest.raises(NotFoundError) as ei:
        services.store.get_required("RFQ", "nope", "p1|general")
    assert ei.value.entity_type == "RFQ"
    assert ei.value.partition_key == "p1|general"


def test_query_filters_and_pages_newest_first(services, make_entity):
    ids = [make_entity("Procurement", title=f"P{i}", category="goods" if i % 2 else "works")["id"] for i in range(5)]

    page = services.store.query("Procurement", {"category": "goods"}, page=1, page_size=1)
    assert page["total"] == 2
    assert page["page"] == 1
    assert page["pageSize"] == 1
    assert page["items"][0]["id"] == ids[3]

    everything = services.store.query("Procurement", page_size=10)
    assert [d["id"] for d in everything["items"]] == list(reversed(ids))

    by_partition = services.store.query("Procurement", partition_key="works|officer-1", page_size=10)
    assert by_partition["total"] == 5


def test_query_rejects_bad_paging(services):
    with pytest.raises(ValidationError):
        services.store.query("Procurement", page=0)
    with pytest.raises(ValidationError):
        services.store.query("Procurement", page_size=501)


def test_update_bumps_version_and_records_changes(services, officer, make_entity):
    proc = make_entity("Procurement")

    def _retitle(doc):
        doc["title"] = "Bridge repair"

    updated = services.store.update("Procurement", proc["id"], proc["partitionKey"], _retitle, actor=officer)
    assert updated["version"] == 2
    assert updated["title"] == "Bridge repair"
    last = updated["metadata"]["auditTrail"][-1]
    assert last["sequence"] == 2
    assert last["changes"] == ["title"]


def test_same_version_updates_one_wins_one_conflicts(services, officer, make_entity):
    proc = make_entity("Procurement")
    stale_version = proc["version"]

    services.store.update(
        "Procurement", proc["id"], proc["partitionKey"], lambda d: d.update(title="A"),
        actor=officer, expected_version=stale_version,
    )
    with pytest.raises(ConflictError) as ei:
        services.store.update(
            "Procurement", proc["id"], proc["partitionKey"], lambda d: d.update(title="B"),
            actor=officer, expected_version=stale_version,
        )
    assert ei.value.expected_version == 1
    assert ei.value.actual_version == 2

    current = services.store.get_required("Procurement", proc["id"], proc["partitionKey"])
    assert current["title"] == "A"
    assert current["version"] == 2


def test_concurrent_writer_between_read_and_replace_conflicts(services, officer, make_entity):
    proc = make_entity("Procurement")

    def _racing(doc):
        # Another writer commits while this update holds version 1.
        services.store.update(
            "Procurement", proc["id"], proc["partitionKey"], lambda d: d.update(title="first"), actor=officer
        )
        doc["title"] = "second"

    with pytest.raises(ConflictError):
        services.store.update("Procurement", proc["id"], proc["partitionKey"], _racing, actor=officer)

    current = services.store.get_required("Procurement", proc["id"], proc["partitionKey"])
    assert current["title"] == "first"
    assert current["version"] == 2
    assert len(services.audit.get_history("Procurement", proc["id"])) == 2


def test_generic_update_cannot_skip_the_status_graph(services, officer, make_entity):
    proc = make_entity("Procurement")

    with pytest.raises(InvalidTransitionError):
        services.store.update(
            "Procurement", proc["id"], proc["partitionKey"], lambda d: d.update(status="completed"), actor=officer
        )
    with pytest.raises(ValidationError):
        services.store.update(
            "Procurement", proc["id"], proc["partitionKey"], lambda d: d.update(status="bogus"), actor=officer
        )

    moved = services.store.update(
        "Procurement", proc["id"], proc["partitionKey"], lambda d: d.update(status="rfq_preparation"), actor=officer
    )
    assert moved["lifecycle"]["currentStage"] == "rfq_preparation"
    assert len(moved["lifecycle"]["stages"]) == 2


def test_soft_delete_moves_to_terminal_status(services, officer, make_entity):
    rfq = make_entity("RFQ")
    deleted = services.store.soft_delete("RFQ", rfq["id"], rfq["partitionKey"], actor=officer, reason="duplicate")
    assert deleted["status"] == "cancelled"
    assert deleted["deletedBy"] == officer.id
    assert deleted["metadata"]["auditTrail"][-1]["action"] == "deleted"

    # Still readable; no physical removal.
    assert services.store.find_by_id("RFQ", rfq["id"], rfq["partitionKey"])["status"] == "cancelled"

    with pytest.raises(InvalidTransitionError):
        services.store.update(
            "RFQ", rfq["id"], rfq["partitionKey"], lambda d: d.update(status="draft"), actor=officer
        )


def test_record_activity_is_an_audited_version_bump(services, officer, make_entity):
    rfq = make_entity("RFQ")
    out = services.store.record_activity(
        "RFQ", rfq["id"], rfq["partitionKey"], actor=officer, activity="document_downloaded"
    )
    assert out["version"] == 2
    assert out["metadata"]["lastActivity"] == out["metadata"]["auditTrail"][-1]["timestamp"]
    assert out["metadata"]["auditTrail"][-1]["details"]["activity"] == "document_downloaded"


def test_snapshots_are_reembedded_only_when_source_moves(services, officer, make_entity):
    rfq = make_entity("RFQ")
    sub = services.store.create(
        "Submission", {"rfqId": rfq["id"], "vendorId": "v1"}, actor=officer, snapshots={"rfq": rfq}
    )
    assert sub["rfq"]["sourceVersion"] == 1
    captured = sub["rfq"]["capturedAt"]

    same = services.store.update(
        "Submission", sub["id"], sub["partitionKey"], lambda d: None, actor=officer, snapshots={"rfq": rfq}
    )
    assert same["rfq"]["capturedAt"] == captured

    rfq2 = services.store.update(
        "RFQ", rfq["id"], rfq["partitionKey"], lambda d: d.update(title="Renamed"), actor=officer
    )
    fresh = services.store.update(
        "Submission", sub["id"], sub["partitionKey"], lambda d: None, actor=officer, snapshots={"rfq": rfq2}
    )
    assert fresh["rfq"]["sourceVersion"] == 2
    assert fresh["rfq"]["title"] == "Renamed"


def test_create_one_step_past_initial_only(services, officer):
    sub = services.store.create(
        "Submission", {"rfqId": "r1", "vendorId": "v1"}, actor=officer, initial_status="submitted"
    )
    assert sub["status"] == "submitted"
    with pytest.raises(ValidationError):
        services.store.create("Submission", {"rfqId": "r1", "vendorId": "v2"}, actor=officer, initial_status="qualified")


def test_failed_store_calls_are_counted(services, officer, make_entity, monkeypatch):
    proc = make_entity("Procurement")

    def _down(**kwargs):
        raise StoreUnavailableError(message="down", retryable=True)

    monkeypatch.setattr(services.table, "replace", _down)
    with pytest.raises(StoreUnavailableError):
        services.store.update("Procurement", proc["id"], proc["partitionKey"], lambda d: None, actor=officer)

    stats = services.recorder.stats_for("replace", collection="Procurement")
    assert stats.calls == 1
    assert stats.failures == 1
    assert stats.alerts == 1


def test_slow_calls_raise_alerts(services, make_entity):
    services.recorder.latency_alert_ms = -1.0
    make_entity("Plan")
    stats = services.recorder.stats_for("create", collection="Plan")
    assert stats.alerts == 1
    assert stats.failures == 0
    assert "Plan:create" in services.recorder.snapshot()


def test_memory_table_returns_copies():
    table = MemoryTable()
    doc = {"id": "a", "partitionKey": "x|y", "version": 1, "nested": {"k": 1}}
    table.insert(collection="C", document=doc)
    doc["nested"]["k"] = 2
    read = table.read(collection="C", partition_key="x|y", item_id="a").resource
    assert read["nested"]["k"] == 1
    read["nested"]["k"] = 3
    assert table.read(collection="C", partition_key="x|y", item_id="a").resource["nested"]["k"] == 1


def test_failed_log_insert_after_commit_is_backfilled(services, officer, make_entity, monkeypatch):
    proc = make_entity("Procurement")
    original = services.audit_table.insert
    failures = {"left": 1}

    def _flaky_insert(**kwargs):
        if failures["left"]:
            failures["left"] -= 1
            raise StoreUnavailableError(message="audit table down", retryable=True)
        return original(**kwargs)

    monkeypatch.setattr(services.audit_table, "insert", _flaky_insert)

    # The entity write committed, so the caller sees success.
    updated = services.store.update(
        "Procurement", proc["id"], proc["partitionKey"], lambda d: d.update(title="v2"), actor=officer
    )
    assert updated["version"] == 2
    assert [e["sequence"] for e in services.audit.get_history("Procurement", proc["id"])] == [1]
    assert services.recorder.stats_for("audit_persist", collection="AuditLogEntry").failures == 1

    services.store.update("Procurement", proc["id"], proc["partitionKey"], lambda d: d.update(title="v3"), actor=officer)

    history = services.audit.get_history("Procurement", proc["id"])
    assert [e["sequence"] for e in history] == [1, 2, 3]
    assert services.audit.verify_history("Procurement", proc["id"])["checkedCount"] == 3


def test_reconcile_audit_on_demand(services, officer, make_entity, monkeypatch):
    proc = make_entity("Procurement")

    def _down(**kwargs):
        raise StoreUnavailableError(message="audit table down")

    with monkeypatch.context() as m:
        m.setattr(services.audit_table, "insert", _down)
        services.store.record_activity("Procurement", proc["id"], proc["partitionKey"], actor=officer, activity="export")

    written = services.store.reconcile_audit("Procurement", proc["id"], proc["partitionKey"])
    assert [e["sequence"] for e in written] == [2]
    assert services.store.reconcile_audit("Procurement", proc["id"], proc["partitionKey"]) == []
    assert services.audit.verify_history("Procurement", proc["id"])["checkedCount"] == 2
