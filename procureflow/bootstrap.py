from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from .db.base import DocumentTable
from .db.memory_table import MemoryTable
from .db.retry import RetryPolicy
from .domain.entities import utcnow_iso
from .modules.analytics.aggregator import AnalyticsService
from .modules.approvals.coordinator import ApprovalCoordinator
from .modules.audit.recorder import AuditTrailRecorder
from .modules.evaluation.consolidation import EvaluationConsolidationEngine
from .modules.submissions.intake import SubmissionIntake
from .modules.workflow.state_machine import DocumentGenerator, Notifier, WorkflowStateMachine
from .observability.logging import configure_logging, get_logger
from .observability.store_metrics import OperationRecorder
from .repositories.entity_store import EntityStore
from .settings import Settings

log = get_logger(__name__)


@dataclass(slots=True)
class ProcurementServices:
    settings: Settings
    table: DocumentTable
    audit_table: DocumentTable
    recorder: OperationRecorder
    audit: AuditTrailRecorder
    store: EntityStore
    approvals: ApprovalCoordinator
    workflow: WorkflowStateMachine
    evaluation: EvaluationConsolidationEngine
    submissions: SubmissionIntake
    analytics: AnalyticsService


def build_tables(settings: Settings, *, resource: Any = None) -> tuple[DocumentTable, DocumentTable]:
    backend = str(settings.store_backend or "").strip().lower()
    if backend == "memory":
        return MemoryTable(name="entities"), MemoryTable(name="audit")
    if backend != "dynamodb":
        raise RuntimeError(f"Unknown STORE_BACKEND '{settings.store_backend}'")
    if not settings.ddb_table_name:
        raise RuntimeError("DDB_TABLE_NAME is not set")

    from .db.dynamodb.client import dynamodb_resource
    from .db.dynamodb.table import DynamoTable

    res = resource if resource is not None else dynamodb_resource(settings)
    policy = RetryPolicy(max_attempts=settings.store_max_attempts, delay_s=settings.store_retry_delay_s)
    table = DynamoTable(table_name=settings.ddb_table_name, resource=res, retry_policy=policy)
    audit_name = settings.ddb_audit_table_name or settings.ddb_table_name
    audit_table = table if audit_name == settings.ddb_table_name else DynamoTable(
        table_name=audit_name, resource=res, retry_policy=policy
    )
    return table, audit_table


def build_services(
    settings: Settings,
    *,
    table: DocumentTable | None = None,
    audit_table: DocumentTable | None = None,
    resource: Any = None,
    notifier: Notifier | None = None,
    document_generator: DocumentGenerator | None = None,
    clock: Callable[[], str] = utcnow_iso,
) -> ProcurementServices:
    """Wire every component from one Settings object; store handles are passed explicitly."""
    configure_logging(level=settings.log_level)
    settings.require_in_production()

    if table is None or audit_table is None:
        built_table, built_audit = build_tables(settings, resource=resource)
        table = table or built_table
        audit_table = audit_table or built_audit

    recorder = OperationRecorder(latency_alert_ms=settings.store_latency_alert_ms)
    audit = AuditTrailRecorder(
        table=audit_table,
        embedded_limit=settings.audit_embedded_limit,
        recorder=recorder,
        clock=clock,
    )
    store = EntityStore(table=table, audit=audit, recorder=recorder, clock=clock)
    approvals = ApprovalCoordinator(
        store=store,
        max_batch=settings.bulk_max_batch,
        parallelism=settings.bulk_parallelism,
        clock=clock,
    )
    workflow = WorkflowStateMachine(
        store=store,
        approval_gate=approvals,
        notifier=notifier,
        document_generator=document_generator,
        clock=clock,
    )
    services = ProcurementServices(
        settings=settings,
        table=table,
        audit_table=audit_table,
        recorder=recorder,
        audit=audit,
        store=store,
        approvals=approvals,
        workflow=workflow,
        evaluation=EvaluationConsolidationEngine(store=store, clock=clock),
        submissions=SubmissionIntake(store=store, clock=clock),
        analytics=AnalyticsService(store=store),
    )
    log.info("services.built", **settings.public_summary())
    return services
