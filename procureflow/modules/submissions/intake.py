from __future__ import annotations

from typing import Any, Callable, Mapping

from ...domain.entities import EntityType, utcnow_iso
from ...domain.statuses import RFQStatus, SubmissionStatus
from ...errors import ConflictError, ValidationError
from ...observability.logging import get_logger
from ...repositories.entity_store import EntityStore
from ..identity.actor import Actor

log = get_logger(__name__)

# Submissions that still count towards an RFQ's submissionCount.
COUNTED_STATUSES = tuple(
    s.value for s in SubmissionStatus if s not in (SubmissionStatus.DRAFT, SubmissionStatus.WITHDRAWN)
)


class SubmissionIntake:
    """
    Files vendor submissions against an open RFQ.

    The submission and the RFQ counter are two separate single-entity writes;
    the counter is derived state, recomputed from the submissions on every
    compensating write.
    """

    def __init__(
        self,
        *,
        store: EntityStore,
        max_counter_attempts: int = 5,
        clock: Callable[[], str] = utcnow_iso,
    ):
        self.store = store
        self.max_counter_attempts = max(1, int(max_counter_attempts))
        self.clock = clock

    def submit(
        self,
        rfq: Mapping[str, Any],
        vendor_id: str,
        attributes: Mapping[str, Any] | None,
        *,
        actor: Actor,
    ) -> dict[str, Any]:
        vendor = str(vendor_id or "").strip()
        if not vendor:
            raise ValidationError(message="vendor_id is required", entity_type=EntityType.SUBMISSION.value)

        current = self.store.get_required(EntityType.RFQ, rfq["id"], rfq["partitionKey"])
        if current.get("status") != RFQStatus.OPEN.value:
            raise ValidationError(
                message=f"RFQ {current['id']} is not open for submissions (status '{current.get('status')}')",
                entity_type=EntityType.RFQ.value,
                entity_id=current["id"],
                details={"status": current.get("status")},
            )

        attrs = dict(attributes or {})
        attrs["rfqId"] = current["id"]
        attrs["vendorId"] = vendor
        attrs.setdefault("submittedAt", self.clock())
        attrs.setdefault("department", current.get("department"))
        submission = self.store.create(
            EntityType.SUBMISSION,
            attrs,
            actor=actor,
            initial_status=SubmissionStatus.SUBMITTED.value,
            snapshots={"rfq": current},
            details={"rfqId": current["id"], "vendorId": vendor, "value": attrs.get("price")},
        )
        self.refresh_submission_count(current["id"], current["partitionKey"], actor=actor)
        return submission

    def refresh_submission_count(self, rfq_id: str, rfq_partition_key: str, *, actor: Actor) -> dict[str, Any]:
        """Recount and store the RFQ's submissions; re-read and retry on a concurrent write."""
        for attempt in range(1, self.max_counter_attempts + 1):
            rfq = self.store.get_required(EntityType.RFQ, rfq_id, rfq_partition_key)
            page = self.store.query(
                EntityType.SUBMISSION,
                {"rfqId": str(rfq_id), "status": list(COUNTED_STATUSES)},
                page_size=1,
            )
            count = int(page["total"])

            def _set_count(doc: dict[str, Any], count=count) -> None:
                doc["submissionCount"] = count

            try:
                return self.store.update(
                    EntityType.RFQ,
                    str(rfq_id),
                    rfq_partition_key,
                    _set_count,
                    actor=actor,
                    action="submission_count_updated",
                    details={"submissionCount": count},
                    expected_version=int(rfq["version"]),
                )
            except ConflictError:
                if attempt >= self.max_counter_attempts:
                    raise
                log.info("submission.counter_conflict", rfq_id=str(rfq_id), attempt=attempt)
        raise ConflictError(message=f"RFQ {rfq_id} submission count could not be updated", entity_id=str(rfq_id))
