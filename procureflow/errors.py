from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True, eq=False)
class ProcurementError(Exception):
    """Base error for the procurement data/workflow layer.

    Callers at the service boundary catch this family and decide what to
    surface. `retryable` is only ever true for transient infrastructure
    failures; logical failures are returned to the caller unchanged.
    """

    message: str
    entity_type: str | None = None
    entity_id: str | None = None
    retryable: bool = False
    details: dict[str, Any] | None = None
    cause: Exception | None = None

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "error": type(self).__name__,
            "message": self.message,
            "retryable": bool(self.retryable),
        }
        if self.entity_type:
            out["entityType"] = self.entity_type
        if self.entity_id:
            out["entityId"] = self.entity_id
        if self.details:
            out["details"] = dict(self.details)
        return out


@dataclass(slots=True, eq=False)
class ValidationError(ProcurementError):
    pass


@dataclass(slots=True, eq=False)
class NotFoundError(ProcurementError):
    partition_key: str | None = None


@dataclass(slots=True, eq=False)
class ConflictError(ProcurementError):
    expected_version: int | None = None
    actual_version: int | None = None


@dataclass(slots=True, eq=False)
class InvalidTransitionError(ProcurementError):
    current_status: str | None = None
    target_status: str | None = None


@dataclass(slots=True, eq=False)
class ApprovalPendingError(InvalidTransitionError):
    pass


@dataclass(slots=True, eq=False)
class InsufficientPermissionError(ProcurementError):
    required_role: str | None = None
    actor_role: str | None = None


@dataclass(slots=True, eq=False)
class StoreUnavailableError(ProcurementError):
    operation: str | None = None
    attempts: int = 0


@dataclass(slots=True, eq=False)
class IntegrityError(ProcurementError):
    sequence: int | None = None
