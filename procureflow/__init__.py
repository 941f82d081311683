"""Procurement workflow data layer: entities, status workflows, approvals, evaluation and analytics."""

from .bootstrap import ProcurementServices, build_services
from .errors import (
    ApprovalPendingError,
    ConflictError,
    InsufficientPermissionError,
    IntegrityError,
    InvalidTransitionError,
    NotFoundError,
    ProcurementError,
    StoreUnavailableError,
    ValidationError,
)
from .modules.identity import Actor, Role
from .settings import Settings, load_settings

__version__ = "0.1.0"

__all__ = [
    "Actor",
    "ApprovalPendingError",
    "ConflictError",
    "InsufficientPermissionError",
    "IntegrityError",
    "InvalidTransitionError",
    "NotFoundError",
    "ProcurementError",
    "ProcurementServices",
    "Role",
    "Settings",
    "StoreUnavailableError",
    "ValidationError",
    "build_services",
    "load_settings",
]
