from .fingerprint import canonical_json, compute_fingerprint
from .recorder import AUDIT_COLLECTION, AuditTrailRecorder, changed_fields
from .risk import risk_level

__all__ = [
    "AUDIT_COLLECTION",
    "AuditTrailRecorder",
    "canonical_json",
    "changed_fields",
    "compute_fingerprint",
    "risk_level",
]
