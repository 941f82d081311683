from .chain import MODE_PARALLEL, MODE_SEQUENTIAL, resolve_chain
from .coordinator import ApprovalCoordinator, approval_partition_key

__all__ = [
    "ApprovalCoordinator",
    "MODE_PARALLEL",
    "MODE_SEQUENTIAL",
    "approval_partition_key",
    "resolve_chain",
]
