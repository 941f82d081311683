from .base import DocumentTable, StoreResponse
from .filters import get_path, matches, to_condition
from .memory_table import MemoryTable
from .retry import RetryPolicy, store_call

__all__ = [
    "DocumentTable",
    "MemoryTable",
    "RetryPolicy",
    "StoreResponse",
    "get_path",
    "matches",
    "store_call",
    "to_condition",
]
