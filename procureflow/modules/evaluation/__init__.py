from .consolidation import EvaluationConsolidationEngine, consolidate_scores
from .scoring import (
    METHOD_FBS,
    METHOD_LCS,
    METHOD_QCBS,
    financial_scores,
    rank_results,
    weighted_score,
)

__all__ = [
    "EvaluationConsolidationEngine",
    "METHOD_FBS",
    "METHOD_LCS",
    "METHOD_QCBS",
    "consolidate_scores",
    "financial_scores",
    "rank_results",
    "weighted_score",
]
