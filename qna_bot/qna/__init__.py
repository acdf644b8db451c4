"""
QnA Maker integration: answer models, the HTTP client and the multi-source
answer aggregator.
"""
from .models import AnswerCandidate, SourceResult, FeedbackRecord
from .aggregator import (
    AggregationDecision,
    AllSourcesFailedError,
    DecisionType,
    decide,
    is_confident_answer,
    query_sources,
    select_best_result,
)
from .service import QnAMakerService, QnAServiceError

__all__ = [
    "AnswerCandidate",
    "SourceResult",
    "FeedbackRecord",
    "AggregationDecision",
    "AllSourcesFailedError",
    "DecisionType",
    "decide",
    "is_confident_answer",
    "query_sources",
    "select_best_result",
    "QnAMakerService",
    "QnAServiceError",
]
