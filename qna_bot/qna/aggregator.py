"""
Multi-source answer aggregation with a confidence gate.

All configured sources are queried concurrently. The source whose top answer
scores highest wins (earliest configured source on ties), and its top two
answers decide whether the bot can answer directly or has to ask the user
which question they meant.

A source that fails or times out contributes no answers; the turn only fails
when every source failed.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence

from qna_bot.config.bot_config import ConfidenceThresholds, DEFAULT_SOURCE_TIMEOUT_SECONDS
from qna_bot.telemetry import track_event
from .models import SourceResult

logger = logging.getLogger(__name__)


class AllSourcesFailedError(Exception):
    """Every configured source failed or timed out for the current utterance."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__(f"All {len(errors)} QnA source(s) failed: {errors}")


class DecisionType(Enum):
    """Outcome of the selection phase."""
    CONFIDENT = "confident"   # Answer directly with the top candidate
    AMBIGUOUS = "ambiguous"   # Ask the user to pick among candidate questions
    NO_ANSWER = "no_answer"   # Post the default message


@dataclass(frozen=True)
class AggregationDecision:
    decision_type: DecisionType
    result: Optional[SourceResult]

    @property
    def default_message(self) -> Optional[str]:
        if self.decision_type is DecisionType.NO_ANSWER and self.result:
            return self.result.default_message
        return None


async def _query_one(source, utterance: str, timeout: float) -> SourceResult:
    return await asyncio.wait_for(source.query(utterance), timeout=timeout)


async def query_sources(
    sources: Sequence,
    utterance: str,
    timeout: float = DEFAULT_SOURCE_TIMEOUT_SECONDS,
) -> List[Optional[SourceResult]]:
    """
    Query every source concurrently and wait for all of them.

    Args:
        sources: Objects exposing `source_id` and `async query(utterance) -> SourceResult`
        utterance: User's question
        timeout: Per-source timeout in seconds

    Returns:
        One entry per source in configuration order; None for a source that
        failed or timed out

    Raises:
        AllSourcesFailedError: If no source produced a result
    """
    outcomes = await asyncio.gather(
        *(_query_one(source, utterance, timeout) for source in sources),
        return_exceptions=True,
    )

    results: List[Optional[SourceResult]] = []
    errors: Dict[str, str] = {}
    for source, outcome in zip(sources, outcomes):
        source_id = getattr(source, "source_id", repr(source))
        if isinstance(outcome, asyncio.TimeoutError):
            errors[source_id] = f"timed out after {timeout}s"
        elif isinstance(outcome, Exception):
            errors[source_id] = f"{type(outcome).__name__}: {outcome}"
        elif isinstance(outcome, BaseException):
            # Cancellation and interpreter exits are not source failures
            raise outcome
        else:
            results.append(outcome)
            continue

        logger.warning(f"QnA source {source_id} failed: {errors[source_id]}")
        track_event("qna_source_failed", {"source_id": source_id, "error": errors[source_id]})
        results.append(None)

    if sources and len(errors) == len(sources):
        raise AllSourcesFailedError(errors)

    return results


def select_best_result(results: Sequence[Optional[SourceResult]]) -> Optional[SourceResult]:
    """
    Pick the result whose top candidate has the highest score.

    Only a strictly higher score replaces the current best, so ties resolve to
    the earliest configured source.

    Returns:
        The winning result, or None when no source returned candidates
    """
    best: Optional[SourceResult] = None
    for result in results:
        if result is None or not result.has_candidates:
            continue
        if best is None or result.top.confidence_score > best.top.confidence_score:
            best = result
    return best


def is_confident_answer(result: SourceResult, thresholds: ConfidenceThresholds) -> bool:
    """
    Decide whether the top candidate can be answered without asking the user.

    Confident when there is no runner-up, when the top score reaches the
    high-confidence score, or when the top score leads the runner-up by more
    than the delta.
    """
    top = result.top
    second = result.second
    if top is None:
        return False
    if second is None or top.confidence_score >= thresholds.high_confidence_score:
        return True
    return (top.confidence_score - second.confidence_score) > thresholds.high_confidence_delta


def decide(
    results: Sequence[Optional[SourceResult]],
    thresholds: ConfidenceThresholds,
    source_thresholds: Optional[Dict[str, ConfidenceThresholds]] = None,
) -> AggregationDecision:
    """
    Run the selection phase over the results of one turn.

    Args:
        results: Per-source results in configuration order (None for failed sources)
        thresholds: Bot-wide confidence thresholds
        source_thresholds: Optional per-source overrides keyed by source_id

    Returns:
        AggregationDecision
    """
    best = select_best_result(results)
    if best is None:
        first = next((r for r in results if r is not None), None)
        return AggregationDecision(DecisionType.NO_ANSWER, first)

    gate = (source_thresholds or {}).get(best.source_id, thresholds)
    if is_confident_answer(best, gate):
        return AggregationDecision(DecisionType.CONFIDENT, best)
    return AggregationDecision(DecisionType.AMBIGUOUS, best)
