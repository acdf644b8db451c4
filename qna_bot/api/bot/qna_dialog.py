"""
QnA dialog: turn dispatcher for the support bot.

Every incoming utterance is routed by the conversation's state tag:

- AWAITING_UTTERANCE: closing words start the rating exchange; anything else
  is sent to every QnA source and the aggregated decision is rendered
  (direct answer, clarification prompt, or default message).
- AWAITING_SELECTION: the reply is matched against the clarification options.
  A match posts that answer and reports the choice to the originating
  knowledge base in the background. No match ends the turn silently once
  the retry budget is spent.
- AWAITING_RATING: any reply ends the conversation with a goodbye message.
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set

from qna_bot.api.bot.confidence_handlers import ConfidenceHandler
from qna_bot.api.bot.conversation_state import (
    ConversationState,
    ConversationStateStore,
    DialogState,
    reset_dialog,
)
from qna_bot.api.bot.messages import (
    DEFAULT_MEMBER_NAME,
    GOODBYE_MESSAGE,
    NONE_OF_THE_ABOVE_OPTION,
    RATING_LABELS,
    WELCOME_MESSAGE,
)
from qna_bot.config.bot_config import BotConfig, ConfidenceThresholds
from qna_bot.config.feature_flags import ENABLE_ACTIVE_LEARNING, ENABLE_RATING_PROMPT
from qna_bot.qna.aggregator import AllSourcesFailedError, DecisionType, decide, query_sources
from qna_bot.qna.models import AnswerCandidate, FeedbackRecord, SourceResult
from qna_bot.telemetry import anonymize_user_id, track_event

logger = logging.getLogger(__name__)


class TurnOutcome(Enum):
    """What a single turn did, for logging and tests."""
    IGNORED = "ignored"
    ANSWERED = "answered"
    DEFAULT_MESSAGE = "default_message"
    CLARIFICATION_PROMPTED = "clarification_prompted"
    CLARIFICATION_RESOLVED = "clarification_resolved"
    CLARIFICATION_RETRY = "clarification_retry"
    ENDED_SILENTLY = "ended_silently"
    RATING_PROMPTED = "rating_prompted"
    GOODBYE = "goodbye"
    FAILED = "failed"


@dataclass(frozen=True)
class TurnInfo:
    """Identity of the current turn, passed explicitly instead of held globally."""
    conversation_id: str
    user_id: str
    user_name: Optional[str] = None


def match_selection(result: SourceResult, reply: str) -> Optional[AnswerCandidate]:
    """
    Resolve a clarification reply to one of the result's candidates.

    The reply matches a candidate question case-insensitively, or selects it by
    its 1-based option number.
    """
    normalized = reply.strip().lower()
    for candidate in result.candidates:
        if candidate.question_text.strip().lower() == normalized:
            return candidate

    if normalized.isdigit():
        index = int(normalized) - 1
        if 0 <= index < len(result.candidates):
            return result.candidates[index]
    return None


def is_none_of_the_above(result: SourceResult, reply: str) -> bool:
    normalized = reply.strip().lower()
    if normalized == NONE_OF_THE_ABOVE_OPTION.lower():
        return True
    return normalized.isdigit() and int(normalized) == len(result.candidates) + 1


class QnADialog:
    """
    Multi-source QnA dialog with confidence gating and active learning.

    Holds no per-conversation data itself; everything a conversation needs
    between turns lives in the ConversationStateStore.
    """

    def __init__(
        self,
        sources: Sequence,
        config: BotConfig,
        handler: Optional[ConfidenceHandler] = None,
        state_store: Optional[ConversationStateStore] = None,
        enable_rating: Optional[bool] = None,
        enable_active_learning: Optional[bool] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            sources: QnA sources in configuration order (e.g. QnAMakerService)
            config: Bot configuration
            handler: Renders answers and prompts (default ConfidenceHandler)
            state_store: Per-conversation state (default in-memory store)
            enable_rating: Override for ENABLE_RATING_PROMPT
            enable_active_learning: Override for ENABLE_ACTIVE_LEARNING
            rng: Random source for persona names
        """
        if not sources:
            raise ValueError("QnADialog needs at least one QnA source")

        self.sources = list(sources)
        self.config = config
        self.handler = handler or ConfidenceHandler()
        self.state_store = state_store or ConversationStateStore(ttl_seconds=config.state_ttl_seconds)
        self.enable_rating = enable_rating if enable_rating is not None else ENABLE_RATING_PROMPT
        self.enable_active_learning = (
            enable_active_learning if enable_active_learning is not None else ENABLE_ACTIVE_LEARNING
        )
        self._rng = rng or random.Random()
        self._feedback_tasks: Set[asyncio.Task] = set()
        self._source_thresholds: Dict[str, ConfidenceThresholds] = {
            source_config.name: source_config.thresholds(config.thresholds)
            for source_config in config.sources
        }

    # ------------------------------------------------------------------
    # Conversation lifecycle
    # ------------------------------------------------------------------

    async def on_bot_added(self, turn_context, conversation_id: str) -> str:
        """Introduce the bot under a persona name kept for this conversation."""
        state = await self.state_store.get(conversation_id)
        if not state["persona_name"]:
            state["persona_name"] = self._rng.choice(list(self.config.persona_names))
        await self.state_store.save(state)

        await self.handler.post_text(
            turn_context,
            WELCOME_MESSAGE.format(persona=state["persona_name"], role=self.config.bot_role),
        )
        return state["persona_name"]

    async def on_member_added(self, conversation_id: str, member_name: Optional[str]):
        """Remember the user's display name for the goodbye message."""
        if not member_name:
            return
        state = await self.state_store.get(conversation_id)
        state["member_name"] = member_name
        await self.state_store.save(state)

    # ------------------------------------------------------------------
    # Turn dispatch
    # ------------------------------------------------------------------

    async def on_message(self, turn_context, turn: TurnInfo, text: Optional[str]) -> TurnOutcome:
        """
        Handle one user utterance.

        Args:
            turn_context: Current turn; replies go through its send_activity
            turn: Conversation and user identity
            text: User's message text (mentions already removed)

        Returns:
            TurnOutcome describing what was done
        """
        if not text or not text.strip():
            logger.debug(f"Ignoring empty message in {turn.conversation_id[:16]}")
            return TurnOutcome.IGNORED

        utterance = text.strip()
        state = await self.state_store.get(turn.conversation_id)
        if turn.user_name and not state["member_name"]:
            state["member_name"] = turn.user_name

        try:
            if state["dialog_state"] is DialogState.AWAITING_SELECTION and state["pending_result"]:
                return await self._resolve_selection(turn_context, turn, state, utterance)
            if state["dialog_state"] is DialogState.AWAITING_RATING:
                return await self._finish_rating(turn_context, turn, state, utterance)
            if self.enable_rating and utterance.lower() in self.config.closing_words:
                return await self._prompt_rating(turn_context, state)
            return await self._answer(turn_context, turn, state, utterance)
        finally:
            await self.state_store.save(state)

    async def _answer(
        self,
        turn_context,
        turn: TurnInfo,
        state: ConversationState,
        utterance: str
    ) -> TurnOutcome:
        reset_dialog(state)

        try:
            results = await query_sources(self.sources, utterance, timeout=self.config.source_budget_seconds)
        except AllSourcesFailedError as e:
            logger.error(f"No QnA source answered for {turn.conversation_id[:16]}: {e}")
            track_event("qna_all_sources_failed", {
                "user_id": anonymize_user_id(turn.user_id),
                "source_count": len(self.sources),
            })
            return TurnOutcome.FAILED

        decision = decide(results, self.config.thresholds, self._source_thresholds)
        result = decision.result

        if decision.decision_type is DecisionType.NO_ANSWER:
            track_event("qna_no_answer", {
                "user_id": anonymize_user_id(turn.user_id),
                "query_length": len(utterance),
            })
            await self.handler.on_no_answer(turn_context, decision.default_message)
            return TurnOutcome.DEFAULT_MESSAGE

        if decision.decision_type is DecisionType.CONFIDENT:
            track_event("qna_answer_confident", {
                "source_id": result.source_id,
                "confidence_score": result.top.confidence_score,
                "candidate_count": len(result.candidates),
            })
            await self.handler.on_confident_answer(turn_context, result)
            return TurnOutcome.ANSWERED

        state["dialog_state"] = DialogState.AWAITING_SELECTION
        state["pending_result"] = result
        state["pending_feedback"] = FeedbackRecord(user_id=turn.user_id, user_question_text=utterance)
        track_event("qna_clarification_prompted", {
            "source_id": result.source_id,
            "top_score": result.top.confidence_score,
            "second_score": result.second.confidence_score if result.second else None,
            "option_count": len(result.candidates),
        })
        await self.handler.on_ambiguous_answer(turn_context, result, utterance)
        return TurnOutcome.CLARIFICATION_PROMPTED

    async def _resolve_selection(
        self,
        turn_context,
        turn: TurnInfo,
        state: ConversationState,
        reply: str
    ) -> TurnOutcome:
        result: SourceResult = state["pending_result"]
        candidate = match_selection(result, reply)

        if candidate is None:
            none_chosen = is_none_of_the_above(result, reply)
            if not none_chosen and state["selection_attempts"] < self.config.clarification_retries:
                state["selection_attempts"] += 1
                feedback = state["pending_feedback"]
                await self.handler.on_ambiguous_answer(
                    turn_context,
                    result,
                    feedback.user_question_text if feedback else reply,
                    retry=True,
                )
                return TurnOutcome.CLARIFICATION_RETRY

            track_event("qna_clarification_abandoned", {
                "source_id": result.source_id,
                "none_of_the_above": none_chosen,
                "attempts": state["selection_attempts"] + 1,
            })
            reset_dialog(state)
            return TurnOutcome.ENDED_SILENTLY

        feedback = state["pending_feedback"]
        reset_dialog(state)

        await self.handler.post_answer(turn_context, candidate)
        track_event("qna_clarification_resolved", {
            "source_id": result.source_id,
            "confidence_score": candidate.confidence_score,
        })

        if feedback is not None and self.enable_active_learning:
            feedback.chosen_question_text = candidate.question_text
            feedback.chosen_answer_text = candidate.answer_text
            feedback.qna_id = candidate.qna_id
            self._schedule_feedback(feedback, result.source_id)

        return TurnOutcome.CLARIFICATION_RESOLVED

    async def _prompt_rating(self, turn_context, state: ConversationState) -> TurnOutcome:
        reset_dialog(state)
        state["dialog_state"] = DialogState.AWAITING_RATING
        await self.handler.on_rating_prompt(turn_context)
        return TurnOutcome.RATING_PROMPTED

    async def _finish_rating(
        self,
        turn_context,
        turn: TurnInfo,
        state: ConversationState,
        reply: str
    ) -> TurnOutcome:
        rating = RATING_LABELS.get(reply)
        if rating:
            track_event("qna_rating_received", {
                "user_id": anonymize_user_id(turn.user_id),
                "rating": rating,
            })

        reset_dialog(state)
        member = state["member_name"] or DEFAULT_MEMBER_NAME
        await self.handler.post_text(turn_context, GOODBYE_MESSAGE.format(member=member))
        return TurnOutcome.GOODBYE

    # ------------------------------------------------------------------
    # Active learning
    # ------------------------------------------------------------------

    def _find_source(self, source_id: str):
        for source in self.sources:
            if getattr(source, "source_id", None) == source_id:
                return source
        return None

    def _schedule_feedback(self, record: FeedbackRecord, source_id: str):
        source = self._find_source(source_id)
        if source is None:
            logger.warning(f"No source {source_id} to report feedback to")
            return

        task = asyncio.create_task(self._report_feedback(source, record))
        self._feedback_tasks.add(task)
        task.add_done_callback(self._feedback_tasks.discard)

    async def _report_feedback(self, source, record: FeedbackRecord):
        try:
            reported = await source.report_feedback(record)
            track_event("qna_feedback_reported", {
                "source_id": source.source_id,
                "user_id": anonymize_user_id(record.user_id),
                "accepted": bool(reported),
            })
        except Exception as e:
            logger.warning(f"Failed to report feedback to {source.source_id}: {e}")
            track_event("qna_feedback_failed", {
                "source_id": source.source_id,
                "error": str(e),
            })

    async def wait_for_feedback_reports(self) -> List[asyncio.Task]:
        """Wait for background feedback reports to finish (shutdown, tests)."""
        pending = list(self._feedback_tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return pending
