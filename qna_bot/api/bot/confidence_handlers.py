"""
Confidence response handlers for the QnA dialog.

The dialog decides *what* happened (confident answer, ambiguous answer, no
answer); these handlers decide *how* it is shown to the user. Swap in a
subclass to customize prompts or answer rendering without touching the
selection logic.
"""
import logging
import uuid
from typing import Any, List, Optional

from botbuilder.core import MessageFactory, CardFactory
from botbuilder.schema import Activity, ActionTypes, Attachment, CardAction

from qna_bot.api.bot.cards import create_choice_card
from qna_bot.api.bot.messages import (
    ANSWER_SELECTION_PROMPT,
    NONE_OF_THE_ABOVE_OPTION,
    RATING_OPTIONS,
    RATING_SELECTION_PROMPT,
    SELECTION_RETRY_PROMPT,
)
from qna_bot.config.feature_flags import ENABLE_CHOICE_CARDS
from qna_bot.qna.attachments import extract_attachments
from qna_bot.qna.models import AnswerCandidate, SourceResult
from qna_bot.telemetry import track_event

logger = logging.getLogger(__name__)


def build_answer_activity(answer_text: str) -> Activity:
    """
    Build the outgoing message for a knowledge base answer.

    Attachment markup in the answer becomes real attachments.
    """
    text, specs = extract_attachments(answer_text)
    if not specs:
        return MessageFactory.text(text)

    attachments = [
        Attachment(
            content_type=spec.content_type,
            content_url=spec.content_url,
            name=spec.name,
            thumbnail_url=spec.thumbnail_url,
        )
        for spec in specs
    ]
    return MessageFactory.list(attachments, text=text or None)


class ConfidenceHandler:
    """
    Renders the three outcomes of answer selection.

    All output goes through `turn_context.send_activity`; each method sends
    exactly one activity.
    """

    def __init__(self, enable_cards: Optional[bool] = None):
        """
        Args:
            enable_cards: Override for the choice card feature flag.
                          If None, uses global ENABLE_CHOICE_CARDS flag.
        """
        self.enable_cards = enable_cards if enable_cards is not None else ENABLE_CHOICE_CARDS
        self.correlation_id = str(uuid.uuid4())

    def _choice_activity(self, prompt: str, options: List[str], original_query: Optional[str] = None) -> Activity:
        if self.enable_cards:
            card = create_choice_card(prompt, options, original_query=original_query)
            return MessageFactory.attachment(CardFactory.adaptive_card(card["content"]))

        actions = [
            CardAction(type=ActionTypes.im_back, title=option, value=option)
            for option in options
        ]
        return MessageFactory.suggested_actions(actions, text=prompt)

    async def on_confident_answer(self, turn_context, result: SourceResult) -> Any:
        """Post the top candidate's answer."""
        top = result.top
        logger.info(f"Confident answer from {result.source_id} (score {top.confidence_score:.2f})")
        return await self.post_answer(turn_context, top)

    async def on_ambiguous_answer(
        self,
        turn_context,
        result: SourceResult,
        utterance: str,
        retry: bool = False
    ) -> Any:
        """
        Post the clarification prompt: every candidate question plus "None of the above".

        Args:
            turn_context: Current turn
            result: Result whose candidates are offered
            utterance: User's original question
            retry: True when re-prompting after an unmatched reply
        """
        options = list(result.questions) + [NONE_OF_THE_ABOVE_OPTION]
        prompt = SELECTION_RETRY_PROMPT if retry else ANSWER_SELECTION_PROMPT
        logger.info(f"Ambiguous answer from {result.source_id} - offering {len(result.candidates)} option(s)")

        if self.enable_cards:
            track_event("qna_card_generated", {
                "card_type": "clarification",
                "correlation_id": self.correlation_id
            })

        activity = self._choice_activity(prompt, options, original_query=utterance)
        return await turn_context.send_activity(activity)

    async def on_no_answer(self, turn_context, default_message: str) -> Any:
        """Post the source's default message."""
        logger.info("No qualifying answer - sending default message")
        return await turn_context.send_activity(MessageFactory.text(default_message))

    async def post_answer(self, turn_context, candidate: AnswerCandidate) -> Any:
        return await turn_context.send_activity(build_answer_activity(candidate.answer_text))

    async def on_rating_prompt(self, turn_context) -> Any:
        """Post the goodbye rating prompt."""
        activity = self._choice_activity(RATING_SELECTION_PROMPT, list(RATING_OPTIONS))
        return await turn_context.send_activity(activity)

    async def post_text(self, turn_context, text: str) -> Any:
        return await turn_context.send_activity(MessageFactory.text(text))


def get_confidence_handler(enable_cards: Optional[bool] = None) -> ConfidenceHandler:
    """
    Factory function to get a confidence handler instance.

    Args:
        enable_cards: Optional override for card generation feature flag

    Returns:
        ConfidenceHandler instance
    """
    return ConfidenceHandler(enable_cards=enable_cards)
