"""
Bot Framework activity handler for the QnA bot.
Translates incoming activities into QnA dialog calls.
"""
import logging
import re
import unicodedata
from typing import List, Optional

from botbuilder.core import ActivityHandler, TurnContext
from botbuilder.schema import ChannelAccount

from qna_bot.api.bot.cards import SELECTION_VALUE_KEY
from qna_bot.api.bot.qna_dialog import QnADialog, TurnInfo

logger = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r'<at>.*?</at>', re.IGNORECASE)


def remove_mention_text(text: Optional[str]) -> str:
    """
    Remove bot mention markup from message text.

    Channels such as Teams include mentions as <at>BotName</at> in the text.
    """
    if not text:
        return ""
    cleaned = MENTION_PATTERN.sub('', text)
    return ' '.join(cleaned.split()).strip()


def normalize_message_text(text: Optional[str]) -> str:
    """Normalize message text for reliable matching against prompt options."""
    if not text:
        return ""

    # Normalize unicode characters (e.g., smart quotes, full-width variants)
    normalized = unicodedata.normalize("NFKC", text)

    # Remove zero-width and formatting characters, keeping the ZWJ used by emoji sequences
    normalized = "".join(
        ch for ch in normalized
        if unicodedata.category(ch) != "Cf" or ch == "\u200d"
    )

    normalized = normalized.replace("\u00A0", " ")
    return " ".join(normalized.split()).strip()


def extract_message_text(turn_context: TurnContext) -> str:
    """
    Get the user's text for this turn.

    Card buttons on channels without imBack support post their choice in
    `activity.value` instead of `activity.text`.
    """
    activity = turn_context.activity
    text = remove_mention_text(activity.text)
    if not text and isinstance(activity.value, dict):
        text = str(activity.value.get(SELECTION_VALUE_KEY) or "")
    return normalize_message_text(text)


class QnABot(ActivityHandler):
    """Support bot answering questions from QnA Maker knowledge bases."""

    def __init__(self, dialog: QnADialog):
        self.dialog = dialog

    async def on_message_activity(self, turn_context: TurnContext):
        activity = turn_context.activity
        user = activity.from_property
        turn = TurnInfo(
            conversation_id=activity.conversation.id if activity.conversation else "",
            user_id=user.id if user else "",
            user_name=user.name if user else None,
        )

        outcome = await self.dialog.on_message(turn_context, turn, extract_message_text(turn_context))
        logger.info(f"Turn {activity.id} in {turn.conversation_id[:16]} -> {outcome.value}")

    async def on_members_added_activity(
        self,
        members_added: List[ChannelAccount],
        turn_context: TurnContext
    ):
        activity = turn_context.activity
        conversation_id = activity.conversation.id if activity.conversation else ""
        bot_id = activity.recipient.id if activity.recipient else None

        for member in members_added:
            if member.id == bot_id:
                persona = await self.dialog.on_bot_added(turn_context, conversation_id)
                logger.info(f"Bot joined {conversation_id[:16]} as {persona}")
            else:
                await self.dialog.on_member_added(conversation_id, member.name)
