"""
Per-conversation state for the QnA dialog.

Each conversation carries an explicit state tag. A pending clarification keeps
the SourceResult that produced it, so the user's selection is resolved against
exactly the options that were shown.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional, TypedDict

from qna_bot.config.bot_config import DEFAULT_STATE_TTL_SECONDS
from qna_bot.qna.models import FeedbackRecord, SourceResult

logger = logging.getLogger(__name__)


class DialogState(Enum):
    AWAITING_UTTERANCE = "awaiting_utterance"
    AWAITING_SELECTION = "awaiting_selection"  # Clarification prompt shown
    AWAITING_RATING = "awaiting_rating"        # Goodbye rating prompt shown


class ConversationState(TypedDict):
    """State of one conversation between turns."""
    conversation_id: str
    dialog_state: DialogState

    # Clarification flow
    pending_result: Optional[SourceResult]
    pending_feedback: Optional[FeedbackRecord]  # user id + original question, completed on selection
    selection_attempts: int

    # Shown in the welcome and goodbye messages
    persona_name: Optional[str]
    member_name: Optional[str]

    last_activity_time: datetime


def new_conversation_state(conversation_id: str) -> ConversationState:
    return {
        "conversation_id": conversation_id,
        "dialog_state": DialogState.AWAITING_UTTERANCE,
        "pending_result": None,
        "pending_feedback": None,
        "selection_attempts": 0,
        "persona_name": None,
        "member_name": None,
        "last_activity_time": datetime.now(timezone.utc),
    }


def reset_dialog(state: ConversationState) -> ConversationState:
    """Return to AWAITING_UTTERANCE and drop any pending clarification."""
    state["dialog_state"] = DialogState.AWAITING_UTTERANCE
    state["pending_result"] = None
    state["pending_feedback"] = None
    state["selection_attempts"] = 0
    return state


class ConversationStateStore:
    """
    In-memory conversation state keyed by conversation id.

    Entries idle for `ttl_seconds` are treated as missing and are swept out
    whenever a new conversation starts. A TTL of 0 keeps them until the
    conversation clears them.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._states: Dict[str, ConversationState] = {}
        self._lock = asyncio.Lock()

    def _is_expired(self, state: ConversationState, now: datetime) -> bool:
        if self.ttl_seconds <= 0:
            return False
        return now - state["last_activity_time"] >= timedelta(seconds=self.ttl_seconds)

    def _cleanup_expired_states(self, now: datetime):
        """Remove idle conversations. Caller holds the lock."""
        expired = [
            cid for cid, state in self._states.items()
            if self._is_expired(state, now)
        ]
        for cid in expired:
            del self._states[cid]
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired conversation state(s)")

    async def get(self, conversation_id: str) -> ConversationState:
        """Return the conversation's state, creating a fresh one if missing or expired."""
        now = datetime.now(timezone.utc)
        async with self._lock:
            state = self._states.get(conversation_id)
            if state is not None and self._is_expired(state, now):
                logger.info(f"Conversation state for {conversation_id[:16]} expired")
                state = None
            if state is None:
                self._cleanup_expired_states(now)
                state = new_conversation_state(conversation_id)
                self._states[conversation_id] = state
            return state

    async def save(self, state: ConversationState):
        state["last_activity_time"] = datetime.now(timezone.utc)
        async with self._lock:
            self._states[state["conversation_id"]] = state

    async def clear(self, conversation_id: str):
        async with self._lock:
            self._states.pop(conversation_id, None)

    def __len__(self) -> int:
        return len(self._states)
