"""
Conversation flow tests for the QnA dialog.
Drives the dialog turn by turn against in-memory sources and a mock turn context.
"""
import dataclasses
import random

import pytest

from qna_bot.api.bot.confidence_handlers import ConfidenceHandler
from qna_bot.api.bot.conversation_state import ConversationStateStore, DialogState
from qna_bot.api.bot.messages import (
    ANSWER_SELECTION_PROMPT,
    RATING_OPTIONS,
    RATING_SELECTION_PROMPT,
    SELECTION_RETRY_PROMPT,
)
from qna_bot.api.bot.qna_dialog import (
    QnADialog,
    TurnInfo,
    TurnOutcome,
    is_none_of_the_above,
    match_selection,
)
from qna_bot.qna.models import SourceResult
from qna_bot.qna.service import QnAServiceError
from tests.fixtures.qna_fixtures import FakeSource, make_result, sent_activities

TURN = TurnInfo(conversation_id="conv-123", user_id="user-123456789", user_name="Test User")

AMBIGUOUS = [("Reset password", 0.70), ("Unlock account", 0.55), ("Change email", 0.52)]


def build_dialog(bot_config, sources, **kwargs):
    kwargs.setdefault("handler", ConfidenceHandler(enable_cards=False))
    kwargs.setdefault("state_store", ConversationStateStore())
    kwargs.setdefault("enable_rating", True)
    kwargs.setdefault("enable_active_learning", True)
    return QnADialog(sources=sources, config=bot_config, **kwargs)


def option_titles(activity):
    return [action.title for action in activity.suggested_actions.actions]


@pytest.fixture
def faq():
    return FakeSource("faq", make_result("faq", AMBIGUOUS))


@pytest.fixture
def support():
    return FakeSource("support", SourceResult(source_id="support", default_message="No answer from support."))


@pytest.fixture
def dialog(bot_config, faq, support):
    return build_dialog(bot_config, [faq, support])


class TestSelectionMatching:

    @pytest.fixture
    def result(self):
        return make_result("faq", AMBIGUOUS)

    @pytest.mark.parametrize("reply", ["Unlock account", "unlock ACCOUNT", "  unlock account  ", "2"])
    def test_matches_question_or_option_number(self, result, reply):
        assert match_selection(result, reply).question_text == "Unlock account"

    @pytest.mark.parametrize("reply", ["unlock", "0", "4", "something else"])
    def test_unmatched_reply(self, result, reply):
        assert match_selection(result, reply) is None

    @pytest.mark.parametrize("reply", ["None of the above", "none of the above", "4"])
    def test_none_of_the_above(self, result, reply):
        assert is_none_of_the_above(result, reply) is True

    def test_other_reply_is_not_none_of_the_above(self, result):
        assert is_none_of_the_above(result, "3") is False


class TestAnswering:

    @pytest.mark.asyncio
    async def test_confident_answer_is_posted_directly(self, bot_config, mock_turn_context):
        faq = FakeSource("faq", make_result("faq", [("Reset password", 0.95), ("Unlock account", 0.40)]))
        dialog = build_dialog(bot_config, [faq])

        outcome = await dialog.on_message(mock_turn_context, TURN, "How do I reset my password?")

        assert outcome is TurnOutcome.ANSWERED
        activities = sent_activities(mock_turn_context)
        assert len(activities) == 1
        assert activities[0].text == "Answer to Reset password"
        assert faq.queries == ["How do I reset my password?"]

    @pytest.mark.asyncio
    async def test_ambiguous_answer_prompts_with_every_candidate(self, dialog, mock_turn_context):
        outcome = await dialog.on_message(mock_turn_context, TURN, "password")

        assert outcome is TurnOutcome.CLARIFICATION_PROMPTED
        prompt = sent_activities(mock_turn_context)[0]
        assert prompt.text == ANSWER_SELECTION_PROMPT
        assert option_titles(prompt) == [
            "Reset password", "Unlock account", "Change email", "None of the above"
        ]

        state = await dialog.state_store.get("conv-123")
        assert state["dialog_state"] is DialogState.AWAITING_SELECTION
        assert state["pending_result"].source_id == "faq"
        assert state["pending_feedback"].user_question_text == "password"

    @pytest.mark.asyncio
    async def test_best_source_wins(self, bot_config, mock_turn_context):
        weak = FakeSource("faq", make_result("faq", [("Opening hours", 0.60)]))
        strong = FakeSource("support", make_result("support", [("Reset password", 0.90)]))
        dialog = build_dialog(bot_config, [weak, strong])

        await dialog.on_message(mock_turn_context, TURN, "password")

        assert sent_activities(mock_turn_context)[0].text == "Answer to Reset password"

    @pytest.mark.asyncio
    async def test_default_message_is_sent_exactly_once(self, bot_config, mock_turn_context):
        sources = [
            FakeSource("faq", SourceResult(source_id="faq", default_message="No answer from faq.")),
            FakeSource("support", SourceResult(source_id="support", default_message="No answer from support.")),
        ]
        dialog = build_dialog(bot_config, sources)

        outcome = await dialog.on_message(mock_turn_context, TURN, "what is the meaning of life")

        assert outcome is TurnOutcome.DEFAULT_MESSAGE
        activities = sent_activities(mock_turn_context)
        assert [a.text for a in activities] == ["No answer from faq."]

    @pytest.mark.asyncio
    async def test_failed_source_does_not_block_others(self, bot_config, mock_turn_context):
        broken = FakeSource("faq", error=QnAServiceError("down", status_code=503))
        working = FakeSource("support", make_result("support", [("Reset password", 0.90)]))
        dialog = build_dialog(bot_config, [broken, working])

        outcome = await dialog.on_message(mock_turn_context, TURN, "password")

        assert outcome is TurnOutcome.ANSWERED
        assert sent_activities(mock_turn_context)[0].text == "Answer to Reset password"

    @pytest.mark.asyncio
    async def test_all_sources_failed_posts_nothing(self, bot_config, mock_turn_context):
        sources = [
            FakeSource("faq", error=QnAServiceError("down")),
            FakeSource("support", error=QnAServiceError("down")),
        ]
        dialog = build_dialog(bot_config, sources)

        outcome = await dialog.on_message(mock_turn_context, TURN, "password")

        assert outcome is TurnOutcome.FAILED
        mock_turn_context.send_activity.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", [None, "", "   "])
    async def test_empty_utterance_is_ignored(self, dialog, faq, mock_turn_context, text):
        outcome = await dialog.on_message(mock_turn_context, TURN, text)

        assert outcome is TurnOutcome.IGNORED
        assert faq.queries == []
        mock_turn_context.send_activity.assert_not_called()


class TestClarification:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", ["Unlock account", "UNLOCK ACCOUNT", "2"])
    async def test_selection_posts_chosen_answer(self, dialog, mock_turn_context, reply):
        await dialog.on_message(mock_turn_context, TURN, "password")
        outcome = await dialog.on_message(mock_turn_context, TURN, reply)

        assert outcome is TurnOutcome.CLARIFICATION_RESOLVED
        assert sent_activities(mock_turn_context)[-1].text == "Answer to Unlock account"

        state = await dialog.state_store.get("conv-123")
        assert state["dialog_state"] is DialogState.AWAITING_UTTERANCE
        assert state["pending_result"] is None

    @pytest.mark.asyncio
    async def test_selection_reports_feedback_after_answer(self, dialog, faq, mock_turn_context):
        sends_before_report = []
        faq.report_feedback.side_effect = (
            lambda record: sends_before_report.append(mock_turn_context.send_activity.call_count) or True
        )

        await dialog.on_message(mock_turn_context, TURN, "password")
        await dialog.on_message(mock_turn_context, TURN, "Unlock account")
        await dialog.wait_for_feedback_reports()

        faq.report_feedback.assert_awaited_once()
        record = faq.report_feedback.await_args.args[0]
        assert record.user_id == "user-123456789"
        assert record.user_question_text == "password"
        assert record.chosen_question_text == "Unlock account"
        assert record.qna_id == 2
        # Clarification prompt and the answer were both sent before the report
        assert sends_before_report == [2]

    @pytest.mark.asyncio
    async def test_feedback_goes_only_to_originating_source(self, bot_config, mock_turn_context):
        faq = FakeSource("faq", SourceResult(source_id="faq"))
        support = FakeSource("support", make_result("support", AMBIGUOUS))
        dialog = build_dialog(bot_config, [faq, support])

        await dialog.on_message(mock_turn_context, TURN, "password")
        await dialog.on_message(mock_turn_context, TURN, "Reset password")
        await dialog.wait_for_feedback_reports()

        support.report_feedback.assert_awaited_once()
        faq.report_feedback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_feedback_failure_does_not_affect_user(self, dialog, faq, mock_turn_context):
        faq.report_feedback.side_effect = QnAServiceError("train endpoint down", status_code=500)

        await dialog.on_message(mock_turn_context, TURN, "password")
        outcome = await dialog.on_message(mock_turn_context, TURN, "Reset password")
        await dialog.wait_for_feedback_reports()

        assert outcome is TurnOutcome.CLARIFICATION_RESOLVED
        assert sent_activities(mock_turn_context)[-1].text == "Answer to Reset password"

    @pytest.mark.asyncio
    async def test_active_learning_disabled_skips_feedback(self, bot_config, faq, mock_turn_context):
        dialog = build_dialog(bot_config, [faq], enable_active_learning=False)

        await dialog.on_message(mock_turn_context, TURN, "password")
        await dialog.on_message(mock_turn_context, TURN, "Reset password")
        await dialog.wait_for_feedback_reports()

        faq.report_feedback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_none_of_the_above_ends_silently(self, dialog, faq, mock_turn_context):
        await dialog.on_message(mock_turn_context, TURN, "password")
        outcome = await dialog.on_message(mock_turn_context, TURN, "None of the above")
        await dialog.wait_for_feedback_reports()

        assert outcome is TurnOutcome.ENDED_SILENTLY
        assert len(sent_activities(mock_turn_context)) == 1
        faq.report_feedback.assert_not_awaited()
        assert faq.queries == ["password"]

    @pytest.mark.asyncio
    async def test_unmatched_reply_ends_silently_without_retries(self, dialog, faq, mock_turn_context):
        await dialog.on_message(mock_turn_context, TURN, "password")
        outcome = await dialog.on_message(mock_turn_context, TURN, "something unrelated")

        assert outcome is TurnOutcome.ENDED_SILENTLY
        assert len(sent_activities(mock_turn_context)) == 1
        assert faq.queries == ["password"]

        # Next utterance is a fresh question
        await dialog.on_message(mock_turn_context, TURN, "password again")
        assert faq.queries == ["password", "password again"]

    @pytest.mark.asyncio
    async def test_unmatched_reply_reprompts_within_retry_budget(self, bot_config, faq, mock_turn_context):
        config = dataclasses.replace(bot_config, clarification_retries=1)
        dialog = build_dialog(config, [faq])

        await dialog.on_message(mock_turn_context, TURN, "password")
        first = await dialog.on_message(mock_turn_context, TURN, "huh?")
        second = await dialog.on_message(mock_turn_context, TURN, "still no")

        assert first is TurnOutcome.CLARIFICATION_RETRY
        assert second is TurnOutcome.ENDED_SILENTLY
        retry_prompt = sent_activities(mock_turn_context)[1]
        assert retry_prompt.text == SELECTION_RETRY_PROMPT
        assert option_titles(retry_prompt)[-1] == "None of the above"

    @pytest.mark.asyncio
    async def test_conversations_are_isolated(self, dialog, mock_turn_context):
        other = TurnInfo(conversation_id="conv-456", user_id="user-987654321")

        await dialog.on_message(mock_turn_context, TURN, "password")
        outcome = await dialog.on_message(mock_turn_context, other, "Unlock account")

        # Treated as a new question in the other conversation
        assert outcome is TurnOutcome.CLARIFICATION_PROMPTED
        state = await dialog.state_store.get("conv-123")
        assert state["dialog_state"] is DialogState.AWAITING_SELECTION


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_welcome_uses_persona_and_role(self, dialog, mock_turn_context):
        persona = await dialog.on_bot_added(mock_turn_context, "conv-123")

        assert persona == "Neha"
        welcome = sent_activities(mock_turn_context)[0].text
        assert welcome.startswith("Hello, I am Neha, your Student Services Executive.")

    @pytest.mark.asyncio
    async def test_persona_is_stable_per_conversation(self, bot_config, faq, mock_turn_context):
        config = dataclasses.replace(bot_config, persona_names=("Neha", "Adela", "Ginni", "Roop", "Shalini"))
        dialog = build_dialog(config, [faq], rng=random.Random(7))

        first = await dialog.on_bot_added(mock_turn_context, "conv-123")
        second = await dialog.on_bot_added(mock_turn_context, "conv-123")

        assert first == second
        assert first in config.persona_names

    @pytest.mark.asyncio
    async def test_closing_word_prompts_for_rating(self, dialog, faq, mock_turn_context):
        outcome = await dialog.on_message(mock_turn_context, TURN, "Thanks")

        assert outcome is TurnOutcome.RATING_PROMPTED
        assert faq.queries == []
        prompt = sent_activities(mock_turn_context)[0]
        assert prompt.text == RATING_SELECTION_PROMPT
        assert option_titles(prompt) == list(RATING_OPTIONS)

    @pytest.mark.asyncio
    async def test_rating_reply_ends_with_goodbye(self, dialog, mock_turn_context):
        await dialog.on_member_added("conv-123", "Priya")
        await dialog.on_message(mock_turn_context, TURN, "bye")
        outcome = await dialog.on_message(mock_turn_context, TURN, RATING_OPTIONS[0])

        assert outcome is TurnOutcome.GOODBYE
        assert sent_activities(mock_turn_context)[-1].text.startswith("Nice speaking with you Priya.")

        state = await dialog.state_store.get("conv-123")
        assert state["dialog_state"] is DialogState.AWAITING_UTTERANCE

    @pytest.mark.asyncio
    async def test_goodbye_falls_back_to_turn_user_name(self, dialog, mock_turn_context):
        await dialog.on_message(mock_turn_context, TURN, "done")
        await dialog.on_message(mock_turn_context, TURN, "no thanks")

        assert sent_activities(mock_turn_context)[-1].text.startswith("Nice speaking with you Test User.")

    @pytest.mark.asyncio
    async def test_closing_words_are_questions_when_rating_disabled(self, bot_config, faq, mock_turn_context):
        dialog = build_dialog(bot_config, [faq], enable_rating=False)

        outcome = await dialog.on_message(mock_turn_context, TURN, "thanks")

        assert outcome is TurnOutcome.CLARIFICATION_PROMPTED
        assert faq.queries == ["thanks"]

    def test_requires_a_source(self, bot_config):
        with pytest.raises(ValueError):
            QnADialog(sources=[], config=bot_config)
