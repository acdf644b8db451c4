"""
Data models for QnA answers and active-learning feedback.

Candidates and source results are immutable once a source returns them so a
result held in conversation state cannot drift between the clarification
prompt and the user's selection.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class AnswerCandidate:
    """One question/answer pair returned by a knowledge base."""
    question_text: str
    answer_text: str
    confidence_score: float  # 0.0 - 1.0
    qna_id: Optional[int] = None


@dataclass(frozen=True)
class SourceResult:
    """
    Answers from a single source for a single utterance.

    Candidates are ordered by descending confidence, as returned by the source.
    The default message is shown when no candidate qualifies.
    """
    source_id: str
    candidates: Tuple[AnswerCandidate, ...] = ()
    default_message: str = ""

    @property
    def has_candidates(self) -> bool:
        return len(self.candidates) > 0

    @property
    def top(self) -> Optional[AnswerCandidate]:
        return self.candidates[0] if self.candidates else None

    @property
    def second(self) -> Optional[AnswerCandidate]:
        return self.candidates[1] if len(self.candidates) > 1 else None

    @property
    def questions(self) -> Tuple[str, ...]:
        return tuple(c.question_text for c in self.candidates)


@dataclass
class FeedbackRecord:
    """Which candidate a user confirmed during a clarification prompt."""
    user_id: str
    user_question_text: str
    chosen_question_text: Optional[str] = None
    chosen_answer_text: Optional[str] = None
    qna_id: Optional[int] = None

    def to_train_payload(self) -> Dict[str, Any]:
        """Build the QnA Maker `train` request body for this record."""
        return {
            "feedbackRecords": [
                {
                    "userId": self.user_id,
                    "userQuestion": self.user_question_text,
                    "qnaId": self.qna_id,
                }
            ]
        }
