"""
QnA Maker runtime client.
Queries a knowledge base for ranked answers and reports active-learning feedback.
"""
import asyncio
import logging
import random
from typing import Any, Dict, List, Optional

import httpx

from qna_bot.config.bot_config import (
    BACKOFF_BASE_SECONDS,
    BACKOFF_JITTER_SECONDS,
    DEFAULT_MAX_RETRIES,
    QnASourceConfig,
)
from .models import AnswerCandidate, FeedbackRecord, SourceResult

logger = logging.getLogger(__name__)

# QnA Maker scores answers on a 0-100 scale
QNA_MAKER_SCORE_SCALE = 100.0


class QnAServiceError(Exception):
    """Raised when the QnA Maker runtime cannot be reached or rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class QnAMakerService:
    """QnA Maker knowledge base client for one configured source."""

    def __init__(
        self,
        config: QnASourceConfig,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: Knowledge base connection and answer settings
            max_retries: Retries after the first attempt for 5xx and timeouts
            timeout: HTTP timeout per request in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.config = config
        self.max_retries = max_retries
        self.timeout = timeout
        self._transport = transport
        self.base_url = f"{config.host.rstrip('/')}/knowledgebases/{config.knowledge_base_id}"

    @property
    def source_id(self) -> str:
        return self.config.name

    @property
    def default_message(self) -> str:
        return self.config.default_message

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"EndpointKey {self.config.endpoint_key}",
            "Content-Type": "application/json",
        }

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Exponential backoff with jitter for QnA Maker requests.

        4xx responses are returned to the caller without retrying.

        Raises:
            QnAServiceError: After the retries are exhausted
        """
        attempts = self.max_retries + 1
        last_error: Optional[str] = None

        for attempt in range(attempts):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.request(method, url, headers=self._headers(), **kwargs)
                if response.status_code < 500:
                    return response
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    f"QnA Maker 5xx from {self.source_id} (attempt {attempt + 1}/{attempts}): {response.status_code}"
                )
            except httpx.TimeoutException as e:
                last_error = f"timeout: {e}"
                logger.warning(f"QnA Maker timeout from {self.source_id} (attempt {attempt + 1}/{attempts}): {e}")
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.error(f"QnA Maker error from {self.source_id} (attempt {attempt + 1}/{attempts}): {e}")

            if attempt < attempts - 1:
                delay = (2 ** attempt) * BACKOFF_BASE_SECONDS + random.uniform(0, BACKOFF_JITTER_SECONDS)
                await asyncio.sleep(delay)

        raise QnAServiceError(f"QnA Maker {self.source_id} failed after {attempts} attempts: {last_error}")

    def _parse_answers(self, payload: Dict[str, Any]) -> List[AnswerCandidate]:
        candidates: List[AnswerCandidate] = []
        for answer in payload.get("answers") or []:
            questions = answer.get("questions") or []
            score = float(answer.get("score", 0.0)) / QNA_MAKER_SCORE_SCALE
            if not questions or score < self.config.score_threshold:
                continue
            candidates.append(AnswerCandidate(
                question_text=questions[0],
                answer_text=answer.get("answer", ""),
                confidence_score=min(max(score, 0.0), 1.0),
                qna_id=answer.get("id"),
            ))

        # Stable sort keeps the service order for equal scores
        candidates.sort(key=lambda c: c.confidence_score, reverse=True)
        return candidates[:self.config.top]

    async def query(self, utterance: str) -> SourceResult:
        """
        Ask the knowledge base for answers to an utterance.

        Args:
            utterance: User's question

        Returns:
            SourceResult with candidates above the score threshold

        Raises:
            QnAServiceError: On a rejected request or when retries are exhausted
        """
        response = await self._request_with_retry(
            "POST",
            f"{self.base_url}/generateAnswer",
            json={"question": utterance, "top": self.config.top},
        )
        if response.status_code != 200:
            raise QnAServiceError(
                f"QnA Maker {self.source_id} rejected query: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise QnAServiceError(f"QnA Maker {self.source_id} returned invalid JSON") from e

        candidates = self._parse_answers(payload)
        logger.debug(f"QnA Maker {self.source_id} returned {len(candidates)} candidate(s)")
        return SourceResult(
            source_id=self.source_id,
            candidates=tuple(candidates),
            default_message=self.config.default_message,
        )

    async def report_feedback(self, record: FeedbackRecord) -> bool:
        """
        Send a confirmed clarification choice to the knowledge base's train endpoint.

        Returns:
            True when the record was accepted, False when it was skipped

        Raises:
            QnAServiceError: When the knowledge base rejects the record
        """
        if record.qna_id is None:
            logger.info(f"Skipping feedback for {self.source_id}: chosen answer has no qnaId")
            return False

        response = await self._request_with_retry(
            "POST",
            f"{self.base_url}/train",
            json=record.to_train_payload(),
        )
        if response.status_code >= 300:
            raise QnAServiceError(
                f"QnA Maker {self.source_id} rejected feedback: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        logger.info(f"Reported feedback to {self.source_id} for qnaId={record.qna_id}")
        return True
