"""
QnA bot configuration.

Sources and thresholds are built once at startup from environment variables
(or a JSON sources file) into explicit config objects that are passed to the
dialog, instead of being discovered from class metadata at runtime.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

load_dotenv('.env.local')

logger = logging.getLogger(__name__)

# Confidence gate defaults
DEFAULT_HIGH_CONFIDENCE_SCORE = 0.99  # Top answer at or above this is always accepted
DEFAULT_HIGH_CONFIDENCE_DELTA = 0.20  # Lead over the runner-up needed to skip clarification

DEFAULT_SCORE_THRESHOLD = 0.5
DEFAULT_TOP = 3
DEFAULT_SOURCE_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_STATE_TTL_SECONDS = 24 * 60 * 60

# Retry backoff: attempt n waits BACKOFF_BASE_SECONDS * 2**n plus up to BACKOFF_JITTER_SECONDS
BACKOFF_BASE_SECONDS = 0.5
BACKOFF_JITTER_SECONDS = 0.5

DEFAULT_CLOSING_WORDS = ("thanks", "done", "bye", "close", "fine")
DEFAULT_PERSONA_NAMES = ("Neha", "Adela", "Ginni", "Roop", "Shalini")
DEFAULT_BOT_ROLE = "Student Services Executive"
DEFAULT_NO_ANSWER_MESSAGE = (
    "Sorry, I don't understand your question. Feel free to rephrase your question."
)


class ConfigurationError(Exception):
    """Raised when the bot cannot be configured from the environment."""
    pass


@dataclass(frozen=True)
class ConfidenceThresholds:
    """Thresholds of the confidence gate."""
    high_confidence_score: float = DEFAULT_HIGH_CONFIDENCE_SCORE
    high_confidence_delta: float = DEFAULT_HIGH_CONFIDENCE_DELTA

    def __post_init__(self):
        if not 0.0 <= self.high_confidence_score <= 1.0:
            raise ConfigurationError(
                f"high_confidence_score must be within [0, 1], got {self.high_confidence_score}"
            )
        if not 0.0 <= self.high_confidence_delta <= 1.0:
            raise ConfigurationError(
                f"high_confidence_delta must be within [0, 1], got {self.high_confidence_delta}"
            )


class QnASourceConfig(BaseModel):
    """Connection and answer settings for one QnA Maker knowledge base."""
    model_config = ConfigDict(frozen=True)

    host: str = Field(..., min_length=1, description="Runtime endpoint, e.g. https://mybot.azurewebsites.net/qnamaker")
    knowledge_base_id: str = Field(..., min_length=1)
    endpoint_key: str = Field(..., min_length=1)
    source_id: Optional[str] = None
    default_message: str = DEFAULT_NO_ANSWER_MESSAGE
    score_threshold: float = Field(DEFAULT_SCORE_THRESHOLD, ge=0.0, le=1.0)
    top: int = Field(DEFAULT_TOP, ge=1, le=50)
    high_confidence_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    high_confidence_delta: Optional[float] = Field(None, ge=0.0, le=1.0)

    @property
    def name(self) -> str:
        return self.source_id or self.knowledge_base_id

    def thresholds(self, defaults: ConfidenceThresholds) -> ConfidenceThresholds:
        """Bot-wide thresholds with this source's overrides applied."""
        return ConfidenceThresholds(
            high_confidence_score=(
                self.high_confidence_score
                if self.high_confidence_score is not None
                else defaults.high_confidence_score
            ),
            high_confidence_delta=(
                self.high_confidence_delta
                if self.high_confidence_delta is not None
                else defaults.high_confidence_delta
            ),
        )


@dataclass
class BotConfig:
    """Complete bot configuration, built once at startup."""
    sources: List[QnASourceConfig]
    thresholds: ConfidenceThresholds = field(default_factory=ConfidenceThresholds)
    source_timeout_seconds: float = DEFAULT_SOURCE_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    clarification_retries: int = 0
    state_ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS
    closing_words: Tuple[str, ...] = DEFAULT_CLOSING_WORDS
    persona_names: Tuple[str, ...] = DEFAULT_PERSONA_NAMES
    bot_role: str = DEFAULT_BOT_ROLE
    app_id: str = ""
    app_password: str = ""

    def __post_init__(self):
        if not self.sources:
            raise ConfigurationError("At least one QnA source must be configured")
        if self.source_timeout_seconds <= 0:
            raise ConfigurationError("source_timeout_seconds must be positive")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries cannot be negative")
        if self.clarification_retries < 0:
            raise ConfigurationError("clarification_retries cannot be negative")

        names = [source.name for source in self.sources]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError(
                f"QnA source names must be unique, duplicated: {duplicates}. "
                f"Set source_id on sources sharing a knowledge base"
            )

    @property
    def source_budget_seconds(self) -> float:
        """
        Time allowed for one source to answer, covering every retry.

        Each HTTP attempt may take `source_timeout_seconds`; retries add their
        worst-case backoff on top.
        """
        attempts = self.max_retries + 1
        backoff = sum(
            BACKOFF_BASE_SECONDS * (2 ** attempt) + BACKOFF_JITTER_SECONDS
            for attempt in range(self.max_retries)
        )
        return attempts * self.source_timeout_seconds + backoff


def _split_list(value: Optional[str], default: Tuple[str, ...]) -> Tuple[str, ...]:
    if not value:
        return default
    items = tuple(item.strip() for item in value.split(",") if item.strip())
    return items or default


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from e


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from e


def load_sources_file(path: str) -> List[QnASourceConfig]:
    """Read a JSON list of source definitions."""
    sources_path = Path(path)
    if not sources_path.exists():
        raise ConfigurationError(f"QnA sources file not found: {sources_path}")

    try:
        with sources_path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"QnA sources file is not valid JSON: {e}") from e

    if isinstance(raw, dict):
        raw = raw.get("sources", [])
    if not isinstance(raw, list):
        raise ConfigurationError("QnA sources file must contain a list of sources")

    return [_build_source(entry) for entry in raw]


def _build_source(entry: Dict[str, Any]) -> QnASourceConfig:
    try:
        return QnASourceConfig(**entry)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid QnA source definition: {e}") from e
    except TypeError as e:
        raise ConfigurationError(f"QnA source definition must be an object: {entry!r}") from e


def load_bot_config(env: Optional[Mapping[str, str]] = None) -> BotConfig:
    """
    Build the bot configuration from environment variables.

    Sources come from the JSON file named by QNA_SOURCES_FILE or, when that is
    unset, from the single-source QNA_HOST / QNA_KNOWLEDGE_BASE_ID /
    QNA_ENDPOINT_KEY variables.

    Args:
        env: Mapping to read instead of os.environ (used by tests)

    Returns:
        BotConfig

    Raises:
        ConfigurationError: If no source is configured or a value is invalid
    """
    env = os.environ if env is None else env

    sources_file = env.get("QNA_SOURCES_FILE", "").strip()
    if sources_file:
        sources = load_sources_file(sources_file)
    elif env.get("QNA_KNOWLEDGE_BASE_ID"):
        sources = [_build_source({
            "host": env.get("QNA_HOST", "").strip(),
            "knowledge_base_id": env.get("QNA_KNOWLEDGE_BASE_ID", "").strip(),
            "endpoint_key": env.get("QNA_ENDPOINT_KEY", "").strip(),
            "default_message": env.get("QNA_DEFAULT_MESSAGE") or DEFAULT_NO_ANSWER_MESSAGE,
            "score_threshold": _get_float(env, "QNA_SCORE_THRESHOLD", DEFAULT_SCORE_THRESHOLD),
            "top": _get_int(env, "QNA_TOP", DEFAULT_TOP),
        })]
    else:
        sources = []

    config = BotConfig(
        sources=sources,
        thresholds=ConfidenceThresholds(
            high_confidence_score=_get_float(env, "QNA_HIGH_CONFIDENCE_SCORE", DEFAULT_HIGH_CONFIDENCE_SCORE),
            high_confidence_delta=_get_float(env, "QNA_HIGH_CONFIDENCE_DELTA", DEFAULT_HIGH_CONFIDENCE_DELTA),
        ),
        source_timeout_seconds=_get_float(env, "QNA_SOURCE_TIMEOUT_SECONDS", DEFAULT_SOURCE_TIMEOUT_SECONDS),
        max_retries=_get_int(env, "QNA_MAX_RETRIES", DEFAULT_MAX_RETRIES),
        clarification_retries=_get_int(env, "QNA_CLARIFICATION_RETRIES", 0),
        state_ttl_seconds=_get_int(env, "QNA_STATE_TTL_SECONDS", DEFAULT_STATE_TTL_SECONDS),
        closing_words=tuple(w.lower() for w in _split_list(env.get("QNA_CLOSING_WORDS"), DEFAULT_CLOSING_WORDS)),
        persona_names=_split_list(env.get("BOT_PERSONA_NAMES"), DEFAULT_PERSONA_NAMES),
        bot_role=env.get("BOT_ROLE") or DEFAULT_BOT_ROLE,
        app_id=env.get("MICROSOFT_APP_ID", ""),
        app_password=env.get("MICROSOFT_APP_PASSWORD", ""),
    )

    logger.info(
        f"Loaded bot config: {len(config.sources)} source(s), "
        f"score>={config.thresholds.high_confidence_score}, "
        f"delta>{config.thresholds.high_confidence_delta}, "
        f"timeout={config.source_timeout_seconds}s per request, {config.source_budget_seconds:.1f}s per source"
    )
    return config
