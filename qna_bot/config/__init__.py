"""
Configuration modules for the QnA bot.
Centralized configuration for QnA sources, confidence thresholds and feature flags.
"""
from .bot_config import (
    BotConfig,
    ConfidenceThresholds,
    ConfigurationError,
    QnASourceConfig,
    load_bot_config,
)
from .feature_flags import (
    ENABLE_ACTIVE_LEARNING,
    ENABLE_CHOICE_CARDS,
    ENABLE_RATING_PROMPT,
)

__all__ = [
    "BotConfig",
    "ConfidenceThresholds",
    "ConfigurationError",
    "QnASourceConfig",
    "load_bot_config",
    "ENABLE_ACTIVE_LEARNING",
    "ENABLE_CHOICE_CARDS",
    "ENABLE_RATING_PROMPT",
]
