"""
Shared pytest configuration and fixtures for QnA bot tests.
Provides bot configuration and turn context mocks.
"""

import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from qna_bot.config.bot_config import BotConfig, ConfidenceThresholds
from tests.fixtures.qna_fixtures import make_source_config


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )


@pytest.fixture
def bot_config():
    """Two-source configuration with default thresholds."""
    return BotConfig(
        sources=[make_source_config("faq"), make_source_config("support")],
        thresholds=ConfidenceThresholds(),
        source_timeout_seconds=1.0,
        persona_names=("Neha",),
    )


@pytest.fixture
def mock_turn_context():
    """Mock Bot Framework turn context."""
    context = MagicMock()
    context.activity = MagicMock()
    context.activity.id = "activity-1"
    context.activity.text = "test query"
    context.activity.value = None
    context.activity.conversation.id = "conv-123"
    context.activity.from_property.id = "user-123456789"
    context.activity.from_property.name = "Test User"
    context.activity.recipient.id = "bot-1"
    context.send_activity = AsyncMock()
    return context
