"""
Simple telemetry module for tracking bot events.
Events are written to the log with their properties attached as `extra`,
where a log exporter (e.g. Application Insights) can pick them up.
"""
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


def anonymize_user_id(user_id: Optional[str]) -> str:
    """Truncate a channel user id so events never carry the full identifier."""
    return (user_id or "")[:8]


def track_event(event_name: str, properties: Dict[str, Any] = None):
    """
    Track a custom telemetry event.

    Args:
        event_name: Name of the event to track
        properties: Optional properties/metadata for the event
    """
    logger.info(f"Telemetry Event: {event_name}", extra={"properties": properties or {}})
