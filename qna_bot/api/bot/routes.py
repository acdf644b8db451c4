"""
Bot Framework webhook endpoint for the QnA bot.
Receives channel activities and hands them to the adapter, which validates the
bearer token of every request before the bot sees it.
"""
import logging
import traceback
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

# Microsoft Bot Framework imports
from botbuilder.core import BotFrameworkAdapter, BotFrameworkAdapterSettings, TurnContext, MessageFactory
from botbuilder.schema import Activity

from qna_bot.api.bot.bot import QnABot
from qna_bot.api.bot.confidence_handlers import get_confidence_handler
from qna_bot.api.bot.conversation_state import ConversationStateStore
from qna_bot.api.bot.messages import TURN_ERROR_MESSAGE
from qna_bot.api.bot.qna_dialog import QnADialog
from qna_bot.config.bot_config import BotConfig, load_bot_config
from qna_bot.qna.service import QnAMakerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["bot"])


@dataclass
class BotRuntime:
    """Everything needed to process activities, built once per process."""
    config: BotConfig
    adapter: BotFrameworkAdapter
    dialog: QnADialog
    bot: QnABot


async def on_turn_error(turn_context: TurnContext, error: Exception):
    """Last-resort handler for exceptions escaping the bot during a turn."""
    logger.error(
        f"Unhandled error in turn: {error}\n"
        f"{''.join(traceback.format_exception(type(error), error, error.__traceback__))}"
    )
    try:
        await turn_context.send_activity(MessageFactory.text(TURN_ERROR_MESSAGE))
    except Exception as send_error:
        logger.error(f"Failed to send turn error message: {send_error}")


def build_bot_runtime(
    config: Optional[BotConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BotRuntime:
    """
    Wire configuration, QnA sources, dialog, bot and adapter together.

    Args:
        config: Bot configuration (loaded from the environment when None)
        transport: Optional httpx transport shared by the QnA clients

    Returns:
        BotRuntime
    """
    config = config or load_bot_config()

    sources = [
        QnAMakerService(
            source_config,
            max_retries=config.max_retries,
            timeout=config.source_timeout_seconds,
            transport=transport,
        )
        for source_config in config.sources
    ]
    dialog = QnADialog(
        sources=sources,
        config=config,
        handler=get_confidence_handler(),
        state_store=ConversationStateStore(ttl_seconds=config.state_ttl_seconds),
    )

    settings = BotFrameworkAdapterSettings(
        app_id=config.app_id,
        app_password=config.app_password,
    )
    adapter = BotFrameworkAdapter(settings)
    adapter.on_turn_error = on_turn_error

    logger.info(f"Bot runtime ready with sources: {[s.source_id for s in sources]}")
    return BotRuntime(config=config, adapter=adapter, dialog=dialog, bot=QnABot(dialog))


# Singleton instance
_bot_runtime: Optional[BotRuntime] = None


def get_bot_runtime() -> BotRuntime:
    """Get or create the singleton bot runtime."""
    global _bot_runtime
    if _bot_runtime is None:
        _bot_runtime = build_bot_runtime()
    return _bot_runtime


def peek_bot_runtime() -> Optional[BotRuntime]:
    """Return the runtime if it has been built, without building it."""
    return _bot_runtime


def reset_bot_runtime():
    """Drop the singleton (tests and config reloads)."""
    global _bot_runtime
    _bot_runtime = None


@router.post("/messages")
async def messages(request: Request):
    """
    Bot Framework messaging endpoint.
    Handles all incoming activities (messages, conversation updates).

    Authentication is done by the adapter from the Authorization header.
    """
    if "application/json" not in request.headers.get("Content-Type", ""):
        return JSONResponse(content={"error": "Expected application/json"}, status_code=415)

    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(content={"error": "Invalid JSON body"}, status_code=400)

    if not isinstance(body, dict) or not body.get("type"):
        return JSONResponse(content={"error": "Body is not a Bot Framework activity"}, status_code=400)

    activity = Activity().deserialize(body)
    auth_header = request.headers.get("Authorization", "")
    logger.info(f"Received activity: {activity.type}")

    runtime = get_bot_runtime()
    try:
        invoke_response = await runtime.adapter.process_activity(activity, auth_header, runtime.bot.on_turn)
    except PermissionError as e:
        logger.warning(f"Rejected activity authentication: {e}")
        return JSONResponse(content={"error": "Unauthorized"}, status_code=401)
    except Exception as e:
        logger.error(f"Error processing activity: {e}", exc_info=True)
        return JSONResponse(content={"error": str(e)}, status_code=500)

    if invoke_response:
        return JSONResponse(content=invoke_response.body, status_code=invoke_response.status)
    return Response(status_code=200)
