"""
QnA Bot Service - FastAPI application.

Hosts the Bot Framework messaging endpoint and health checks.
Run with: uvicorn qna_bot.main:app --port 3978
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from qna_bot import __version__
from qna_bot.api.bot.routes import router as bot_router, get_bot_runtime, peek_bot_runtime
from qna_bot.error_handlers import register_error_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - startup and shutdown."""
    logger.info("QnA bot service starting up...")
    try:
        get_bot_runtime()
    except Exception as e:
        # Requests will answer 503 until the configuration is fixed
        logger.error(f"Bot runtime not available at startup: {e}")

    yield

    runtime = peek_bot_runtime()
    if runtime is not None:
        pending = await runtime.dialog.wait_for_feedback_reports()
        if pending:
            logger.info(f"Flushed {len(pending)} pending feedback report(s)")
    logger.info("QnA bot service shutting down...")


# Create FastAPI app
app = FastAPI(
    title="QnA Bot Service",
    description="Customer-support bot answering from QnA Maker knowledge bases",
    version=__version__,
    lifespan=lifespan
)

register_error_handlers(app)
app.include_router(bot_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "qna-bot",
        "version": __version__
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "qna-bot",
        "status": "running",
        "endpoints": {
            "health": "/health",
            "messages": "/api/messages"
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=3978)
