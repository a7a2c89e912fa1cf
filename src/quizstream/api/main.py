from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from quizstream import __version__
from quizstream.api.middleware.exception_handlers import register_exception_handlers
from quizstream.api.middleware.request_context import RequestContextMiddleware
from quizstream.api.routes import generate, health, quiz
from quizstream.api.services.generation_service import GenerationService
from quizstream.api.websocket.manager import WebSocketManager
from quizstream.core.constants import PROJECT_ROOT, get_settings
from quizstream.utils.client_factory import create_client_from_settings
from quizstream.utils.logger import configure_uvicorn_logging, logger

# Load .env into os.environ so plain os.getenv lookups (DEBUG) see it too
load_dotenv(PROJECT_ROOT / ".env")

settings = get_settings()

# Module level, so reload workers pick it up too
configure_uvicorn_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the shared upstream client and socket registry; drain both on exit."""
    # One upstream client (and connection pool) shared by every session
    logger.info(f"Configuring {settings.api_provider} generation client (model: {settings.model})")
    client = create_client_from_settings(settings)
    app.state.openai_client = client
    app.state.generation_service = GenerationService(
        client,
        model=settings.model,
        temperature=settings.temperature,
    )

    ws_manager = WebSocketManager(
        idle_timeout_seconds=settings.ws_idle_timeout,
        max_connections=settings.ws_max_connections,
        max_connections_per_session=settings.ws_max_connections_per_session,
    )
    app.state.ws_manager = ws_manager
    await ws_manager.start_idle_checker()

    try:
        yield
    finally:
        logger.info("Shutting down quiz relay")
        await ws_manager.graceful_shutdown(timeout=settings.shutdown_timeout)
        await client.close()
        logger.info("Generation client closed")


app = FastAPI(
    title="Quiz Stream API",
    description="Streams multiple-choice quiz questions from a language model as they are generated.",
    version=__version__,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoints for monitoring and orchestration"},
        {"name": "Quiz", "description": "Batch quiz generation"},
        {"name": "WebSocket", "description": "Real-time quiz streaming"},
    ],
)

register_exception_handlers(app)

# Middleware is executed in reverse order of registration
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(generate.router, prefix="/api", tags=["Quiz"])

# WebSocket routes (protocol-level, not under /api)
app.include_router(quiz.router, prefix="/ws", tags=["WebSocket"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "quizstream.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_config=None,
    )
