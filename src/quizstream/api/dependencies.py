from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from openai import AsyncOpenAI

from quizstream.api.services.generation_service import GenerationService
from quizstream.api.services.quiz_service import QuizService
from quizstream.api.websocket.manager import WebSocketManager
from quizstream.core.constants import get_settings


async def get_openai_client(request: Request) -> AsyncOpenAI:
    """Get the shared upstream client from application state."""
    return request.app.state.openai_client


async def get_ws_manager(request: Request) -> WebSocketManager:
    return request.app.state.ws_manager


def get_generation_service(client: Annotated[AsyncOpenAI, Depends(get_openai_client)]) -> GenerationService:
    """Provide a generation service bound to the shared client."""
    settings = get_settings()
    return GenerationService(client, model=settings.model, temperature=settings.temperature)


def get_quiz_service(
    generator: Annotated[GenerationService, Depends(get_generation_service)],
    ws_manager: Annotated[WebSocketManager, Depends(get_ws_manager)],
) -> QuizService:
    return QuizService(generator, ws_manager, default_count=get_settings().default_question_count)


# Type aliases for cleaner route signatures
Client = Annotated[AsyncOpenAI, Depends(get_openai_client)]
Quizzes = Annotated[QuizService, Depends(get_quiz_service)]
