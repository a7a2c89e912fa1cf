from __future__ import annotations

import asyncio
import contextlib
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from quizstream.api.middleware.request_context import create_websocket_context, get_request_id
from quizstream.api.services.generation_service import GenerationService
from quizstream.api.services.quiz_service import QuizService
from quizstream.api.websocket.errors import WSCloseCode, parse_ws_message, send_ws_error
from quizstream.api.websocket.manager import WebSocketManager
from quizstream.api.websocket.task_manager import CancellationToken
from quizstream.core.constants import (
    MSG_TYPE_CANCEL,
    MSG_TYPE_GENERATE,
    MSG_TYPE_PING,
    WS_INTERRUPT_GRACE_SECONDS,
    WS_KEEPALIVE_INTERVAL_SECONDS,
    get_settings,
)
from quizstream.models.api_models import GenerateMessage
from quizstream.models.error_models import ErrorCode
from quizstream.utils.logger import logger

router = APIRouter()


@router.websocket("/quiz/{session_id}")
async def quiz_websocket(websocket: WebSocket, session_id: str) -> None:
    """WebSocket endpoint streaming quiz questions as they are generated."""
    ws_manager: WebSocketManager = websocket.app.state.ws_manager
    generator: GenerationService = websocket.app.state.generation_service

    # The ws_ id tags this connection's log lines and owns its cancellation token
    peer = websocket.client.host if websocket.client else None
    connection_id = create_websocket_context(session_id=session_id, client_ip=peer).request_id

    if not await ws_manager.connect(websocket, session_id):
        # Accept first so the client receives the close code
        await websocket.accept()
        await websocket.close(
            code=WSCloseCode.SERVICE_UNAVAILABLE,
            reason="Service unavailable - connection limit reached",
        )
        return

    quiz_service = QuizService(generator, ws_manager, default_count=get_settings().default_question_count)

    # Track the running generation for this connection
    active_task: asyncio.Task[None] | None = None

    try:
        keepalive_task = asyncio.create_task(_keepalive(websocket))
        try:
            async for text in websocket.iter_text():
                await ws_manager.touch(websocket)

                try:
                    data = json.loads(text)
                except json.JSONDecodeError:
                    data = None

                if not isinstance(data, dict):
                    await send_ws_error(
                        websocket,
                        code=ErrorCode.WS_MESSAGE_INVALID,
                        message="Messages must be JSON objects",
                        session_id=session_id,
                        recoverable=True,
                    )
                    continue

                msg_type = data.get("type")

                if msg_type == MSG_TYPE_GENERATE:
                    request = await parse_ws_message(websocket, GenerateMessage, data, session_id)
                    if request is None:
                        continue

                    # A new request replaces the running one
                    if active_task and not active_task.done():
                        await quiz_service.interrupt(session_id, connection_id)
                        try:
                            await asyncio.wait_for(active_task, timeout=WS_INTERRUPT_GRACE_SECONDS)
                        except asyncio.TimeoutError:
                            # wait_for already cancelled the task
                            logger.warning(f"Previous generation didn't exit within timeout for {session_id}")

                    active_task = asyncio.create_task(
                        _handle_generate(request, session_id, connection_id, quiz_service, websocket)
                    )

                elif msg_type == MSG_TYPE_CANCEL:
                    logger.info(f"Cancel message received for session {session_id}")
                    if active_task and not active_task.done():
                        await quiz_service.interrupt(session_id, connection_id)
                    else:
                        logger.info(f"No active generation to cancel for session {session_id}")

                elif msg_type == MSG_TYPE_PING:
                    continue

                else:
                    await send_ws_error(
                        websocket,
                        code=ErrorCode.WS_MESSAGE_INVALID,
                        message=f"Unknown message type: {msg_type}",
                        session_id=session_id,
                        recoverable=True,
                    )

        finally:
            keepalive_task.cancel()
            # Disconnect cancels the running generation
            if active_task and not active_task.done():
                active_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await active_task
    except WebSocketDisconnect:
        logger.debug(f"Quiz socket closed by client for {session_id}")
    except RuntimeError as e:
        # "WebSocket is not connected" after the client went away mid-request
        if "not connected" not in str(e).lower():
            raise
    finally:
        await ws_manager.disconnect(websocket, session_id)


async def _handle_generate(
    request: GenerateMessage,
    session_id: str,
    connection_id: str,
    quiz_service: QuizService,
    websocket: WebSocket,
) -> None:
    """Run one generation session (background task)."""
    try:
        await quiz_service.generate(
            session_id=session_id,
            topic=request.topic,
            count=request.count,
            difficulty=request.difficulty,
            cancellation_token=CancellationToken(),
            connection_id=connection_id,
        )
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(
            f"Quiz generation error: {e}",
            session_id=session_id,
            request_id=get_request_id(),
            exc_info=True,
        )
        await send_ws_error(
            websocket,
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Quiz generation failed: {type(e).__name__}",
            session_id=session_id,
            recoverable=True,
        )


async def _keepalive(websocket: WebSocket) -> None:
    """Ping the client every WS_KEEPALIVE_INTERVAL_SECONDS until a send fails."""
    while True:
        await asyncio.sleep(WS_KEEPALIVE_INTERVAL_SECONDS)
        try:
            await websocket.send_json({"type": MSG_TYPE_PING})
        except Exception:
            break
