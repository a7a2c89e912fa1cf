from __future__ import annotations

import asyncio

from typing import Any

from fastapi import APIRouter, Request

from quizstream import __version__
from quizstream.api.dependencies import Client
from quizstream.core.constants import get_settings

router = APIRouter()

#: Seconds the readiness check waits for the generation service
READINESS_TIMEOUT_SECONDS = 5.0


@router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Health check endpoint with connection and upstream configuration status."""
    settings = get_settings()

    ws_manager = getattr(request.app.state, "ws_manager", None)
    ws_stats = ws_manager.get_stats() if ws_manager else {"error": "not initialized"}

    is_healthy = ws_manager is not None and not ws_stats.get("shutting_down", False)

    return {
        "status": "healthy" if is_healthy else "degraded",
        "version": __version__,
        "generation": {
            "provider": settings.api_provider,
            "model": settings.model,
        },
        "websocket": ws_stats,
    }


@router.get("/health/ready")
async def readiness_check(client: Client) -> dict[str, Any]:
    """Readiness: the generation service answers a model listing."""
    try:
        await asyncio.wait_for(client.models.list(), timeout=READINESS_TIMEOUT_SECONDS)
        return {"ready": True}
    except Exception as e:
        return {"ready": False, "error": str(e) or type(e).__name__}


@router.get("/health/live")
async def liveness_check() -> dict[str, Any]:
    """Liveness (just confirms process is running)."""
    return {"alive": True}
