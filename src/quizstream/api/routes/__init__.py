"""Route modules for the Quiz Stream API.

HTTP routes are mounted under /api; the WebSocket route (quiz) under /ws.
"""

from __future__ import annotations

from . import generate, health, quiz

__all__ = ["generate", "health", "quiz"]
