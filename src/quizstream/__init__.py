"""
Quiz Stream - Streaming quiz generation over WebSocket
======================================================

FastAPI service that asks a language model for multiple-choice questions and
relays each question to the client as soon as its line of output is complete.

Key Features:
    - **Incremental Extraction**: Newline-delimited JSON parsed out of an arbitrary fragment stream
    - **Fault Isolation**: A malformed line skips one question, never the quiz
    - **WebSocket Relay**: Per-question frames with cooperative cancellation
    - **OpenAI-Compatible Upstream**: Hosted OpenAI API or a local Ollama server
    - **Enterprise Logging**: Structured JSON logs with rotation and session correlation

Modules:
    api: FastAPI routes, services, middleware, and WebSocket handling
    core: Record extraction, prompts, configuration constants
    models: Pydantic models for API payloads, events and errors
    utils: Logging and upstream client construction
"""

__version__ = "0.1.0"
