"""
Utils Module - Infrastructure Utilities
=======================================

Modules:
    logger: JSON structured logging with rotation and request correlation
    client_factory: AsyncOpenAI client with streaming timeouts and optional upstream HTTP logging
"""
