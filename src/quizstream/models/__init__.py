"""
Models Module - Data Models and Type Definitions
=================================================

All models use Pydantic v2 for validation and JSON serialization.

Modules:
    api_models: Request and response bodies of the HTTP and WebSocket surfaces
    event_models: Frames sent to clients during a generation session
    error_models: Error codes and the REST/WebSocket error envelopes
"""
