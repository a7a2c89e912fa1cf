"""
Core Layer - Record Extraction, Prompts and Configuration
=========================================================

Modules:
    extractor: Incremental newline-delimited JSON extraction from a fragment stream
    prompts: System prompt and per-request prompt builder for quiz generation
    constants: Configuration values and Pydantic settings validation
"""
