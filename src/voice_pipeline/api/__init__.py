"""
FastAPI REST API Layer for voice-pipeline.

This package defines all HTTP endpoints:
    - routes.py: Synthesis, cloning, credits, health and metrics endpoints
    - schemas.py: Request/response Pydantic models
    - dependencies.py: FastAPI dependency injection
"""
