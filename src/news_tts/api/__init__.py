"""
FastAPI REST API Layer for news-tts.

This package defines all HTTP endpoints:
    - routes.py: Batch, merge status, health and metrics endpoints
    - schemas.py: Request/response Pydantic models
    - dependencies.py: FastAPI dependency injection
"""
