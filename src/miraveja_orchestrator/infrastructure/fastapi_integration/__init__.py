"""
FastAPI integration module.

Provides helpers for running a ServiceOrchestrator inside a FastAPI application.
"""

from .integration import create_fastapi_dependency, create_lifespan, create_status_router

__all__ = [
    "create_lifespan",
    "create_fastapi_dependency",
    "create_status_router",
]
