"""
Infrastructure layer - Framework integrations and testing helpers.

The FastAPI integration needs the ``fastapi`` extra and is imported explicitly:

    from miraveja_orchestrator.infrastructure.fastapi_integration import create_lifespan
"""

from . import testing

__all__ = [
    "testing",
]
