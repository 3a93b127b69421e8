"""
Testing utilities module.

Provides helpers and utilities for testing applications using miraveja-orchestrator.
"""

from .utilities import EventRecorder, TestOrchestrator, create_mock_orchestrator

__all__ = [
    "TestOrchestrator",
    "create_mock_orchestrator",
    "EventRecorder",
]
