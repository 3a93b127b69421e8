"""
Application layer - Orchestration use cases.

This layer contains the algorithms and controllers that drive service lifecycles.
It depends only on the Domain layer.
"""

from .definition_store import ServiceDefinitionStore
from .dependency_graph import DependencyGraph
from .events import EventBus, EventListener
from .factories import create_lazy_factory, create_singleton_factory, definition_from_class, service
from .health import HealthSupervisor
from .instance_tracker import ServiceInstanceTracker
from .lifecycle import LifecycleController
from .metrics import MetricsCollector
from .orchestrator import ServiceOrchestrator
from .recovery import RecoverySupervisor
from .resolution_chain import ResolutionChain

__all__ = [
    "ServiceOrchestrator",
    "LifecycleController",
    "HealthSupervisor",
    "RecoverySupervisor",
    "DependencyGraph",
    "ResolutionChain",
    "ServiceDefinitionStore",
    "ServiceInstanceTracker",
    "MetricsCollector",
    "EventBus",
    "EventListener",
    "create_singleton_factory",
    "create_lazy_factory",
    "service",
    "definition_from_class",
]
