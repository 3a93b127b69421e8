"""
miraveja-orchestrator: Dependency-aware lifecycle manager for asyncio services.

Public API exports for the miraveja-orchestrator package.
"""

# Application exports
from miraveja_orchestrator.application.factories import create_lazy_factory, create_singleton_factory, service
from miraveja_orchestrator.application.orchestrator import ServiceOrchestrator

# Domain exports
from miraveja_orchestrator.domain.enums import LifecycleEvent, ServiceStatus
from miraveja_orchestrator.domain.exceptions import (
    CircularDependencyError,
    HealthCheckFailure,
    IllegalStateError,
    NotRegisteredError,
    OrchestratorException,
    RegistrationError,
    StartFailure,
    StopFailure,
    StopTimeout,
)
from miraveja_orchestrator.domain.interfaces import HealthCheckable, Startable, Stoppable
from miraveja_orchestrator.domain.models import (
    OrchestratorConfig,
    OrchestratorMetrics,
    ServiceDefinition,
    ServiceEvent,
    ServiceInfo,
    ServiceInstance,
)

__version__ = "0.1.0"

__all__ = [
    # Orchestrator
    "ServiceOrchestrator",
    # Factories
    "create_singleton_factory",
    "create_lazy_factory",
    "service",
    # Enums
    "ServiceStatus",
    "LifecycleEvent",
    # Capabilities
    "Startable",
    "Stoppable",
    "HealthCheckable",
    # Models
    "ServiceDefinition",
    "ServiceInstance",
    "ServiceInfo",
    "ServiceEvent",
    "OrchestratorConfig",
    "OrchestratorMetrics",
    # Exceptions
    "OrchestratorException",
    "RegistrationError",
    "CircularDependencyError",
    "NotRegisteredError",
    "IllegalStateError",
    "StartFailure",
    "StopFailure",
    "StopTimeout",
    "HealthCheckFailure",
]
