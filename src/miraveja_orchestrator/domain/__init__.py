"""
Domain layer - Core orchestration models and rules.

This layer contains the statuses, events, errors and models of service orchestration.
It has no dependencies on other layers.
"""

from .enums import LifecycleEvent, ServiceStatus
from .exceptions import (
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
from .interfaces import DefinitionFilter, HealthCheckable, IOrchestrator, Startable, Stoppable
from .models import (
    InstanceMetadata,
    OrchestratorConfig,
    OrchestratorMetrics,
    ServiceDefinition,
    ServiceEvent,
    ServiceFactory,
    ServiceInfo,
    ServiceInstance,
    utc_now,
)

__all__ = [
    # Enums
    "ServiceStatus",
    "LifecycleEvent",
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
    # Interfaces
    "IOrchestrator",
    "Startable",
    "Stoppable",
    "HealthCheckable",
    "DefinitionFilter",
    # Models
    "ServiceDefinition",
    "ServiceFactory",
    "ServiceInstance",
    "InstanceMetadata",
    "ServiceInfo",
    "ServiceEvent",
    "OrchestratorConfig",
    "OrchestratorMetrics",
    "utc_now",
]
