from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from miraveja_orchestrator.domain.enums import LifecycleEvent, ServiceStatus

ServiceFactory = Callable[[Dict[str, Any], Dict[str, Any]], Any]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ServiceDefinition(BaseModel):
    """Value object describing how to build and configure a managed service.

    Attributes:
        name: Unique service name.
        version: Service version string.
        description: Optional human readable description.
        dependencies: Names of services that must be started first, in order.
        singleton: Whether the product is meant to be shared.
        auto_start: Whether the service starts as soon as it is registered.
        factory: Callable receiving the started dependencies and the config.
        config: Configuration passed to the factory.
        metadata: Free-form descriptive data.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(..., min_length=1, description="Unique name of the service.")
    version: str = Field(default="1.0.0", description="Version of the service.")
    description: Optional[str] = Field(default=None, description="Human readable description.")
    dependencies: Tuple[str, ...] = Field(
        default=(),
        description="Names of the services this service depends on, in resolution order.",
    )
    singleton: bool = Field(default=True, description="Whether the product is shared.")
    auto_start: bool = Field(default=False, description="Start the service as soon as it is registered.")
    factory: ServiceFactory = Field(
        ..., description="Factory receiving (dependencies, config) and returning the service or an awaitable."
    )
    config: Dict[str, Any] = Field(default_factory=dict, description="Configuration passed to the factory.")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form descriptive data.")

    @field_validator("dependencies", mode="before")
    @classmethod
    def _unique_dependencies(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return tuple(dict.fromkeys(value))
        return value


class InstanceMetadata(BaseModel):
    """Recovery bookkeeping attached to a service instance.

    Attributes:
        retry_count: Consecutive recovery attempts since the last successful start.
        last_recovery_attempt: When a recovery was last scheduled.
    """

    retry_count: int = Field(default=0, description="Consecutive recovery attempts.")
    last_recovery_attempt: Optional[datetime] = Field(default=None, description="Time of the last recovery attempt.")


class ServiceInstance(BaseModel):
    """Mutable runtime record tracking one managed service.

    Attributes:
        name: Service name.
        service: The product built by the factory, set only while started.
        status: Current lifecycle status.
        created_at: When the instance record was created.
        started_at: When the service last reached STARTED.
        stopped_at: When the service last reached STOPPED.
        dependencies: Snapshot of the definition's dependencies.
        dependents: Names of started services that depend on this one.
        error: Last start or stop failure.
        metadata: Recovery bookkeeping.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., description="Name of the service.")
    service: Optional[Any] = Field(default=None, description="Product owned by this instance.")
    status: ServiceStatus = Field(default=ServiceStatus.REGISTERED, description="Current lifecycle status.")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time of the record.")
    started_at: Optional[datetime] = Field(default=None, description="Time the service last started.")
    stopped_at: Optional[datetime] = Field(default=None, description="Time the service last stopped.")
    dependencies: Tuple[str, ...] = Field(default=(), description="Dependencies snapshot.")
    dependents: Set[str] = Field(default_factory=set, description="Services depending on this one.")
    error: Optional[BaseException] = Field(default=None, description="Last recorded failure.")
    metadata: InstanceMetadata = Field(default_factory=InstanceMetadata, description="Recovery bookkeeping.")


class ServiceInfo(BaseModel):
    """Definition and instance of a service, as returned by introspection."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    definition: Optional[ServiceDefinition] = None
    instance: Optional[ServiceInstance] = None


class ServiceEvent(BaseModel):
    """Payload delivered to event listeners.

    Attributes:
        event: The lifecycle event.
        service_name: Service the event is about, if any.
        error: Failure associated with the event, if any.
        data: Event specific values (duration, retry count, config, ...).
        timestamp: When the event was emitted.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    event: LifecycleEvent
    service_name: Optional[str] = None
    error: Optional[BaseException] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)


class OrchestratorConfig(BaseModel):
    """Runtime configuration of the orchestrator. Durations are in seconds.

    Attributes:
        enable_health_checks: Run the periodic health supervisor.
        health_check_interval: Seconds between health sweeps.
        health_check_timeout: Seconds before a health check counts as unhealthy.
        enable_metrics: Maintain metric counters.
        enable_auto_recovery: Restart failed or unhealthy services automatically.
        max_retries: Recovery attempts before giving up.
        retry_delay: Base delay, multiplied by the retry count.
        shutdown_timeout: Seconds a stop hook may take.
        enable_circular_dependency_detection: Check for cycles on registration.
    """

    model_config = ConfigDict(frozen=True)

    enable_health_checks: bool = True
    health_check_interval: float = Field(default=30.0, gt=0)
    health_check_timeout: float = Field(default=5.0, gt=0)
    enable_metrics: bool = True
    enable_auto_recovery: bool = True
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    shutdown_timeout: float = Field(default=10.0, gt=0)
    enable_circular_dependency_detection: bool = True


class OrchestratorMetrics(BaseModel):
    """Snapshot of orchestrator counters and derived rates."""

    services_registered: int = 0
    services_started: int = 0
    services_stopped: int = 0
    services_errored: int = 0
    total_start_time: float = 0.0
    average_start_time: float = 0.0
    services_running: int = 0
    health_checks: int = 0
    recovery_attempts: int = 0
    uptime: float = 0.0
    health_check_rate: float = 0.0
