from enum import Enum


class ServiceStatus(str, Enum):
    """Lifecycle status of a managed service instance.

    Attributes:
        REGISTERED: Instance record exists but no start was attempted yet.
        STARTING: Dependencies and factory are being resolved.
        STARTED: Product is built and running.
        STOPPING: Dependents and stop hook are being torn down.
        STOPPED: Product was released after a clean stop.
        ERROR: Last start or stop failed.
    """

    REGISTERED = "registered"
    STARTING = "starting"
    STARTED = "started"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


class LifecycleEvent(str, Enum):
    """Events published by the orchestrator."""

    SERVICE_REGISTERED = "service_registered"
    SERVICE_UNREGISTERED = "service_unregistered"
    SERVICE_STARTING = "service_starting"
    SERVICE_STARTED = "service_started"
    SERVICE_START_FAILED = "service_start_failed"
    AUTO_START_FAILED = "auto_start_failed"
    SERVICE_STOPPING = "service_stopping"
    SERVICE_STOPPED = "service_stopped"
    SERVICE_STOP_FAILED = "service_stop_failed"
    SERVICE_UNHEALTHY = "service_unhealthy"
    HEALTH_CHECK_FAILED = "health_check_failed"
    SERVICE_RECOVERY_ATTEMPT = "service_recovery_attempt"
    SERVICE_RECOVERED = "service_recovered"
    SERVICE_RECOVERY_FAILED = "service_recovery_failed"
    SERVICE_RECOVERY_GIVEN_UP = "service_recovery_given_up"
    CIRCULAR_DEPENDENCY_DETECTED = "circular_dependency_detected"
    UNKNOWN_DEPENDENCY = "unknown_dependency"
    BULK_START_ERROR = "bulk_start_error"
    BULK_STOP_ERROR = "bulk_stop_error"
    CONFIG_UPDATED = "config_updated"

    def __str__(self) -> str:
        return self.value
