from typing import Any, List, Optional


class OrchestratorException(Exception):
    """Base exception for orchestration errors."""


class RegistrationError(OrchestratorException):
    """Raised when a service definition cannot be registered.

    This occurs when:
    - A service with the same name is already registered.
    - The definition has an empty name or a non-callable factory.
    """


class CircularDependencyError(OrchestratorException):
    """Raised when a circular dependency is detected.

    Attributes:
        cycle: Service names forming the cycle, first name repeated at the end.
    """

    def __init__(self, cycle: List[str]) -> None:
        self.cycle = cycle
        message = f"Circular dependency detected: {' -> '.join(cycle)}"
        super().__init__(message)

    @property
    def service_name(self) -> str:
        """Name of the service where the cycle was entered."""
        return self.cycle[0]


class NotRegisteredError(OrchestratorException):
    """Raised when an operation targets a service name that is not registered.

    Attributes:
        service_name: The unknown service name.
    """

    def __init__(self, service_name: str) -> None:
        self.service_name = service_name
        super().__init__(f"Service '{service_name}' is not registered")


class IllegalStateError(OrchestratorException):
    """Raised when an operation is not allowed in the service's current status."""


class StartFailure(OrchestratorException):
    """Raised when a service or one of its dependencies fails to start.

    The underlying exception is available as ``__cause__``.

    Attributes:
        service_name: The service whose start failed.
        reason: Optional description of the failure.
    """

    def __init__(self, service_name: str, reason: Optional[str] = None) -> None:
        self.service_name = service_name
        self.reason = reason
        message = f"Failed to start service '{service_name}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class StopFailure(OrchestratorException):
    """Raised when a service's stop hook, or one of its dependents, fails.

    Attributes:
        service_name: The service whose stop failed.
        reason: Optional description of the failure.
        service: The product that was being stopped.
    """

    def __init__(self, service_name: str, reason: Optional[str] = None, service: Any = None) -> None:
        self.service_name = service_name
        self.reason = reason
        self.service = service
        message = f"Failed to stop service '{service_name}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class StopTimeout(StopFailure):
    """Raised when a stop hook exceeds the configured shutdown timeout.

    Attributes:
        timeout: The shutdown timeout in seconds.
    """

    def __init__(self, service_name: str, timeout: float, service: Any = None) -> None:
        self.timeout = timeout
        super().__init__(service_name, f"stop hook exceeded {timeout}s", service=service)


class HealthCheckFailure(OrchestratorException):
    """Non-fatal error raised by a health check hook; only drives recovery.

    Attributes:
        service_name: The service whose health check raised.
    """

    def __init__(self, service_name: str, reason: Optional[str] = None) -> None:
        self.service_name = service_name
        self.reason = reason
        message = f"Health check failed for service '{service_name}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)
