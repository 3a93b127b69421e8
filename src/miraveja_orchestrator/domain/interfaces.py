from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union, runtime_checkable

from miraveja_orchestrator.domain.enums import ServiceStatus
from miraveja_orchestrator.domain.models import OrchestratorMetrics, ServiceDefinition, ServiceInfo

DefinitionFilter = Callable[[ServiceDefinition], bool]


@runtime_checkable
class Startable(Protocol):
    """Product that must be started after the factory builds it."""

    def start(self) -> Union[Awaitable[Any], Any]: ...


@runtime_checkable
class Stoppable(Protocol):
    """Product that must release resources when its service stops."""

    def stop(self) -> Union[Awaitable[Any], Any]: ...


@runtime_checkable
class HealthCheckable(Protocol):
    """Product that can report whether it is healthy."""

    def health_check(self) -> Union[Awaitable[bool], bool]: ...


class IOrchestrator(ABC):
    """Abstract interface for service orchestration operations."""

    @abstractmethod
    async def initialize(self) -> None:
        """Start background supervision on the running event loop."""

    @abstractmethod
    def register(self, definition: Union[ServiceDefinition, Dict[str, Any]]) -> None:
        """Register a service definition.

        Args:
            definition: The definition, or a mapping of its fields.
        """

    @abstractmethod
    def unregister(self, service_name: str) -> None:
        """Remove a service that is not running.

        Args:
            service_name: Name of the service to remove.
        """

    @abstractmethod
    async def start(self, service_name: str) -> Any:
        """Start a service and its dependencies and return its product.

        Args:
            service_name: Name of the service to start.
        """

    @abstractmethod
    async def stop(self, service_name: str) -> None:
        """Stop a service after stopping every service that depends on it.

        Args:
            service_name: Name of the service to stop.
        """

    @abstractmethod
    async def restart(self, service_name: str) -> Any:
        """Stop then start a service.

        Args:
            service_name: Name of the service to restart.
        """

    @abstractmethod
    async def start_all(self, filter: Optional[DefinitionFilter] = None) -> None:
        """Start every registered service in startup order."""

    @abstractmethod
    async def stop_all(self, filter: Optional[DefinitionFilter] = None) -> None:
        """Stop every started service in reverse startup order."""

    @abstractmethod
    def get(self, service_name: str) -> Any:
        """Return the product of a started service, or None."""

    @abstractmethod
    def get_status(self, service_name: str) -> Optional[ServiceStatus]:
        """Return the status of a service instance, or None if never started."""

    @abstractmethod
    def has(self, service_name: str) -> bool:
        """Return whether a service is registered."""

    @abstractmethod
    def get_services(self) -> List[str]:
        """Return the names of every registered service."""

    @abstractmethod
    def get_service_info(self, service_name: str) -> ServiceInfo:
        """Return the definition and instance of a service."""

    @abstractmethod
    def get_dependency_graph(self) -> Dict[str, List[str]]:
        """Return the depends-on edges of every registered service."""

    @abstractmethod
    def get_startup_order(self) -> List[str]:
        """Return registered names with dependencies first."""

    @abstractmethod
    def get_metrics(self) -> OrchestratorMetrics:
        """Return a snapshot of the orchestrator metrics."""

    @abstractmethod
    async def destroy(self) -> None:
        """Stop everything and release all registrations."""
