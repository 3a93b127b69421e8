import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Set, Type, Union

from miraveja_orchestrator.application.definition_store import ServiceDefinitionStore
from miraveja_orchestrator.application.dependency_graph import DependencyGraph
from miraveja_orchestrator.application.events import EventBus, EventListener
from miraveja_orchestrator.application.factories import definition_from_class
from miraveja_orchestrator.application.health import HealthSupervisor
from miraveja_orchestrator.application.instance_tracker import ServiceInstanceTracker
from miraveja_orchestrator.application.lifecycle import LifecycleController
from miraveja_orchestrator.application.metrics import MetricsCollector
from miraveja_orchestrator.application.recovery import RecoverySupervisor
from miraveja_orchestrator.domain import (
    CircularDependencyError,
    DefinitionFilter,
    IllegalStateError,
    IOrchestrator,
    LifecycleEvent,
    NotRegisteredError,
    OrchestratorConfig,
    OrchestratorException,
    OrchestratorMetrics,
    RegistrationError,
    ServiceDefinition,
    ServiceInfo,
    ServiceStatus,
)

logger = logging.getLogger(__name__)

_BUSY_STATUSES = (ServiceStatus.STARTED, ServiceStatus.STARTING, ServiceStatus.STOPPING)


class ServiceOrchestrator(IOrchestrator):
    """Dependency-aware lifecycle manager for named services.

    Owns the registered definitions, the runtime instances and the dependency
    graph, and composes the lifecycle controller with the health and recovery
    supervisors. Construct it, register definitions, start services, and tear
    everything down with ``destroy()`` (or use it as an async context manager).

    Attributes:
        _store: Registered definitions.
        _tracker: Runtime instance records.
        _graph: Depends-on edges between service names.
        _events: Event bus for lifecycle events.
        _lifecycle: State machine starting and stopping services.
        _health: Periodic health supervisor.
        _recovery: Automatic restart scheduler.

    Example:
        >>> orchestrator = ServiceOrchestrator(enable_health_checks=False)
        >>> orchestrator.register({"name": "db", "factory": lambda deps, config: Database()})
        >>> orchestrator.register({
        ...     "name": "users",
        ...     "dependencies": ["db"],
        ...     "factory": lambda deps, config: UserRepository(deps["db"]),
        ... })
        >>> users = await orchestrator.start("users")
    """

    def __init__(self, config: Optional[OrchestratorConfig] = None, **overrides: Any) -> None:
        """Initialize the orchestrator with empty tables.

        Args:
            config: Base configuration; defaults are used when omitted.
            **overrides: Individual configuration fields overriding ``config``.
        """
        base = config or OrchestratorConfig()
        self._config = OrchestratorConfig.model_validate({**base.model_dump(), **overrides}) if overrides else base

        self._store = ServiceDefinitionStore()
        self._tracker = ServiceInstanceTracker()
        self._graph = DependencyGraph()
        self._events = EventBus()
        self._metrics = MetricsCollector(self._get_config)
        self._lifecycle = LifecycleController(
            self._store, self._tracker, self._graph, self._events, self._metrics, self._get_config
        )
        self._health = HealthSupervisor(self._tracker, self._events, self._metrics, self._get_config)
        self._recovery = RecoverySupervisor(
            self._tracker, self._events, self._metrics, self._get_config, self._lifecycle.restart_for_recovery
        )
        self._lifecycle.recovery_hook = self._recovery.schedule_recovery
        self._health.recovery_hook = self._recovery.schedule_recovery

        self._background: Set["asyncio.Task[None]"] = set()
        self._deferred_auto_starts: List[str] = []

    def _get_config(self) -> OrchestratorConfig:
        return self._config

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def events(self) -> EventBus:
        return self._events

    def on(self, event: LifecycleEvent, listener: Optional[EventListener] = None) -> Any:
        """Subscribe to an event. Usable as a decorator when ``listener`` is omitted."""
        return self._events.on(event, listener)

    def off(self, event: LifecycleEvent, listener: EventListener) -> None:
        self._events.off(event, listener)

    async def initialize(self) -> None:
        """Start the health loop and any auto-start deferred until an event loop was running."""
        if self._config.enable_health_checks:
            self._health.start()
        deferred, self._deferred_auto_starts = self._deferred_auto_starts, []
        for name in deferred:
            if name in self._store:
                self._spawn(self._auto_start(name))

    def register(self, definition: Union[ServiceDefinition, Mapping[str, Any]]) -> None:
        """Register a service definition.

        Dependencies may be forward references to services registered later.
        An ``auto_start`` definition is started in the background; its failure
        is published as ``auto_start_failed`` and never raised from here.

        Args:
            definition: The definition, or a mapping of its fields.

        Raises:
            RegistrationError: If the definition is invalid or the name is taken.
            CircularDependencyError: If detection is enabled and the new edges
                close a cycle. The definition stays registered.

        Example:
            >>> orchestrator.register(ServiceDefinition(
            ...     name="cache",
            ...     dependencies=("config",),
            ...     factory=lambda deps, config: Cache(deps["config"]),
            ...     auto_start=True,
            ... ))
        """
        definition = self._store.coerce(definition)
        self._store.add(definition)

        for dependency in definition.dependencies:
            if dependency not in self._store:
                logger.warning("Service '%s' depends on unregistered service '%s'", definition.name, dependency)
                self._emit_soon(LifecycleEvent.UNKNOWN_DEPENDENCY, definition.name, dependency=dependency)

        self._graph.register(definition.name, definition.dependencies)
        for dependent in self._store.dependents_of(definition.name):
            self._graph.add_edge(dependent, definition.name)

        cycle_error: Optional[CircularDependencyError] = None
        if self._config.enable_circular_dependency_detection:
            try:
                self._graph.detect_cycle()
            except CircularDependencyError as e:
                cycle_error = e

        self._lifecycle.refresh_startup_order()
        self._metrics.record_registered()
        logger.debug("Registered service '%s'", definition.name)
        self._emit_soon(LifecycleEvent.SERVICE_REGISTERED, definition.name)

        if cycle_error is not None:
            logger.error("%s", cycle_error)
            self._emit_soon(LifecycleEvent.CIRCULAR_DEPENDENCY_DETECTED, cycle_error.service_name, error=cycle_error)
            raise cycle_error

        if definition.auto_start:
            if self._has_running_loop():
                self._spawn(self._auto_start(definition.name))
            else:
                self._deferred_auto_starts.append(definition.name)

    def register_class(self, cls: Type[Any]) -> ServiceDefinition:
        """Register a class decorated with ``@service``.

        Returns:
            The registered definition.
        """
        definition = definition_from_class(cls)
        self.register(definition)
        return definition

    def unregister(self, service_name: str) -> None:
        """Remove a service that is not running.

        Removes its definition, instance record and every graph edge that
        references it, then recomputes the startup order.

        Raises:
            NotRegisteredError: If the service is not registered.
            IllegalStateError: If the service is started, starting or stopping.
        """
        if service_name not in self._store:
            raise NotRegisteredError(service_name)

        instance = self._tracker.get(service_name)
        if instance is not None and instance.status in _BUSY_STATUSES:
            raise IllegalStateError(
                f"Cannot unregister service '{service_name}' while it is {instance.status}. Stop it first."
            )

        self._store.remove(service_name)
        self._tracker.remove(service_name)
        self._graph.remove(service_name)
        self._lifecycle.refresh_startup_order()
        logger.debug("Unregistered service '%s'", service_name)
        self._emit_soon(LifecycleEvent.SERVICE_UNREGISTERED, service_name)

    async def start(self, service_name: str) -> Any:
        return await self._lifecycle.start(service_name)

    async def stop(self, service_name: str) -> None:
        await self._lifecycle.stop(service_name)

    async def restart(self, service_name: str) -> Any:
        return await self._lifecycle.restart(service_name)

    async def start_all(self, filter: Optional[DefinitionFilter] = None) -> None:
        await self._lifecycle.start_all(filter)

    async def stop_all(self, filter: Optional[DefinitionFilter] = None) -> None:
        await self._lifecycle.stop_all(filter)

    async def check_health(self) -> None:
        """Run one health sweep immediately."""
        await self._health.check_all()

    def schedule_recovery(self, service_name: str) -> None:
        """Schedule a recovery attempt for a service by hand."""
        self._recovery.schedule_recovery(service_name)

    async def _auto_start(self, service_name: str) -> None:
        try:
            await self._lifecycle.start(service_name)
        except OrchestratorException as e:
            logger.warning("Auto-start of '%s' failed: %s", service_name, e)
            await self._events.emit(LifecycleEvent.AUTO_START_FAILED, service_name, error=e)

    def get(self, service_name: str) -> Any:
        """Return the product of a started service, or None.

        The reference is only valid until the service is stopped.
        """
        instance = self._tracker.get(service_name)
        if instance is not None and instance.status == ServiceStatus.STARTED:
            return instance.service
        return None

    def has(self, service_name: str) -> bool:
        return service_name in self._store

    def is_started(self, service_name: str) -> bool:
        instance = self._tracker.get(service_name)
        return instance is not None and instance.status == ServiceStatus.STARTED

    def get_status(self, service_name: str) -> Optional[ServiceStatus]:
        instance = self._tracker.get(service_name)
        return instance.status if instance is not None else None

    def get_services(self) -> List[str]:
        return self._store.names()

    def get_started_services(self) -> List[str]:
        return self._tracker.started_names()

    def get_service_info(self, service_name: str) -> ServiceInfo:
        return ServiceInfo(definition=self._store.find(service_name), instance=self._tracker.get(service_name))

    def get_dependency_graph(self) -> Dict[str, List[str]]:
        return self._graph.as_dict()

    def get_startup_order(self) -> List[str]:
        return self._lifecycle.startup_order

    def get_metrics(self) -> OrchestratorMetrics:
        return self._metrics.snapshot(services_running=len(self._tracker.started_names()))

    async def update_config(self, **changes: Any) -> OrchestratorConfig:
        """Apply configuration changes and adjust the health loop accordingly.

        Args:
            **changes: Configuration fields to change.

        Returns:
            The new configuration.

        Raises:
            pydantic.ValidationError: If a value is invalid.
        """
        previous = self._config
        self._config = OrchestratorConfig.model_validate({**previous.model_dump(), **changes})

        if not self._config.enable_health_checks:
            await self._health.stop()
        elif not self._health.running or self._config.health_check_interval != previous.health_check_interval:
            await self._health.stop()
            self._health.start()

        logger.info("Configuration updated: %s", changes)
        await self._events.emit(LifecycleEvent.CONFIG_UPDATED, config=self._config)
        return self._config

    async def wait_for_background_tasks(self) -> None:
        """Wait until every pending auto-start and event delivery has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def destroy(self) -> None:
        """Stop every service and release all registrations and listeners.

        Starts still in flight are awaited first so their products are stopped
        with everything else.
        """
        await self._health.stop()
        await self._recovery.cancel_all()
        await self.wait_for_background_tasks()
        await self._settle_pending_starts()
        await self._lifecycle.stop_all()

        self._store.clear()
        self._tracker.clear()
        self._graph.clear()
        self._lifecycle.refresh_startup_order()
        self._deferred_auto_starts.clear()
        self._events.clear()
        logger.info("Orchestrator destroyed")

    async def _settle_pending_starts(self) -> None:
        pending = self._tracker.pending_starts()
        while pending:
            await asyncio.gather(*(asyncio.shield(signal) for signal in pending), return_exceptions=True)
            pending = self._tracker.pending_starts()

    async def __aenter__(self) -> "ServiceOrchestrator":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> bool:
        await self.destroy()
        return False

    @staticmethod
    def _has_running_loop() -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _emit_soon(self, event: LifecycleEvent, service_name: Optional[str] = None, **kwargs: Any) -> None:
        """Publish an event from synchronous code; async listeners run as background tasks."""
        for pending in self._events.publish(event, service_name, **kwargs):
            if self._has_running_loop():
                self._spawn(pending)
            else:
                logger.warning("No running event loop, skipping async listener for '%s'", event.value)
                pending.close()
