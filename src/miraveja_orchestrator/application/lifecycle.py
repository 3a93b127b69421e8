"""Application layer - Start/stop state machine of managed services."""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from miraveja_orchestrator.application.definition_store import ServiceDefinitionStore
from miraveja_orchestrator.application.dependency_graph import DependencyGraph
from miraveja_orchestrator.application.events import EventBus
from miraveja_orchestrator.application.instance_tracker import ServiceInstanceTracker
from miraveja_orchestrator.application.metrics import MetricsCollector
from miraveja_orchestrator.application.resolution_chain import ResolutionChain
from miraveja_orchestrator.domain import (
    CircularDependencyError,
    DefinitionFilter,
    IllegalStateError,
    LifecycleEvent,
    OrchestratorConfig,
    OrchestratorException,
    ServiceDefinition,
    ServiceInstance,
    ServiceStatus,
    Startable,
    StartFailure,
    StopFailure,
    Stoppable,
    StopTimeout,
)

logger = logging.getLogger(__name__)


class LifecycleController:
    """Drives services through registered -> starting -> started -> stopping -> stopped.

    Dependencies are started recursively before a service's factory runs.
    Concurrent starts of the same service share one in-flight attempt, and
    stopping a service first stops every service started on top of it.

    Attributes:
        recovery_hook: Called with the service name after a failed start, when set.
    """

    def __init__(
        self,
        store: ServiceDefinitionStore,
        tracker: ServiceInstanceTracker,
        graph: DependencyGraph,
        events: EventBus,
        metrics: MetricsCollector,
        config_provider: Callable[[], OrchestratorConfig],
    ) -> None:
        """Initialize the controller over the orchestrator's shared tables.

        Args:
            store: Registered definitions.
            tracker: Runtime instance records.
            graph: Dependency graph used for the startup order.
            events: Event bus lifecycle events are published on.
            metrics: Counters updated on every transition.
            config_provider: Returns the current orchestrator configuration.
        """
        self._store = store
        self._tracker = tracker
        self._graph = graph
        self._events = events
        self._metrics = metrics
        self._config = config_provider
        self._chain = ResolutionChain()
        self._startup_order: List[str] = []
        self.recovery_hook: Optional[Callable[[str], None]] = None

    @property
    def startup_order(self) -> List[str]:
        return list(self._startup_order)

    def refresh_startup_order(self) -> None:
        """Recompute the startup order from the dependency graph."""
        self._startup_order = self._graph.order()
        logger.debug("Startup order: %s", self._startup_order)

    async def start(self, service_name: str) -> Any:
        """Start a service, starting its dependencies first.

        Args:
            service_name: Name of the service to start.

        Returns:
            The service product. An already started service returns its
            existing product; a start already in flight is awaited instead of
            invoking the factory a second time.

        Raises:
            NotRegisteredError: If the service is not registered.
            CircularDependencyError: If the service depends on itself through its dependencies.
            IllegalStateError: If the service is currently stopping.
            StartFailure: If the factory, a start hook or a dependency failed.
        """
        return await self._start(service_name, recover=True)

    async def restart(self, service_name: str) -> Any:
        """Stop then start a service."""
        await self.stop(service_name)
        return await self.start(service_name)

    async def restart_for_recovery(self, service_name: str) -> Any:
        """Restart from a recovery task without scheduling another recovery on failure.

        The recovery supervisor reschedules by itself.
        """
        self._chain.detach()
        await self.stop(service_name)
        return await self._start(service_name, recover=False)

    async def _start(self, name: str, recover: bool) -> Any:
        definition = self._store.get(name)
        self._chain.check(name)

        instance = self._tracker.get(name)
        if instance is not None:
            if instance.status == ServiceStatus.STARTED:
                return instance.service
            if instance.status == ServiceStatus.STOPPING:
                raise IllegalStateError(f"Cannot start service '{name}' while it is stopping")

        pending = self._tracker.pending_start(name)
        if pending is not None:
            logger.debug("Service '%s' is already starting, waiting for the in-flight attempt", name)
            return await asyncio.shield(pending)

        self._tracker.get_or_create(definition)
        self._tracker.begin_start(name)
        started_at = time.perf_counter()

        try:
            await self._events.emit(LifecycleEvent.SERVICE_STARTING, name)
            dependencies = await self._resolve_dependencies(definition)
            service = await self._build(definition, dependencies)
        except asyncio.CancelledError:
            self._tracker.fail_start(name, StartFailure(name, "start was cancelled"))
            raise
        except CircularDependencyError as e:
            await self._fail_start(name, e, recover)
            raise
        except Exception as e:
            failure = StartFailure(name, str(e))
            failure.__cause__ = e
            await self._fail_start(name, failure, recover)
            raise failure from e

        duration = time.perf_counter() - started_at
        if self._tracker.complete_start(name, service) is None:
            await self._discard(name, service)
            raise IllegalStateError(f"Service '{name}' was removed while it was starting")
        self._metrics.record_started(duration)
        logger.info("Service '%s' started in %.3fs", name, duration)
        await self._events.emit(LifecycleEvent.SERVICE_STARTED, name, service=service, duration=duration)
        return service

    async def _resolve_dependencies(self, definition: ServiceDefinition) -> Dict[str, Any]:
        resolved: Dict[str, Any] = {}
        with self._chain.enter(definition.name):
            for dependency in definition.dependencies:
                resolved[dependency] = await self._start(dependency, recover=True)
                self._tracker.add_dependent(dependency, definition.name)
        return resolved

    async def _build(self, definition: ServiceDefinition, dependencies: Dict[str, Any]) -> Any:
        service = definition.factory(dependencies, dict(definition.config))
        if inspect.isawaitable(service):
            service = await service

        if isinstance(service, Startable):
            result = service.start()
            if inspect.isawaitable(result):
                await result
        return service

    async def _discard(self, name: str, service: Any) -> None:
        """Run the stop hook of a product nobody tracks any more."""
        try:
            await self._run_stop_hook(name, service)
        except StopFailure as e:
            logger.warning("Discarded product of '%s' failed to stop: %s", name, e)

    async def _fail_start(self, name: str, error: BaseException, recover: bool) -> None:
        self._tracker.fail_start(name, error)
        self._metrics.record_errored()
        logger.warning("Service '%s' failed to start: %s", name, error)
        await self._events.emit(LifecycleEvent.SERVICE_START_FAILED, name, error=error)

        if recover and self._config().enable_auto_recovery and self.recovery_hook is not None:
            self.recovery_hook(name)

    async def stop(self, service_name: str) -> None:
        """Stop a started service after stopping its dependents.

        Services that are not started are left untouched. Dependents still
        starting on top of the service are awaited and then stopped as well.

        On failure the service ends in error. When its own stop hook failed the
        product reference is released and only reachable through
        ``StopFailure.service``. When a dependent failed to stop, the hook never
        ran and the live product stays on the instance.

        Raises:
            StopTimeout: If the stop hook exceeded the shutdown timeout.
            StopFailure: If the stop hook or a dependent's stop failed.
        """
        instance = self._tracker.get(service_name)
        if instance is None or instance.status != ServiceStatus.STARTED:
            return

        self._tracker.begin_stop(service_name)
        service = instance.service

        try:
            await self._events.emit(LifecycleEvent.SERVICE_STOPPING, service_name)
            await self._stop_dependents(instance)
        except StopFailure as e:
            await self._fail_stop(service_name, e, release=False)
            raise

        try:
            await self._run_stop_hook(service_name, service)
        except StopFailure as e:
            await self._fail_stop(service_name, e)
            raise

        self._tracker.complete_stop(service_name)
        self._metrics.record_stopped()
        logger.info("Service '%s' stopped", service_name)
        await self._events.emit(LifecycleEvent.SERVICE_STOPPED, service_name)

    def _ordered_dependents(self, instance: ServiceInstance) -> List[str]:
        ordered = [name for name in reversed(self._startup_order) if name in instance.dependents]
        return ordered + sorted(instance.dependents.difference(ordered))

    async def _stop_dependents(self, instance: ServiceInstance) -> None:
        for dependent in self._ordered_dependents(instance):
            pending = self._tracker.pending_start(dependent)
            if pending is not None:
                try:
                    await asyncio.shield(pending)
                except Exception as e:
                    logger.debug("Dependent '%s' of '%s' failed to start: %s", dependent, instance.name, e)
            try:
                await self.stop(dependent)
            except StopFailure as e:
                raise StopFailure(
                    instance.name,
                    f"dependent '{dependent}' failed to stop",
                    service=instance.service,
                ) from e

    async def _run_stop_hook(self, name: str, service: Any) -> None:
        if not isinstance(service, Stoppable):
            return

        timeout = self._config().shutdown_timeout
        try:
            result = service.stop()
            if inspect.isawaitable(result):
                await asyncio.wait_for(result, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise StopTimeout(name, timeout, service=service) from e
        except Exception as e:
            raise StopFailure(name, str(e), service=service) from e

    async def _fail_stop(self, name: str, error: StopFailure, release: bool = True) -> None:
        self._tracker.fail_stop(name, error, release=release)
        logger.error("Service '%s' failed to stop: %s", name, error)
        await self._events.emit(LifecycleEvent.SERVICE_STOP_FAILED, name, error=error)

    async def start_all(self, filter: Optional[DefinitionFilter] = None) -> None:
        """Start every registered service in startup order.

        Failures are published as ``bulk_start_error`` events and do not stop
        the remaining services from starting.

        Args:
            filter: Optional predicate selecting which definitions to start.
        """
        for name in self._select(self._startup_order, filter):
            try:
                await self.start(name)
            except OrchestratorException as e:
                logger.warning("Bulk start of '%s' failed: %s", name, e)
                await self._events.emit(LifecycleEvent.BULK_START_ERROR, name, error=e)

    async def stop_all(self, filter: Optional[DefinitionFilter] = None) -> None:
        """Stop every started service in reverse startup order.

        Failures are published as ``bulk_stop_error`` events.

        Args:
            filter: Optional predicate selecting which definitions to stop.
        """
        for name in self._select(list(reversed(self._startup_order)), filter):
            instance = self._tracker.get(name)
            if instance is None or instance.status != ServiceStatus.STARTED:
                continue
            try:
                await self.stop(name)
            except StopFailure as e:
                logger.warning("Bulk stop of '%s' failed: %s", name, e)
                await self._events.emit(LifecycleEvent.BULK_STOP_ERROR, name, error=e)

    def _select(self, names: List[str], filter: Optional[DefinitionFilter]) -> List[str]:
        if filter is None:
            return list(names)
        selected = []
        for name in names:
            definition = self._store.find(name)
            if definition is not None and filter(definition):
                selected.append(name)
        return selected
