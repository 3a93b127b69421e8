"""Application layer - Periodic health polling of started services."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from miraveja_orchestrator.application.events import EventBus
from miraveja_orchestrator.application.instance_tracker import ServiceInstanceTracker
from miraveja_orchestrator.application.metrics import MetricsCollector
from miraveja_orchestrator.domain import (
    HealthCheckable,
    HealthCheckFailure,
    LifecycleEvent,
    OrchestratorConfig,
    ServiceStatus,
)

logger = logging.getLogger(__name__)


class HealthSupervisor:
    """Polls the health check hook of every started service on a fixed interval.

    A check that exceeds the health check timeout counts as unhealthy. Unhealthy
    or failing services are handed to the recovery hook; the supervisor never
    changes lifecycle state itself.

    Attributes:
        recovery_hook: Called with the service name when recovery is needed.
    """

    def __init__(
        self,
        tracker: ServiceInstanceTracker,
        events: EventBus,
        metrics: MetricsCollector,
        config_provider: Callable[[], OrchestratorConfig],
    ) -> None:
        self._tracker = tracker
        self._events = events
        self._metrics = metrics
        self._config = config_provider
        self._task: Optional["asyncio.Task[None]"] = None
        self.recovery_hook: Optional[Callable[[str], None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the polling loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("Health checks started every %ss", self._config().health_check_interval)

    async def stop(self) -> None:
        """Cancel the polling loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Health checks stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._config().health_check_interval)
            await self.check_all()

    async def check_all(self) -> None:
        """Run one health sweep over every started service."""
        for instance in self._tracker.instances():
            if instance.status != ServiceStatus.STARTED:
                continue
            if isinstance(instance.service, HealthCheckable):
                await self.check(instance.name, instance.service)

    async def check(self, service_name: str, service: Any) -> bool:
        """Run a single health check.

        Args:
            service_name: Name of the checked service.
            service: The product exposing ``health_check``.

        Returns:
            True if the service reported healthy in time.
        """
        config = self._config()
        try:
            healthy = await asyncio.wait_for(self._call(service), timeout=config.health_check_timeout)
        except asyncio.TimeoutError:
            healthy = False
        except Exception as e:
            self._metrics.record_health_check()
            failure = HealthCheckFailure(service_name, str(e))
            failure.__cause__ = e
            logger.warning("Health check of '%s' raised: %s", service_name, e)
            await self._events.emit(LifecycleEvent.HEALTH_CHECK_FAILED, service_name, error=failure)
            self._recover(service_name)
            return False

        self._metrics.record_health_check()
        if not healthy:
            logger.warning("Service '%s' is unhealthy", service_name)
            await self._events.emit(LifecycleEvent.SERVICE_UNHEALTHY, service_name)
            self._recover(service_name)
            return False
        return True

    @staticmethod
    async def _call(service: Any) -> bool:
        result = service.health_check()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    def _recover(self, service_name: str) -> None:
        if self._config().enable_auto_recovery and self.recovery_hook is not None:
            self.recovery_hook(service_name)
