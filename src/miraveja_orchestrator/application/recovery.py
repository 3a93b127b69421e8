"""Application layer - Bounded automatic restarts with linear backoff."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

from miraveja_orchestrator.application.events import EventBus
from miraveja_orchestrator.application.instance_tracker import ServiceInstanceTracker
from miraveja_orchestrator.application.metrics import MetricsCollector
from miraveja_orchestrator.domain import LifecycleEvent, OrchestratorConfig, OrchestratorException, utc_now

logger = logging.getLogger(__name__)


class RecoverySupervisor:
    """Schedules restarts of failed or unhealthy services.

    Each attempt waits ``retry_delay * retry_count`` seconds. After
    ``max_retries`` consecutive failures the supervisor gives up and leaves the
    service in error until it is started explicitly. Failures are reported as
    events only.
    """

    def __init__(
        self,
        tracker: ServiceInstanceTracker,
        events: EventBus,
        metrics: MetricsCollector,
        config_provider: Callable[[], OrchestratorConfig],
        restart: Callable[[str], Awaitable[Any]],
    ) -> None:
        """Initialize the supervisor.

        Args:
            tracker: Instance records holding the retry bookkeeping.
            events: Event bus recovery events are published on.
            metrics: Counters updated on each attempt.
            config_provider: Returns the current orchestrator configuration.
            restart: Coroutine function restarting a service by name.
        """
        self._tracker = tracker
        self._events = events
        self._metrics = metrics
        self._config = config_provider
        self._restart = restart
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}

    def is_pending(self, service_name: str) -> bool:
        task = self._tasks.get(service_name)
        return task is not None and not task.done()

    def schedule_recovery(self, service_name: str) -> None:
        """Schedule a recovery attempt unless one is already pending for the service."""
        if self._tracker.get(service_name) is None or self.is_pending(service_name):
            return
        task = asyncio.get_running_loop().create_task(self._recover(service_name))
        self._tasks[service_name] = task
        task.add_done_callback(lambda done: self._forget(service_name, done))

    def _forget(self, service_name: str, task: "asyncio.Task[None]") -> None:
        if self._tasks.get(service_name) is task:
            del self._tasks[service_name]

    async def _recover(self, service_name: str) -> None:
        while True:
            instance = self._tracker.get(service_name)
            if instance is None:
                return

            retry_count = instance.metadata.retry_count + 1
            if retry_count > self._config().max_retries:
                logger.error("Giving up recovery of '%s' after %d attempts", service_name, retry_count - 1)
                await self._events.emit(
                    LifecycleEvent.SERVICE_RECOVERY_GIVEN_UP, service_name, retry_count=retry_count
                )
                return

            instance.metadata.retry_count = retry_count
            instance.metadata.last_recovery_attempt = utc_now()
            delay = self._config().retry_delay * retry_count
            logger.debug("Recovery of '%s' scheduled in %.3fs (attempt %d)", service_name, delay, retry_count)
            await asyncio.sleep(delay)

            self._metrics.record_recovery_attempt()
            await self._events.emit(
                LifecycleEvent.SERVICE_RECOVERY_ATTEMPT, service_name, retry_count=retry_count, delay=delay
            )
            try:
                await self._restart(service_name)
            except OrchestratorException as e:
                logger.warning("Recovery attempt %d of '%s' failed: %s", retry_count, service_name, e)
                await self._events.emit(
                    LifecycleEvent.SERVICE_RECOVERY_FAILED, service_name, error=e, retry_count=retry_count
                )
                continue

            instance = self._tracker.get(service_name)
            if instance is not None:
                instance.metadata.retry_count = 0
            logger.info("Service '%s' recovered", service_name)
            await self._events.emit(LifecycleEvent.SERVICE_RECOVERED, service_name, retry_count=retry_count)
            return

    async def cancel_all(self) -> None:
        """Cancel every pending recovery and wait for the tasks to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
