import time
from typing import Callable

from miraveja_orchestrator.domain import OrchestratorConfig, OrchestratorMetrics


class MetricsCollector:
    """Counters maintained by the orchestrator while metrics are enabled.

    Uptime and the health check rate are derived from the monotonic time at
    which the collector was created.
    """

    def __init__(self, config_provider: Callable[[], OrchestratorConfig]) -> None:
        self._config = config_provider
        self._created_at = time.monotonic()
        self.reset()

    def reset(self) -> None:
        self.services_registered = 0
        self.services_started = 0
        self.services_stopped = 0
        self.services_errored = 0
        self.total_start_time = 0.0
        self.health_checks = 0
        self.recovery_attempts = 0

    @property
    def enabled(self) -> bool:
        return self._config().enable_metrics

    def record_registered(self) -> None:
        if self.enabled:
            self.services_registered += 1

    def record_started(self, duration: float) -> None:
        if self.enabled:
            self.services_started += 1
            self.total_start_time += duration

    def record_stopped(self) -> None:
        if self.enabled:
            self.services_stopped += 1

    def record_errored(self) -> None:
        if self.enabled:
            self.services_errored += 1

    def record_health_check(self) -> None:
        if self.enabled:
            self.health_checks += 1

    def record_recovery_attempt(self) -> None:
        if self.enabled:
            self.recovery_attempts += 1

    def uptime(self) -> float:
        return time.monotonic() - self._created_at

    def snapshot(self, services_running: int) -> OrchestratorMetrics:
        """Build a metrics snapshot.

        Args:
            services_running: Number of services currently started.
        """
        uptime = self.uptime()
        interval = self._config().health_check_interval
        average = self.total_start_time / self.services_started if self.services_started else 0.0
        rate = self.health_checks / (uptime / interval) if uptime > 0 else 0.0
        return OrchestratorMetrics(
            services_registered=self.services_registered,
            services_started=self.services_started,
            services_stopped=self.services_stopped,
            services_errored=self.services_errored,
            total_start_time=self.total_start_time,
            average_start_time=average,
            services_running=services_running,
            health_checks=self.health_checks,
            recovery_attempts=self.recovery_attempts,
            uptime=uptime,
            health_check_rate=rate,
        )
