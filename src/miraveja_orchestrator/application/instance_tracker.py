import asyncio
from typing import Any, Dict, List, Optional

from miraveja_orchestrator.domain import IllegalStateError, ServiceDefinition, ServiceInstance, ServiceStatus, utc_now


class ServiceInstanceTracker:
    """Keeps the runtime record of every service that was started at least once.

    Also owns the one-shot completion signal of each in-flight start so that
    concurrent callers share a single outcome.

    Attributes:
        _instances: Instance records keyed by service name.
        _pending_starts: Futures of starts that have not completed yet.
    """

    def __init__(self) -> None:
        """Initialize the tracker with empty tables."""
        self._instances: Dict[str, ServiceInstance] = {}
        self._pending_starts: Dict[str, "asyncio.Future[Any]"] = {}

    def get(self, name: str) -> Optional[ServiceInstance]:
        return self._instances.get(name)

    def get_or_create(self, definition: ServiceDefinition) -> ServiceInstance:
        """Return the instance for a definition, creating it on first use.

        Args:
            definition: The registered definition.

        Returns:
            The existing instance, or a new one in REGISTERED status with a
            snapshot of the definition's dependencies.
        """
        instance = self._instances.get(definition.name)
        if instance is None:
            instance = ServiceInstance(name=definition.name, dependencies=definition.dependencies)
            self._instances[definition.name] = instance
        return instance

    def pending_start(self, name: str) -> Optional["asyncio.Future[Any]"]:
        """Return the completion signal of an in-flight start, if any."""
        return self._pending_starts.get(name)

    def pending_starts(self) -> List["asyncio.Future[Any]"]:
        return list(self._pending_starts.values())

    def begin_start(self, name: str) -> "asyncio.Future[Any]":
        """Move an instance to STARTING and create its completion signal.

        Returns:
            The future every concurrent caller awaits.
        """
        instance = self._instances[name]
        instance.status = ServiceStatus.STARTING
        instance.error = None
        signal: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        self._pending_starts[name] = signal
        return signal

    def complete_start(self, name: str, service: Any) -> Optional[ServiceInstance]:
        """Record a successful start and resolve the completion signal.

        Returns:
            The updated instance, or None when the record was dropped while
            the service was starting. The caller then owns the product.
        """
        instance = self._instances.get(name)
        if instance is None:
            return None
        instance.service = service
        instance.status = ServiceStatus.STARTED
        instance.started_at = utc_now()
        instance.error = None
        instance.metadata.retry_count = 0

        signal = self._pending_starts.pop(name, None)
        if signal is not None and not signal.done():
            signal.set_result(service)
        return instance

    def fail_start(self, name: str, error: BaseException) -> Optional[ServiceInstance]:
        """Record a failed start and resolve the completion signal with the error."""
        self._reject(self._pending_starts.pop(name, None), error)
        instance = self._instances.get(name)
        if instance is not None:
            instance.status = ServiceStatus.ERROR
            instance.error = error
        return instance

    @staticmethod
    def _reject(signal: Optional["asyncio.Future[Any]"], error: BaseException) -> None:
        if signal is not None and not signal.done():
            signal.set_exception(error)
            # Mark as retrieved; the starting caller re-raises the error itself
            signal.exception()

    def begin_stop(self, name: str) -> ServiceInstance:
        instance = self._instances[name]
        instance.status = ServiceStatus.STOPPING
        return instance

    def complete_stop(self, name: str) -> ServiceInstance:
        """Record a clean stop and release the product reference."""
        instance = self._instances[name]
        instance.status = ServiceStatus.STOPPED
        instance.stopped_at = utc_now()
        instance.service = None
        return instance

    def fail_stop(self, name: str, error: BaseException, release: bool = True) -> Optional[ServiceInstance]:
        """Record a failed stop.

        Args:
            name: The service name.
            error: The stop failure.
            release: Whether to drop the product reference. It is kept when the
                product's own stop hook never ran.
        """
        instance = self._instances.get(name)
        if instance is None:
            return None
        instance.status = ServiceStatus.ERROR
        instance.error = error
        if release:
            instance.service = None
        return instance

    def add_dependent(self, name: str, dependent: str) -> None:
        """Record that ``dependent`` was started on top of ``name``."""
        instance = self._instances.get(name)
        if instance is not None:
            instance.dependents.add(dependent)

    def remove(self, name: str) -> Optional[ServiceInstance]:
        """Drop an instance record and every reference to it as a dependent."""
        for instance in self._instances.values():
            instance.dependents.discard(name)
        self._reject(
            self._pending_starts.pop(name, None),
            IllegalStateError(f"Service '{name}' was removed while it was starting"),
        )
        return self._instances.pop(name, None)

    def started_names(self) -> List[str]:
        return [name for name, instance in self._instances.items() if instance.status == ServiceStatus.STARTED]

    def instances(self) -> List[ServiceInstance]:
        return list(self._instances.values())

    def clear(self) -> None:
        """Clear every instance record.

        Starts still in flight are rejected with ``IllegalStateError`` so that
        callers waiting on them do not hang.
        """
        for name, signal in self._pending_starts.items():
            self._reject(signal, IllegalStateError(f"Service '{name}' was removed while it was starting"))
        self._instances.clear()
        self._pending_starts.clear()
