"""Unit tests for LifecycleController."""

import asyncio

import pytest

from miraveja_orchestrator.application.definition_store import ServiceDefinitionStore
from miraveja_orchestrator.application.dependency_graph import DependencyGraph
from miraveja_orchestrator.application.events import EventBus
from miraveja_orchestrator.application.instance_tracker import ServiceInstanceTracker
from miraveja_orchestrator.application.lifecycle import LifecycleController
from miraveja_orchestrator.application.metrics import MetricsCollector
from miraveja_orchestrator.domain import (
    CircularDependencyError,
    IllegalStateError,
    LifecycleEvent,
    NotRegisteredError,
    OrchestratorConfig,
    ServiceDefinition,
    ServiceStatus,
    StartFailure,
    StopFailure,
    StopTimeout,
)


class Harness:
    """Controller wired to fresh tables, recording every event."""

    def __init__(self, **config):
        self.config = OrchestratorConfig(**{"enable_auto_recovery": False, **config})
        self.store = ServiceDefinitionStore()
        self.tracker = ServiceInstanceTracker()
        self.graph = DependencyGraph()
        self.events = EventBus()
        self.metrics = MetricsCollector(lambda: self.config)
        self.controller = LifecycleController(
            self.store, self.tracker, self.graph, self.events, self.metrics, lambda: self.config
        )
        self.recorded = []
        self.events.on_any(self.recorded.append)

    def register(self, name, factory, dependencies=(), **fields):
        definition = ServiceDefinition(name=name, factory=factory, dependencies=dependencies, **fields)
        self.store.add(definition)
        self.graph.register(name, definition.dependencies)
        self.controller.refresh_startup_order()
        return definition

    def names(self, event):
        return [recorded.service_name for recorded in self.recorded if recorded.event == event]


class Resource:
    """Product with lifecycle hooks recording calls into a shared log."""

    def __init__(self, name, log, stop_delay=0.0, fail_stop=False):
        self.name = name
        self.log = log
        self.stop_delay = stop_delay
        self.fail_stop = fail_stop

    async def start(self):
        self.log.append(("start", self.name))

    async def stop(self):
        if self.stop_delay:
            await asyncio.sleep(self.stop_delay)
        if self.fail_stop:
            raise RuntimeError(f"{self.name} refused to stop")
        self.log.append(("stop", self.name))


@pytest.fixture
def harness():
    return Harness()


class TestStart:
    """Test cases for LifecycleController.start."""

    @pytest.mark.asyncio
    async def test_start_builds_product_with_dependencies(self, harness):
        """Test that dependencies are started first and injected by name."""
        harness.register("a", lambda deps, config: {"v": 1})
        harness.register("b", lambda deps, config: {"v": deps["a"]["v"] * 2}, dependencies=["a"])

        product = await harness.controller.start("b")

        assert product == {"v": 2}
        assert harness.tracker.get("a").status == ServiceStatus.STARTED
        assert harness.tracker.get("b").status == ServiceStatus.STARTED
        assert harness.tracker.get("a").dependents == {"b"}

    @pytest.mark.asyncio
    async def test_factory_receives_config(self, harness):
        """Test that the definition config is passed to the factory."""
        harness.register("db", lambda deps, config: config["dsn"], config={"dsn": "sqlite://"})
        assert await harness.controller.start("db") == "sqlite://"

    @pytest.mark.asyncio
    async def test_async_factory_is_awaited(self, harness):
        """Test that a coroutine factory is awaited."""

        async def factory(deps, config):
            await asyncio.sleep(0)
            return "ready"

        harness.register("db", factory)
        assert await harness.controller.start("db") == "ready"

    @pytest.mark.asyncio
    async def test_start_hook_is_awaited(self, harness):
        """Test that a Startable product is started before it is returned."""
        log = []
        harness.register("db", lambda deps, config: Resource("db", log))

        await harness.controller.start("db")

        assert log == [("start", "db")]

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, harness):
        """Test that a started service returns its product without rebuilding."""
        calls = []

        def factory(deps, config):
            calls.append(1)
            return object()

        harness.register("db", factory)

        first = await harness.controller.start("db")
        second = await harness.controller.start("db")

        assert first is second
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_events_and_duration(self, harness):
        """Test that starting emits starting then started with a duration."""
        harness.register("db", lambda deps, config: "db")

        await harness.controller.start("db")

        assert [event.event for event in harness.recorded] == [
            LifecycleEvent.SERVICE_STARTING,
            LifecycleEvent.SERVICE_STARTED,
        ]
        started = harness.recorded[-1]
        assert started.data["service"] == "db"
        assert started.data["duration"] >= 0

    @pytest.mark.asyncio
    async def test_unknown_service(self, harness):
        """Test that starting an unregistered service raises NotRegisteredError."""
        with pytest.raises(NotRegisteredError):
            await harness.controller.start("missing")

    @pytest.mark.asyncio
    async def test_concurrent_starts_coalesce(self, harness):
        """Test that concurrent starts invoke the factory exactly once."""
        calls = []
        gate = asyncio.Event()

        async def factory(deps, config):
            calls.append(1)
            await gate.wait()
            return object()

        harness.register("db", factory)

        first = asyncio.create_task(harness.controller.start("db"))
        second = asyncio.create_task(harness.controller.start("db"))
        await asyncio.sleep(0.01)
        gate.set()
        results = await asyncio.gather(first, second)

        assert len(calls) == 1
        assert results[0] is results[1]

    @pytest.mark.asyncio
    async def test_concurrent_starts_share_failure(self, harness):
        """Test that concurrent callers observe the same error."""
        calls = []
        gate = asyncio.Event()

        async def factory(deps, config):
            calls.append(1)
            await gate.wait()
            raise RuntimeError("boom")

        harness.register("db", factory)

        first = asyncio.create_task(harness.controller.start("db"))
        second = asyncio.create_task(harness.controller.start("db"))
        await asyncio.sleep(0.01)
        gate.set()
        results = await asyncio.gather(first, second, return_exceptions=True)

        assert len(calls) == 1
        assert isinstance(results[0], StartFailure)
        assert results[0] is results[1]

    @pytest.mark.asyncio
    async def test_shared_dependency_started_once(self, harness):
        """Test that a diamond dependency is built once."""
        calls = []

        def base(deps, config):
            calls.append(1)
            return "base"

        harness.register("base", base)
        harness.register("left", lambda deps, config: "left", dependencies=["base"])
        harness.register("right", lambda deps, config: "right", dependencies=["base"])
        harness.register("top", lambda deps, config: dict(deps), dependencies=["left", "right"])

        product = await harness.controller.start("top")

        assert product == {"left": "left", "right": "right"}
        assert len(calls) == 1
        assert harness.tracker.get("base").dependents == {"left", "right"}


class TestStartFailures:
    """Test cases for failing starts."""

    @pytest.mark.asyncio
    async def test_factory_error_is_wrapped(self, harness):
        """Test that a throwing factory leaves the service in error."""

        def factory(deps, config):
            raise ValueError("boom")

        harness.register("c", factory)

        with pytest.raises(StartFailure) as exc_info:
            await harness.controller.start("c")

        error = exc_info.value
        assert "boom" in str(error)
        assert isinstance(error.__cause__, ValueError)
        instance = harness.tracker.get("c")
        assert instance.status == ServiceStatus.ERROR
        assert instance.error is error
        assert harness.names(LifecycleEvent.SERVICE_START_FAILED) == ["c"]

    @pytest.mark.asyncio
    async def test_dependency_failure_fails_dependent(self, harness):
        """Test that a failing dependency fails its dependent without running its factory."""
        calls = []

        def broken(deps, config):
            raise RuntimeError("db down")

        def api(deps, config):
            calls.append(1)
            return "api"

        harness.register("db", broken)
        harness.register("api", api, dependencies=["db"])

        with pytest.raises(StartFailure) as exc_info:
            await harness.controller.start("api")

        assert exc_info.value.service_name == "api"
        assert isinstance(exc_info.value.__cause__, StartFailure)
        assert calls == []
        assert harness.tracker.get("db").status == ServiceStatus.ERROR
        assert harness.tracker.get("api").status == ServiceStatus.ERROR

    @pytest.mark.asyncio
    async def test_unregistered_dependency_fails_start(self, harness):
        """Test that a forward reference that was never registered fails at start time."""
        harness.register("api", lambda deps, config: "api", dependencies=["db"])

        with pytest.raises(StartFailure) as exc_info:
            await harness.controller.start("api")

        assert isinstance(exc_info.value.__cause__, NotRegisteredError)

    @pytest.mark.asyncio
    async def test_failed_service_can_start_again(self, harness):
        """Test that an errored service can be started later."""
        attempts = []

        def flaky(deps, config):
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("first attempt fails")
            return "ok"

        harness.register("db", flaky)

        with pytest.raises(StartFailure):
            await harness.controller.start("db")
        assert await harness.controller.start("db") == "ok"
        assert harness.tracker.get("db").error is None

    @pytest.mark.asyncio
    async def test_cycle_fails_instead_of_deadlocking(self, harness):
        """Test that starting a cyclic service raises CircularDependencyError."""
        harness.register("a", lambda deps, config: "a", dependencies=["b"])
        harness.register("b", lambda deps, config: "b", dependencies=["a"])

        with pytest.raises(CircularDependencyError) as exc_info:
            await asyncio.wait_for(harness.controller.start("a"), timeout=1)

        assert exc_info.value.cycle == ["a", "b", "a"]
        assert harness.tracker.get("a").status == ServiceStatus.ERROR
        assert harness.tracker.get("b").status == ServiceStatus.ERROR

    @pytest.mark.asyncio
    async def test_recovery_hook_called_when_enabled(self):
        """Test that failures are handed to the recovery hook."""
        harness = Harness(enable_auto_recovery=True)
        scheduled = []
        harness.controller.recovery_hook = scheduled.append

        def broken(deps, config):
            raise RuntimeError("boom")

        harness.register("db", broken)

        with pytest.raises(StartFailure):
            await harness.controller.start("db")

        assert scheduled == ["db"]

    @pytest.mark.asyncio
    async def test_recovery_hook_not_called_when_disabled(self, harness):
        """Test that the hook is skipped when auto-recovery is off."""
        scheduled = []
        harness.controller.recovery_hook = scheduled.append

        def broken(deps, config):
            raise RuntimeError("boom")

        harness.register("db", broken)

        with pytest.raises(StartFailure):
            await harness.controller.start("db")

        assert scheduled == []


class TestStop:
    """Test cases for LifecycleController.stop."""

    @pytest.mark.asyncio
    async def test_stop_releases_product(self, harness):
        """Test that a stopped service has no product and a stop time."""
        log = []
        harness.register("db", lambda deps, config: Resource("db", log))
        await harness.controller.start("db")

        await harness.controller.stop("db")

        instance = harness.tracker.get("db")
        assert instance.status == ServiceStatus.STOPPED
        assert instance.service is None
        assert instance.stopped_at is not None
        assert log == [("start", "db"), ("stop", "db")]
        assert harness.names(LifecycleEvent.SERVICE_STOPPING) == ["db"]
        assert harness.names(LifecycleEvent.SERVICE_STOPPED) == ["db"]

    @pytest.mark.asyncio
    async def test_stop_not_started_is_noop(self, harness):
        """Test that stopping an unknown or stopped service does nothing."""
        harness.register("db", lambda deps, config: "db")

        await harness.controller.stop("db")
        await harness.controller.stop("missing")

        assert harness.recorded == []

    @pytest.mark.asyncio
    async def test_dependents_stop_first(self, harness):
        """Test that dependents are fully stopped before the dependency's stop hook."""
        log = []
        harness.register("db", lambda deps, config: Resource("db", log))
        harness.register("api", lambda deps, config: Resource("api", log, stop_delay=0.01), dependencies=["db"])
        harness.register("ui", lambda deps, config: Resource("ui", log), dependencies=["api"])
        await harness.controller.start("ui")
        log.clear()

        await harness.controller.stop("db")

        assert log == [("stop", "ui"), ("stop", "api"), ("stop", "db")]
        for name in ("ui", "api", "db"):
            assert harness.tracker.get(name).status == ServiceStatus.STOPPED

    @pytest.mark.asyncio
    async def test_stop_timeout(self):
        """Test that a slow stop hook fails with StopTimeout."""
        harness = Harness(shutdown_timeout=0.01)
        product = Resource("db", [], stop_delay=1)
        harness.register("db", lambda deps, config: product)
        await harness.controller.start("db")

        with pytest.raises(StopTimeout) as exc_info:
            await harness.controller.stop("db")

        assert exc_info.value.service is product
        instance = harness.tracker.get("db")
        assert instance.status == ServiceStatus.ERROR
        assert instance.service is None
        assert harness.names(LifecycleEvent.SERVICE_STOP_FAILED) == ["db"]

    @pytest.mark.asyncio
    async def test_stop_hook_error(self, harness):
        """Test that a raising stop hook fails with StopFailure."""
        harness.register("db", lambda deps, config: Resource("db", [], fail_stop=True))
        await harness.controller.start("db")

        with pytest.raises(StopFailure) as exc_info:
            await harness.controller.stop("db")

        assert "refused to stop" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert harness.tracker.get("db").status == ServiceStatus.ERROR

    @pytest.mark.asyncio
    async def test_dependent_stop_failure_fails_dependency(self, harness):
        """Test that a failing dependent aborts the dependency's stop."""
        log = []
        harness.register("db", lambda deps, config: Resource("db", log))
        harness.register("api", lambda deps, config: Resource("api", log, fail_stop=True), dependencies=["db"])
        await harness.controller.start("api")

        with pytest.raises(StopFailure) as exc_info:
            await harness.controller.stop("db")

        assert exc_info.value.service_name == "db"
        assert harness.tracker.get("api").status == ServiceStatus.ERROR
        assert harness.tracker.get("db").status == ServiceStatus.ERROR
        assert ("stop", "db") not in log
        assert isinstance(harness.tracker.get("db").service, Resource)
        assert harness.tracker.get("api").service is None

    @pytest.mark.asyncio
    async def test_starting_dependent_is_stopped_after_it_starts(self, harness):
        """Test that stopping a dependency waits for a dependent still starting and stops it first."""
        log = []
        gate = asyncio.Event()

        async def slow_api(deps, config):
            await gate.wait()
            return Resource("api", log)

        harness.register("db", lambda deps, config: Resource("db", log))
        harness.register("api", slow_api, dependencies=["db"])
        starting = asyncio.create_task(harness.controller.start("api"))
        await asyncio.sleep(0.01)
        stopping = asyncio.create_task(harness.controller.stop("db"))
        await asyncio.sleep(0.01)

        assert not stopping.done()
        gate.set()
        await asyncio.wait_for(starting, timeout=1)
        await asyncio.wait_for(stopping, timeout=1)

        assert harness.tracker.get("api").status == ServiceStatus.STOPPED
        assert harness.tracker.get("db").status == ServiceStatus.STOPPED
        assert log.index(("stop", "api")) < log.index(("stop", "db"))

    @pytest.mark.asyncio
    async def test_dependent_failing_to_start_does_not_block_stop(self, harness):
        """Test that a dependent whose start fails while the dependency stops is skipped."""
        log = []
        gate = asyncio.Event()

        async def broken_api(deps, config):
            await gate.wait()
            raise RuntimeError("boom")

        harness.register("db", lambda deps, config: Resource("db", log))
        harness.register("api", broken_api, dependencies=["db"])
        starting = asyncio.create_task(harness.controller.start("api"))
        await asyncio.sleep(0.01)
        stopping = asyncio.create_task(harness.controller.stop("db"))
        await asyncio.sleep(0.01)

        gate.set()
        with pytest.raises(StartFailure):
            await asyncio.wait_for(starting, timeout=1)
        await asyncio.wait_for(stopping, timeout=1)

        assert harness.tracker.get("api").status == ServiceStatus.ERROR
        assert harness.tracker.get("db").status == ServiceStatus.STOPPED

    @pytest.mark.asyncio
    async def test_cleared_records_reject_starts_in_flight(self, harness):
        """Test that clearing the tracker mid-start fails every caller and stops the orphaned product."""
        log = []
        gate = asyncio.Event()

        async def slow(deps, config):
            await gate.wait()
            return Resource("slow", log)

        harness.register("slow", slow)
        first = asyncio.create_task(harness.controller.start("slow"))
        second = asyncio.create_task(harness.controller.start("slow"))
        await asyncio.sleep(0.01)

        harness.tracker.clear()
        gate.set()
        results = await asyncio.wait_for(asyncio.gather(first, second, return_exceptions=True), timeout=1)

        assert all(isinstance(result, IllegalStateError) for result in results)
        assert ("stop", "slow") in log

    @pytest.mark.asyncio
    async def test_sync_stop_hook(self, harness):
        """Test that a synchronous stop hook is supported."""
        stopped = []

        class Client:
            def stop(self):
                stopped.append(True)

        harness.register("client", lambda deps, config: Client())
        await harness.controller.start("client")
        await harness.controller.stop("client")

        assert stopped == [True]

    @pytest.mark.asyncio
    async def test_start_while_stopping_rejected(self, harness):
        """Test that a service cannot be started while it is stopping."""
        harness.register("db", lambda deps, config: Resource("db", [], stop_delay=0.05))
        await harness.controller.start("db")

        stopping = asyncio.create_task(harness.controller.stop("db"))
        await asyncio.sleep(0.01)

        with pytest.raises(IllegalStateError):
            await harness.controller.start("db")
        await stopping


class TestRestart:
    """Test cases for LifecycleController.restart."""

    @pytest.mark.asyncio
    async def test_restart_rebuilds_product(self, harness):
        """Test that restart is stop followed by start."""
        builds = []

        def factory(deps, config):
            product = Resource(f"db{len(builds)}", [])
            builds.append(product)
            return product

        harness.register("db", factory)
        first = await harness.controller.start("db")

        second = await harness.controller.restart("db")

        assert first is not second
        assert len(builds) == 2
        assert harness.tracker.get("db").status == ServiceStatus.STARTED
        assert [event.event for event in harness.recorded] == [
            LifecycleEvent.SERVICE_STARTING,
            LifecycleEvent.SERVICE_STARTED,
            LifecycleEvent.SERVICE_STOPPING,
            LifecycleEvent.SERVICE_STOPPED,
            LifecycleEvent.SERVICE_STARTING,
            LifecycleEvent.SERVICE_STARTED,
        ]

    @pytest.mark.asyncio
    async def test_restart_of_stopped_service_starts_it(self, harness):
        """Test that restarting a service that is not running just starts it."""
        harness.register("db", lambda deps, config: "db")
        assert await harness.controller.restart("db") == "db"


class TestBulkOperations:
    """Test cases for start_all and stop_all."""

    @pytest.mark.asyncio
    async def test_start_all_in_order(self, harness):
        """Test that every service is started in dependency order."""
        order = []

        def factory(name):
            def build(deps, config):
                order.append(name)
                return name

            return build

        harness.register("api", factory("api"), dependencies=["db"])
        harness.register("db", factory("db"))
        harness.register("worker", factory("worker"))

        await harness.controller.start_all()

        assert order == ["db", "api", "worker"]

    @pytest.mark.asyncio
    async def test_start_all_continues_after_failure(self, harness):
        """Test that a failing service is reported and the rest still start."""

        def broken(deps, config):
            raise RuntimeError("boom")

        harness.register("broken", broken)
        harness.register("db", lambda deps, config: "db")

        await harness.controller.start_all()

        assert harness.tracker.get("db").status == ServiceStatus.STARTED
        assert harness.names(LifecycleEvent.BULK_START_ERROR) == ["broken"]

    @pytest.mark.asyncio
    async def test_start_all_with_filter(self, harness):
        """Test that the filter selects the definitions to start."""
        harness.register("db", lambda deps, config: "db", metadata={"tier": "core"})
        harness.register("ui", lambda deps, config: "ui")

        await harness.controller.start_all(lambda definition: definition.metadata.get("tier") == "core")

        assert harness.tracker.started_names() == ["db"]

    @pytest.mark.asyncio
    async def test_stop_all_in_reverse_order(self, harness):
        """Test that services stop in reverse startup order."""
        log = []
        harness.register("db", lambda deps, config: Resource("db", log))
        harness.register("cache", lambda deps, config: Resource("cache", log))
        harness.register("api", lambda deps, config: Resource("api", log), dependencies=["db", "cache"])
        await harness.controller.start_all()
        log.clear()

        await harness.controller.stop_all()

        assert log == [("stop", "api"), ("stop", "cache"), ("stop", "db")]
        assert harness.tracker.started_names() == []

    @pytest.mark.asyncio
    async def test_stop_all_continues_after_failure(self, harness):
        """Test that a failing stop is reported and the rest still stop."""
        log = []
        harness.register("db", lambda deps, config: Resource("db", log))
        harness.register("broken", lambda deps, config: Resource("broken", log, fail_stop=True))
        await harness.controller.start_all()

        await harness.controller.stop_all()

        assert harness.tracker.get("db").status == ServiceStatus.STOPPED
        assert harness.names(LifecycleEvent.BULK_STOP_ERROR) == ["broken"]
