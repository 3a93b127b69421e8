from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, FastAPI, HTTPException

from miraveja_orchestrator.domain import DefinitionFilter, IOrchestrator, OrchestratorException, ServiceInfo


def create_lifespan(
    orchestrator: IOrchestrator,
    filter: Optional[DefinitionFilter] = None,
) -> Callable[[FastAPI], Any]:
    """Create a FastAPI lifespan handler that runs the orchestrator with the application.

    On startup the orchestrator is initialized and every registered service
    (or those selected by ``filter``) is started in dependency order. On
    shutdown the orchestrator is destroyed, stopping services in reverse order.

    Args:
        orchestrator: The orchestrator to run.
        filter: Optional predicate selecting which definitions to start.

    Returns:
        An async context manager factory suitable for ``FastAPI(lifespan=...)``.

    Example:
        >>> orchestrator = ServiceOrchestrator()
        >>> orchestrator.register({"name": "db", "factory": lambda deps, config: Database()})
        >>> app = FastAPI(lifespan=create_lifespan(orchestrator))
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await orchestrator.initialize()
        await orchestrator.start_all(filter)
        try:
            yield
        finally:
            await orchestrator.destroy()

    return lifespan


def create_fastapi_dependency(orchestrator: IOrchestrator, service_name: str) -> Callable[[], Awaitable[Any]]:
    """Create a FastAPI Depends() callable returning a started service.

    The service is started on first use when it is not running yet. A service
    that cannot be started results in an HTTP 503 response.

    Args:
        orchestrator: The orchestrator owning the service.
        service_name: Name of the service to inject.

    Returns:
        A coroutine function that FastAPI can use with Depends().

    Example:
        >>> get_users = create_fastapi_dependency(orchestrator, "users")
        >>>
        >>> @app.get("/users")
        >>> async def list_users(users=Depends(get_users)):
        ...     return await users.get_all()
    """

    async def dependency() -> Any:
        """Return the started service from the orchestrator."""
        try:
            return await orchestrator.start(service_name)
        except OrchestratorException as e:
            raise HTTPException(status_code=503, detail=f"Service '{service_name}' is unavailable: {e}") from e

    return dependency


def _describe(name: str, info: ServiceInfo) -> Dict[str, Any]:
    definition = info.definition
    instance = info.instance
    return {
        "name": name,
        "version": definition.version if definition else None,
        "description": definition.description if definition else None,
        "dependencies": list(definition.dependencies) if definition else [],
        "status": instance.status.value if instance else None,
        "created_at": instance.created_at.isoformat() if instance else None,
        "started_at": instance.started_at.isoformat() if instance and instance.started_at else None,
        "stopped_at": instance.stopped_at.isoformat() if instance and instance.stopped_at else None,
        "dependents": sorted(instance.dependents) if instance else [],
        "error": str(instance.error) if instance and instance.error else None,
        "retry_count": instance.metadata.retry_count if instance else 0,
    }


def create_status_router(orchestrator: IOrchestrator, prefix: str = "/orchestrator") -> APIRouter:
    """Create a router exposing the orchestrator's introspection as JSON.

    Routes:
        GET {prefix}/services: Every registered service with its status.
        GET {prefix}/services/{name}: A single service, 404 when unknown.
        GET {prefix}/graph: The dependency graph and startup order.
        GET {prefix}/metrics: The metrics snapshot.

    Args:
        orchestrator: The orchestrator to describe.
        prefix: URL prefix of the routes.
    """
    router = APIRouter(prefix=prefix, tags=["orchestrator"])

    @router.get("/services")
    async def list_services() -> Dict[str, Any]:
        services = [_describe(name, orchestrator.get_service_info(name)) for name in orchestrator.get_services()]
        return {"services": services}

    @router.get("/services/{service_name}")
    async def get_service(service_name: str) -> Dict[str, Any]:
        if not orchestrator.has(service_name):
            raise HTTPException(status_code=404, detail=f"Service '{service_name}' is not registered")
        return _describe(service_name, orchestrator.get_service_info(service_name))

    @router.get("/graph")
    async def get_graph() -> Dict[str, Any]:
        return {
            "graph": orchestrator.get_dependency_graph(),
            "startup_order": orchestrator.get_startup_order(),
        }

    @router.get("/metrics")
    async def get_metrics() -> Dict[str, Any]:
        return orchestrator.get_metrics().model_dump()

    return router
