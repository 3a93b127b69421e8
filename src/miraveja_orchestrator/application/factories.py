"""Application layer - Factory wrappers and class based service declarations."""

import inspect
from typing import Any, Callable, Dict, Iterable, Optional, Type, TypeVar

from miraveja_orchestrator.domain import RegistrationError, ServiceDefinition, ServiceFactory

T = TypeVar("T")

SERVICE_DEFINITION_ATTRIBUTE = "__service_definition__"


async def _build(factory: ServiceFactory, dependencies: Dict[str, Any], config: Dict[str, Any]) -> Any:
    product = factory(dependencies, config)
    if inspect.isawaitable(product):
        product = await product
    return product


def create_singleton_factory(factory: ServiceFactory) -> ServiceFactory:
    """Wrap a factory so it builds its product once and returns it on every later call.

    The product survives restarts of the service it is registered for.

    Example:
        >>> orchestrator.register({
        ...     "name": "pool",
        ...     "factory": create_singleton_factory(lambda deps, config: ConnectionPool(**config)),
        ... })
    """
    built = False
    product: Any = None

    async def singleton_factory(dependencies: Dict[str, Any], config: Dict[str, Any]) -> Any:
        nonlocal built, product
        if not built:
            product = await _build(factory, dependencies, config)
            built = True
        return product

    return singleton_factory


def create_lazy_factory(factory: ServiceFactory) -> ServiceFactory:
    """Wrap a factory so the service product is a coroutine function building the real product on first call.

    Useful for expensive services that should only be built when first used.

    Example:
        >>> orchestrator.register({"name": "model", "factory": create_lazy_factory(load_model)})
        >>> get_model = await orchestrator.start("model")
        >>> model = await get_model()
    """

    def lazy_factory(dependencies: Dict[str, Any], config: Dict[str, Any]) -> Callable[[], Any]:
        built = False
        product: Any = None

        async def get_product() -> Any:
            nonlocal built, product
            if not built:
                product = await _build(factory, dependencies, config)
                built = True
            return product

        return get_product

    return lazy_factory


def service(
    name: Optional[str] = None,
    *,
    version: str = "1.0.0",
    description: Optional[str] = None,
    dependencies: Iterable[str] = (),
    singleton: bool = True,
    auto_start: bool = False,
    factory: Optional[ServiceFactory] = None,
    config: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Callable[[Type[T]], Type[T]]:
    """Class decorator attaching a service definition to a class.

    Without an explicit factory the class is instantiated as
    ``cls(dependencies, config)``. The class name is used when ``name`` is omitted.

    Example:
        >>> @service("notifier", dependencies=["mailer"])
        ... class Notifier:
        ...     def __init__(self, dependencies, config):
        ...         self.mailer = dependencies["mailer"]
        >>>
        >>> orchestrator.register_class(Notifier)
    """

    def decorator(cls: Type[T]) -> Type[T]:
        definition = ServiceDefinition(
            name=name or cls.__name__,
            version=version,
            description=description if description is not None else inspect.getdoc(cls),
            dependencies=tuple(dependencies),
            singleton=singleton,
            auto_start=auto_start,
            factory=factory or (lambda deps, cfg: cls(deps, cfg)),
            config=config or {},
            metadata=metadata or {},
        )
        setattr(cls, SERVICE_DEFINITION_ATTRIBUTE, definition)
        return cls

    return decorator


def definition_from_class(cls: Type[Any]) -> ServiceDefinition:
    """Return the definition attached to a class by ``@service``.

    Raises:
        RegistrationError: If the class was not decorated.
    """
    definition = cls.__dict__.get(SERVICE_DEFINITION_ATTRIBUTE)
    if not isinstance(definition, ServiceDefinition):
        raise RegistrationError(f"Class {cls.__name__} is not decorated with @service")
    return definition
