"""Application layer - Registered service definitions."""

import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from pydantic import ValidationError

from miraveja_orchestrator.domain import NotRegisteredError, RegistrationError, ServiceDefinition

logger = logging.getLogger(__name__)


class ServiceDefinitionStore:
    """Immutable-after-registration service definitions keyed by name.

    Attributes:
        _definitions: Definitions in registration order.
    """

    def __init__(self) -> None:
        self._definitions: Dict[str, ServiceDefinition] = {}

    @staticmethod
    def coerce(definition: Union[ServiceDefinition, Mapping[str, Any]]) -> ServiceDefinition:
        """Build a validated definition from a model or a mapping of fields.

        Raises:
            RegistrationError: If the fields are invalid (empty name, non-callable factory, ...).
        """
        if isinstance(definition, ServiceDefinition):
            return definition
        try:
            return ServiceDefinition.model_validate(dict(definition))
        except ValidationError as e:
            name = definition.get("name") if isinstance(definition, Mapping) else None
            raise RegistrationError(f"Invalid definition for service {name!r}: {e}") from e
        except TypeError as e:
            raise RegistrationError(f"Invalid service definition: {e}") from e

    def add(self, definition: ServiceDefinition) -> None:
        """Store a definition under its name.

        Raises:
            RegistrationError: If the name is already taken or the factory is not callable.
        """
        if not definition.name:
            raise RegistrationError("Service name is required")
        if not callable(definition.factory):
            raise RegistrationError(f"Factory of service '{definition.name}' must be callable")
        if definition.name in self._definitions:
            raise RegistrationError(f"Service '{definition.name}' is already registered")

        self._definitions[definition.name] = definition
        logger.debug("Stored definition for service '%s' (version %s)", definition.name, definition.version)

    def remove(self, name: str) -> ServiceDefinition:
        """Remove and return a definition.

        Raises:
            NotRegisteredError: If no definition exists for the name.
        """
        try:
            return self._definitions.pop(name)
        except KeyError:
            raise NotRegisteredError(name) from None

    def get(self, name: str) -> ServiceDefinition:
        """Return the definition for a name.

        Raises:
            NotRegisteredError: If no definition exists for the name.
        """
        try:
            return self._definitions[name]
        except KeyError:
            raise NotRegisteredError(name) from None

    def find(self, name: str) -> Optional[ServiceDefinition]:
        return self._definitions.get(name)

    def names(self) -> List[str]:
        return list(self._definitions)

    def dependents_of(self, name: str) -> List[str]:
        """Return registered services that list ``name`` as a dependency."""
        return [d.name for d in self._definitions.values() if name in d.dependencies]

    def clear(self) -> None:
        self._definitions.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __iter__(self) -> Iterator[ServiceDefinition]:
        return iter(list(self._definitions.values()))

    def __len__(self) -> int:
        return len(self._definitions)
