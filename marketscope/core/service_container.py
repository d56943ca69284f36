# MARKETSCOPE_FEAT: service-container-001
"""
MARKETSCOPE - Service Container
===============================

Registry and resolver for named services.

Features:
- Singleton and transient lifetimes
- Declared dependencies resolved depth-first before the factory runs
- Circular dependency detection during resolution and by graph validation
- Unregistration blocked while other services depend on an id

Author: MARKETSCOPE Development Team
Version: 1.0.0
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .event_bus import EventBus, EventType
from .exceptions import (
    CircularDependencyError,
    DuplicateServiceError,
    HasDependentsError,
    ServiceNotFoundError,
)

logger = logging.getLogger("MARKETSCOPE_ServiceContainer")

SOURCE = "service-container"

# Sentinel so that None or falsy objects can be cached singletons
_UNSET = object()

ServiceFactory = Callable[[], Any]


@dataclass
class ServiceDefinition:
    """How to build one service, plus its cached singleton instance."""

    id: str
    factory: ServiceFactory
    singleton: bool = True
    dependencies: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    instance: Any = _UNSET

    @property
    def resolved(self) -> bool:
        return self.singleton and self.instance is not _UNSET


@dataclass(frozen=True)
class ServiceMetadata:
    """Read-only snapshot of a service registration."""

    id: str
    singleton: bool
    dependencies: List[str]
    resolved: bool
    metadata: Dict[str, Any]


@dataclass(frozen=True)
class DependencyValidation:
    """Result of validate_dependencies()."""

    valid: bool
    cycles: List[List[str]]


class ServiceContainer:
    """
    Dependency injection container.

    Example:
        container = ServiceContainer(event_bus)
        container.register_singleton("http", make_session)
        container.register_transient("news", make_news_client, ["http"])

        news = await container.resolve("news")
    """

    def __init__(self, event_bus: EventBus):
        self._event_bus = event_bus
        self._services: Dict[str, ServiceDefinition] = {}
        self._resolving: Set[str] = set()
        # Mirrors _resolving in call order, for error reporting
        self._resolution_chain: List[str] = []

        logger.info("ServiceContainer initialized")

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(
        self,
        service_id: str,
        factory: ServiceFactory,
        singleton: bool = True,
        dependencies: Optional[Iterable[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Register a service factory.

        Args:
            service_id: Unique service id
            factory: Zero-argument callable, may return an awaitable
            singleton: Cache the first resolved instance
            dependencies: Service ids to resolve before the factory runs
            metadata: Free-form metadata for lookups

        Raises:
            DuplicateServiceError: If the id is already registered
        """
        if service_id in self._services:
            raise DuplicateServiceError(service_id)

        definition = ServiceDefinition(
            id=service_id,
            factory=factory,
            singleton=singleton,
            dependencies=list(dependencies or []),
            metadata=dict(metadata or {}),
        )
        self._services[service_id] = definition

        logger.debug(f"Service registered: {service_id} (singleton={singleton})")
        self._event_bus.emit(
            EventType.SERVICE_REGISTERED,
            {
                "service_id": service_id,
                "singleton": singleton,
                "dependencies": list(definition.dependencies),
            },
            source=SOURCE,
        )

    def register_singleton(
        self,
        service_id: str,
        factory: ServiceFactory,
        dependencies: Optional[Iterable[str]] = None,
    ) -> None:
        """Register a service resolved once and cached."""
        self.register(service_id, factory, singleton=True, dependencies=dependencies)

    def register_transient(
        self,
        service_id: str,
        factory: ServiceFactory,
        dependencies: Optional[Iterable[str]] = None,
    ) -> None:
        """Register a service built fresh on every resolve."""
        self.register(service_id, factory, singleton=False, dependencies=dependencies)

    def register_instance(self, service_id: str, instance: Any) -> None:
        """Register an already built object as a singleton."""
        self.register(service_id, lambda: instance, singleton=True)

    def unregister(self, service_id: str) -> bool:
        """
        Remove a service.

        Returns:
            False if the id is unknown

        Raises:
            HasDependentsError: If another service lists it as a dependency
        """
        if service_id not in self._services:
            return False

        dependents = self.get_dependents(service_id)
        if dependents:
            raise HasDependentsError(service_id, dependents)

        del self._services[service_id]

        logger.debug(f"Service unregistered: {service_id}")
        self._event_bus.emit(
            EventType.SERVICE_UNREGISTERED,
            {"service_id": service_id},
            source=SOURCE,
        )
        return True

    def clear(self) -> None:
        """Drop every registration and all resolution state."""
        self._services.clear()
        self._resolving.clear()
        self._resolution_chain.clear()

        logger.info("Service container cleared")
        self._event_bus.emit(EventType.SERVICE_CONTAINER_CLEARED, {}, source=SOURCE)

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    async def resolve(self, service_id: str) -> Any:
        """
        Resolve a service instance.

        Raises:
            ServiceNotFoundError: If the id is not registered
            CircularDependencyError: If the id is already being resolved
        """
        definition = self._services.get(service_id)
        if definition is None:
            raise ServiceNotFoundError(service_id)

        if service_id in self._resolving:
            raise CircularDependencyError(
                service_id, self._resolution_chain + [service_id]
            )

        if definition.resolved:
            return definition.instance

        self._resolving.add(service_id)
        self._resolution_chain.append(service_id)
        try:
            for dependency in definition.dependencies:
                await self.resolve(dependency)

            instance = definition.factory()
            if inspect.isawaitable(instance):
                instance = await instance

            if definition.singleton:
                definition.instance = instance
        finally:
            self._resolving.discard(service_id)
            if self._resolution_chain and self._resolution_chain[-1] == service_id:
                self._resolution_chain.pop()

        logger.debug(f"Service resolved: {service_id}")
        self._event_bus.emit(
            EventType.SERVICE_RESOLVED,
            {"service_id": service_id, "singleton": definition.singleton},
            source=SOURCE,
        )
        return instance

    async def resolve_all(self, service_ids: Iterable[str]) -> List[Any]:
        """Resolve ids in order; the first failure propagates."""
        instances = []
        for service_id in service_ids:
            instances.append(await self.resolve(service_id))
        return instances

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def is_registered(self, service_id: str) -> bool:
        return service_id in self._services

    def is_resolved(self, service_id: str) -> bool:
        definition = self._services.get(service_id)
        return definition is not None and definition.resolved

    def get_all_services(self) -> List[ServiceMetadata]:
        """Metadata snapshot of every registration."""
        return [
            ServiceMetadata(
                id=definition.id,
                singleton=definition.singleton,
                dependencies=list(definition.dependencies),
                resolved=definition.resolved,
                metadata=dict(definition.metadata),
            )
            for definition in self._services.values()
        ]

    def get_services_by_metadata(self, key: str, value: Any) -> List[ServiceMetadata]:
        return [s for s in self.get_all_services() if s.metadata.get(key) == value]

    def get_dependency_graph(self) -> Dict[str, List[str]]:
        """Map of service id to its declared dependency ids."""
        return {sid: list(d.dependencies) for sid, d in self._services.items()}

    def get_dependents(self, service_id: str) -> List[str]:
        """Ids of services that declare service_id as a dependency."""
        return [
            sid for sid, definition in self._services.items()
            if service_id in definition.dependencies
        ]

    def validate_dependencies(self) -> DependencyValidation:
        """
        Walk the whole dependency graph and collect every cycle.

        Each cycle is reported as the ordered ids along the back edge,
        starting at the id that closes it. Registration state is untouched.
        """
        visited: Set[str] = set()
        on_stack: Set[str] = set()
        cycles: List[List[str]] = []

        def visit(node: str, path: List[str]) -> None:
            if node in on_stack:
                cycles.append(path[path.index(node):])
                return
            if node in visited:
                return

            visited.add(node)
            on_stack.add(node)

            definition = self._services.get(node)
            if definition is not None:
                for dependency in definition.dependencies:
                    visit(dependency, path + [node])

            on_stack.discard(node)

        for service_id in self._services:
            if service_id not in visited:
                visit(service_id, [])

        return DependencyValidation(valid=not cycles, cycles=cycles)

    def get_statistics(self) -> Dict[str, int]:
        """Get container statistics."""
        services = list(self._services.values())
        return {
            "total": len(services),
            "singletons": sum(1 for s in services if s.singleton),
            "resolved": sum(1 for s in services if s.resolved),
            "with_dependencies": sum(1 for s in services if s.dependencies),
        }


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "ServiceFactory",
    "ServiceDefinition",
    "ServiceMetadata",
    "DependencyValidation",
    "ServiceContainer",
]
