# MARKETSCOPE_FEAT: exceptions-001
"""
MARKETSCOPE - Kernel Exception Hierarchy
========================================

Structured exception types raised by the microkernel components.

Exception Categories:
    - Registration: duplicate service ids
    - Resolution: unknown services, dependency cycles, blocked unregistration
    - Plugins: missing dependencies, init and load failures
    - Lifecycle: critical hook failures, start/stop misuse
    - Configuration: missing keys and failed validation

Author: MARKETSCOPE Development Team
Version: 1.0.0
"""

from typing import Any, Dict, List, Optional


class KernelError(Exception):
    """
    Base exception for all microkernel errors.

    Attributes:
        message: Human-readable error description
        code: Optional error code for programmatic handling
        details: Optional dict with additional context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


# =============================================================================
# SERVICE CONTAINER ERRORS
# =============================================================================


class DuplicateRegistrationError(KernelError):
    """An id is already registered."""

    def __init__(self, registration_id: str, kind: str = "service"):
        super().__init__(
            f"{kind.capitalize()} {registration_id} is already registered",
            code="DUPLICATE_REGISTRATION",
            details={"id": registration_id, "kind": kind},
        )
        self.registration_id = registration_id


class DuplicateServiceError(DuplicateRegistrationError):
    """A service id is already registered in the container."""

    def __init__(self, service_id: str):
        super().__init__(service_id, kind="service")
        self.service_id = service_id


class ServiceNotFoundError(KernelError):
    """Requested service is not registered."""

    def __init__(self, service_id: str):
        super().__init__(
            f"Service {service_id} is not registered",
            code="SERVICE_NOT_FOUND",
            details={"service_id": service_id},
        )
        self.service_id = service_id


class CircularDependencyError(KernelError):
    """Service is already being resolved further up the current chain."""

    def __init__(self, service_id: str, chain: Optional[List[str]] = None):
        chain = list(chain or [])
        super().__init__(
            f"Circular dependency detected for service {service_id}",
            code="CIRCULAR_DEPENDENCY",
            details={"service_id": service_id, "chain": chain},
        )
        self.service_id = service_id
        self.chain = chain


class HasDependentsError(KernelError):
    """Service cannot be unregistered while others depend on it."""

    def __init__(self, service_id: str, dependents: List[str]):
        super().__init__(
            f"Cannot unregister service {service_id} - it has dependents: "
            f"{', '.join(dependents)}",
            code="HAS_DEPENDENTS",
            details={"service_id": service_id, "dependents": list(dependents)},
        )
        self.service_id = service_id
        self.dependents = list(dependents)


# =============================================================================
# PLUGIN ERRORS
# =============================================================================


class PluginError(KernelError):
    """Base exception for plugin registry errors."""

    def __init__(self, plugin_id: str, message: str, code: Optional[str] = None, **details):
        super().__init__(message, code=code, details={"plugin_id": plugin_id, **details})
        self.plugin_id = plugin_id


class MissingDependencyError(PluginError):
    """A declared plugin dependency is absent or not active."""

    def __init__(self, plugin_id: str, dependency_id: str):
        super().__init__(
            plugin_id,
            f"Dependency {dependency_id} is not available or not active",
            code="MISSING_DEPENDENCY",
            dependency_id=dependency_id,
        )
        self.dependency_id = dependency_id


class PluginInitError(PluginError):
    """Plugin raised during init() or start()."""

    def __init__(self, plugin_id: str, reason: str):
        super().__init__(
            plugin_id,
            f"Plugin {plugin_id} failed to initialize: {reason}",
            code="PLUGIN_INIT_FAILURE",
            reason=reason,
        )
        self.reason = reason


class PluginLoadError(PluginError):
    """Manifest entry point could not be turned into a plugin instance."""

    def __init__(self, plugin_id: str, entry_point: str, reason: str):
        super().__init__(
            plugin_id,
            f"Cannot load plugin {plugin_id} from {entry_point!r}: {reason}",
            code="PLUGIN_LOAD_FAILURE",
            entry_point=entry_point,
            reason=reason,
        )
        self.entry_point = entry_point


# =============================================================================
# LIFECYCLE ERRORS
# =============================================================================


class HookError(KernelError):
    """A hook failed inside the critical phase."""

    def __init__(self, hook_id: str, phase: str, plugin_id: str, reason: str):
        super().__init__(
            f"Hook {hook_id} ({plugin_id}) failed in phase {phase}: {reason}",
            code="HOOK_FAILURE",
            details={"hook_id": hook_id, "phase": phase, "plugin_id": plugin_id},
        )
        self.hook_id = hook_id
        self.phase = phase
        self.plugin_id = plugin_id


class AlreadyRunningError(KernelError):
    """start() called on a component that is already running."""

    def __init__(self, component: str):
        super().__init__(f"{component} is already running", code="ALREADY_RUNNING")
        self.component = component


class NotRunningError(KernelError):
    """Operation requires a running component."""

    def __init__(self, component: str):
        super().__init__(f"{component} is not running", code="NOT_RUNNING")
        self.component = component


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigKeyError(KernelError, KeyError):
    """Configuration key not found and no default given."""

    def __init__(self, key: str):
        KernelError.__init__(
            self,
            f"Configuration key '{key}' not found",
            code="CONFIG_KEY_NOT_FOUND",
            details={"key": key},
        )
        self.key = key

    def __str__(self) -> str:
        return KernelError.__str__(self)


class ConfigValidationError(KernelError):
    """Value failed a required configuration validation."""

    def __init__(self, key: str, reason: str):
        super().__init__(
            f"Configuration validation failed for '{key}': {reason}",
            code="CONFIG_VALIDATION",
            details={"key": key},
        )
        self.key = key


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "KernelError",
    "DuplicateRegistrationError",
    "DuplicateServiceError",
    "ServiceNotFoundError",
    "CircularDependencyError",
    "HasDependentsError",
    "PluginError",
    "MissingDependencyError",
    "PluginInitError",
    "PluginLoadError",
    "HookError",
    "AlreadyRunningError",
    "NotRunningError",
    "ConfigKeyError",
    "ConfigValidationError",
]
