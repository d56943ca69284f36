# MARKETSCOPE Core Infrastructure
"""
Core microkernel components for MARKETSCOPE.

Modules:
    event_bus: Prioritized publish/subscribe with history
    service_container: Dependency injection with lazy singletons
    plugin_base: Plugin manifest, context and base class
    plugin_registry: Plugin registration, loading and status tracking
    lifecycle_manager: Ordered startup/shutdown phases with hooks
    config_manager: Layered configuration with validation and watchers
    kernel: Facade composing all of the above
"""

from .event_bus import EventBus, Event, EventType, Subscription
from .exceptions import (
    KernelError,
    ServiceNotFoundError,
    CircularDependencyError,
    PluginError,
    MissingDependencyError,
    PluginInitError,
    HookError,
    AlreadyRunningError,
    NotRunningError,
)
from .service_container import ServiceContainer, ServiceMetadata
from .plugin_base import Plugin, PluginCategory, PluginContext, PluginManifest, PluginStatus
from .plugin_registry import PluginInfo, PluginRegistry
from .lifecycle_manager import LifecycleHook, LifecycleManager, LifecyclePhase, LifecycleStatus
from .config_manager import ConfigManager, DefaultsSource, EnvironmentSource, FileSource
from .kernel import Kernel, KernelOptions, KernelStatus

__all__ = [
    "EventBus",
    "Event",
    "EventType",
    "Subscription",
    "KernelError",
    "ServiceNotFoundError",
    "CircularDependencyError",
    "PluginError",
    "MissingDependencyError",
    "PluginInitError",
    "HookError",
    "AlreadyRunningError",
    "NotRunningError",
    "ServiceContainer",
    "ServiceMetadata",
    "Plugin",
    "PluginCategory",
    "PluginContext",
    "PluginManifest",
    "PluginStatus",
    "PluginInfo",
    "PluginRegistry",
    "LifecycleHook",
    "LifecycleManager",
    "LifecyclePhase",
    "LifecycleStatus",
    "ConfigManager",
    "DefaultsSource",
    "EnvironmentSource",
    "FileSource",
    "Kernel",
    "KernelOptions",
    "KernelStatus",
]
