# MARKETSCOPE - Market Research Platform
"""
MARKETSCOPE: Plugin-based market research platform.

Core Components:
    - Event Bus: Prioritized pub/sub communication
    - Service Container: Dependency injection
    - Plugin Registry: Manifest-driven plugins
    - Lifecycle Manager: Ordered startup and shutdown
    - Kernel: Central coordination

Plugin Categories:
    - Data providers: Market, news and economic data
    - AI providers: Text generation
    - Analytics: Sentiment, trends, forecasts
    - Output formats: Report rendering

Example:
    from marketscope import Kernel, KernelOptions

    kernel = Kernel(KernelOptions(config_file="config/research.yaml"))
    await kernel.start()
    await kernel.run_forever()

Author: MARKETSCOPE Development Team
Version: 1.0.0
"""

from marketscope.core.event_bus import EventBus, Event, EventType
from marketscope.core.service_container import ServiceContainer
from marketscope.core.plugin_base import (
    Plugin,
    PluginCategory,
    PluginContext,
    PluginManifest,
    PluginStatus,
)
from marketscope.core.plugin_registry import PluginRegistry
from marketscope.core.lifecycle_manager import LifecycleManager
from marketscope.core.config_manager import ConfigManager
from marketscope.core.kernel import Kernel, KernelOptions

__version__ = "1.0.0"
__author__ = "MARKETSCOPE Development Team"

__all__ = [
    # Core
    "EventBus",
    "Event",
    "EventType",
    "ServiceContainer",
    "PluginRegistry",
    "LifecycleManager",
    "ConfigManager",
    "Kernel",
    "KernelOptions",
    # Plugins
    "Plugin",
    "PluginCategory",
    "PluginContext",
    "PluginManifest",
    "PluginStatus",
]
