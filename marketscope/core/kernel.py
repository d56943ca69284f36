# MARKETSCOPE_FEAT: kernel-001
"""
MARKETSCOPE - Microkernel
=========================

Composes the event bus, service container, config manager, plugin
registry and lifecycle manager, and exposes the control surface used
by the CLI and web front-ends.

Features:
- Explicitly constructed components, owned by the kernel
- Core components registered as services under fixed ids
- Layered configuration (environment over file over defaults)
- Aggregate status snapshot
- Graceful shutdown on SIGINT/SIGTERM

Author: MARKETSCOPE Development Team
Version: 1.0.0
"""

import asyncio
import logging
import signal
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from .config_manager import ConfigManager, DefaultsSource, EnvironmentSource, FileSource
from .event_bus import Event, EventBus, EventHandler, EventType
from .exceptions import AlreadyRunningError, NotRunningError
from .lifecycle_manager import LifecycleManager, LifecycleStatus
from .plugin_base import PluginCategory, PluginManifest
from .plugin_registry import PluginInfo, PluginRegistry, manifest_of
from .service_container import ServiceContainer, ServiceFactory, ServiceMetadata

logger = logging.getLogger("MARKETSCOPE_Kernel")

SOURCE = "kernel"

# Service ids of the core components
KERNEL_SERVICE = "kernel"
EVENT_BUS_SERVICE = "event_bus"
PLUGIN_REGISTRY_SERVICE = "plugin_registry"
SERVICE_CONTAINER_SERVICE = "service_container"
CONFIG_MANAGER_SERVICE = "config_manager"
LIFECYCLE_MANAGER_SERVICE = "lifecycle_manager"

APP_NAME = "Market Research Platform"
APP_VERSION = "1.0.0"


@dataclass
class KernelOptions:
    """Kernel construction options."""

    plugin_directory: str = "./plugins"
    config_directory: str = "./config"
    config_file: Optional[str] = None
    env_prefix: str = "APP_"
    environment: str = "development"
    enable_hot_reload: bool = False
    enable_debug_mode: bool = False
    max_plugins: int = 100
    plugin_timeout: int = 30000


@dataclass
class KernelStatus:
    """Aggregate snapshot of the kernel."""

    is_running: bool
    start_time: Optional[datetime]
    uptime: float
    plugins: Dict[str, Any] = field(default_factory=dict)
    services: Dict[str, Any] = field(default_factory=dict)
    config: Dict[str, Any] = field(default_factory=dict)
    lifecycle: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = asdict(self)
        data["start_time"] = self.start_time.isoformat() if self.start_time else None
        return data


class Kernel:
    """
    Microkernel for MARKETSCOPE.

    Example:
        kernel = Kernel(KernelOptions(config_file="config/research.yaml"))
        await kernel.start()

        await kernel.register_plugin(YahooFinancePlugin())
        news = kernel.get_plugins_by_category("data-provider")

        await kernel.stop()
    """

    def __init__(
        self,
        options: Optional[KernelOptions] = None,
        event_bus: Optional[EventBus] = None,
        service_container: Optional[ServiceContainer] = None,
        config_manager: Optional[ConfigManager] = None,
    ):
        self._options = options or KernelOptions()

        self._event_bus = event_bus or EventBus()
        self._service_container = service_container or ServiceContainer(self._event_bus)
        self._config_manager = config_manager or ConfigManager(self._event_bus)
        self._plugin_registry = PluginRegistry(
            self._event_bus,
            self._service_container,
            self._config_manager,
            plugin_directory=self._options.plugin_directory,
            config_directory=self._options.config_directory,
        )
        self._lifecycle_manager = LifecycleManager(self._event_bus)

        self._running = False
        self._start_time: Optional[datetime] = None
        self._shutdown_event = asyncio.Event()
        self._signal_tasks: List[asyncio.Task] = []

        self._register_core_services()
        self._register_config_sources()
        self._setup_event_listeners()

        logger.info("Kernel initialized")

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def service_container(self) -> ServiceContainer:
        return self._service_container

    @property
    def config_manager(self) -> ConfigManager:
        return self._config_manager

    @property
    def plugin_registry(self) -> PluginRegistry:
        return self._plugin_registry

    @property
    def lifecycle_manager(self) -> LifecycleManager:
        return self._lifecycle_manager

    @property
    def options(self) -> KernelOptions:
        return self._options

    @property
    def is_running(self) -> bool:
        return self._running

    # -------------------------------------------------------------------------
    # Start / stop
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Load configuration and run the lifecycle startup phases.

        Raises:
            AlreadyRunningError: If the kernel is already running
        """
        if self._running:
            raise AlreadyRunningError("Kernel")

        self._running = True
        self._start_time = datetime.now(timezone.utc)
        self._shutdown_event.clear()
        logger.info("Starting kernel...")

        try:
            await self._publish(EventType.KERNEL_STARTING, {"options": asdict(self._options)})

            await self._config_manager.load()
            await self._lifecycle_manager.start()

            await self._publish(
                EventType.KERNEL_STARTED, {"start_time": self._start_time.isoformat()}
            )
        except Exception as e:
            self._running = False
            logger.error(f"Kernel start failed: {e}")
            await self._publish(EventType.KERNEL_START_ERROR, {"error": str(e)})
            raise

        logger.info("Kernel started")

    async def stop(self) -> None:
        """Run the lifecycle shutdown phases and stop all plugins."""
        if not self._running:
            return

        logger.info("Stopping kernel...")

        try:
            await self._publish(EventType.KERNEL_STOPPING, {})

            try:
                await self._lifecycle_manager.stop()
            finally:
                await self._plugin_registry.stop_all()

            uptime = self._get_uptime()
            self._running = False
            await self._publish(EventType.KERNEL_STOPPED, {"uptime": uptime})
        except Exception as e:
            self._running = False
            logger.error(f"Kernel stop failed: {e}")
            await self._publish(EventType.KERNEL_STOP_ERROR, {"error": str(e)})
            raise
        finally:
            self._shutdown_event.set()

        logger.info("Kernel stopped")

    async def run_forever(self) -> None:
        """Run until stop() is called or a shutdown signal arrives."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal)
            except (NotImplementedError, RuntimeError):
                # Windows doesn't support add_signal_handler
                pass

        await self._shutdown_event.wait()

    def _on_signal(self) -> None:
        logger.info("Shutdown signal received")
        self._signal_tasks.append(asyncio.get_running_loop().create_task(self.stop()))

    # -------------------------------------------------------------------------
    # Plugins
    # -------------------------------------------------------------------------

    async def register_plugin(
        self,
        instance: Any,
        force_reload: bool = False,
        config: Optional[Dict[str, Any]] = None,
    ) -> PluginInfo:
        """
        Register a plugin instance.

        Without an explicit config the plugin gets ``plugin_config.<id>``
        from the configuration.

        Raises:
            NotRunningError: If the kernel is not running
        """
        self._require_running()
        plugin_id = manifest_of(instance).id

        try:
            info = await self._plugin_registry.register_plugin(
                instance,
                force_reload=force_reload,
                config=config if config is not None else self._plugin_config(plugin_id),
            )
        except Exception as e:
            await self._publish(
                EventType.KERNEL_PLUGIN_REGISTER_ERROR, {"plugin_id": plugin_id, "error": str(e)}
            )
            raise

        await self._publish(EventType.KERNEL_PLUGIN_REGISTERED, {"plugin_id": plugin_id})
        return info

    async def load_plugin(
        self,
        manifest: Union[PluginManifest, Dict[str, Any]],
        config: Optional[Dict[str, Any]] = None,
    ) -> PluginInfo:
        """
        Load a plugin from its manifest entry point.

        Raises:
            NotRunningError: If the kernel is not running
        """
        self._require_running()
        if not isinstance(manifest, PluginManifest):
            manifest = PluginManifest.model_validate(manifest)

        try:
            info = await self._plugin_registry.load_plugin(
                manifest,
                config=config if config is not None else self._plugin_config(manifest.id),
            )
        except Exception as e:
            await self._publish(
                EventType.KERNEL_PLUGIN_LOAD_ERROR, {"plugin_id": manifest.id, "error": str(e)}
            )
            raise

        await self._publish(EventType.KERNEL_PLUGIN_LOADED, {"plugin_id": manifest.id})
        return info

    async def unload_plugin(self, plugin_id: str) -> bool:
        """
        Unload a plugin.

        Raises:
            NotRunningError: If the kernel is not running
        """
        self._require_running()

        try:
            result = await self._plugin_registry.unload_plugin(plugin_id)
        except Exception as e:
            await self._publish(
                EventType.KERNEL_PLUGIN_UNLOAD_ERROR, {"plugin_id": plugin_id, "error": str(e)}
            )
            raise

        if result:
            await self._publish(EventType.KERNEL_PLUGIN_UNLOADED, {"plugin_id": plugin_id})
        return result

    def get_plugins(self) -> List[PluginInfo]:
        return self._plugin_registry.get_all_plugins()

    def get_plugins_by_category(self, category: Union[str, PluginCategory]) -> List[PluginInfo]:
        return self._plugin_registry.get_plugins_by_category(category)

    def _plugin_config(self, plugin_id: str) -> Dict[str, Any]:
        section = self._config_manager.get("plugin_config", {})
        if isinstance(section, dict):
            return dict(section.get(plugin_id) or {})
        return {}

    # -------------------------------------------------------------------------
    # Services, config, events
    # -------------------------------------------------------------------------

    async def get_service(self, service_id: str) -> Any:
        return await self._service_container.resolve(service_id)

    def register_service(
        self,
        service_id: str,
        factory: ServiceFactory,
        singleton: bool = True,
        dependencies: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._service_container.register(
            service_id, factory, singleton=singleton, dependencies=dependencies, metadata=metadata
        )

    def get_services(self) -> List[ServiceMetadata]:
        return self._service_container.get_all_services()

    def get_config(self, key: str, *default: Any) -> Any:
        """Get a config value; raises ConfigKeyError if missing and no default."""
        return self._config_manager.get(key, *default)

    async def set_config(self, key: str, value: Any) -> None:
        await self._config_manager.set(key, value)

    def get_configuration(self) -> Dict[str, Any]:
        return self._config_manager.to_dict()

    async def publish_event(
        self,
        event_type: Union[str, EventType],
        data: Any = None,
        source: Optional[str] = SOURCE,
        target: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Event:
        return await self._event_bus.publish(
            event_type, data, source=source, target=target, metadata=metadata
        )

    def subscribe_to_events(
        self, event_type: Union[str, EventType], handler: EventHandler, priority: int = 0
    ) -> str:
        return self._event_bus.subscribe(event_type, handler, priority)

    def unsubscribe_from_events(self, subscription_id: str) -> bool:
        return self._event_bus.unsubscribe(subscription_id)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_status(self) -> KernelStatus:
        """Get aggregate plugin/service/config/lifecycle statistics."""
        plugin_stats = self._plugin_registry.get_statistics()
        service_stats = self._service_container.get_statistics()
        config_stats = self._config_manager.get_statistics()
        lifecycle_stats = self._lifecycle_manager.get_statistics()

        return KernelStatus(
            is_running=self._running,
            start_time=self._start_time,
            uptime=self._get_uptime(),
            plugins={
                "total": plugin_stats["total"],
                "active": plugin_stats["active"],
                "error": plugin_stats["error"],
                "disabled": plugin_stats["disabled"],
                "by_category": plugin_stats["by_category"],
            },
            services={
                "total": service_stats["total"],
                "resolved": service_stats["resolved"],
            },
            config={
                "total_keys": config_stats["total_keys"],
                "sources": config_stats["sources"],
            },
            lifecycle={
                "phases": lifecycle_stats["phases"],
                "hooks": lifecycle_stats["hooks"],
                "running": lifecycle_stats["running"],
                "current_phase": self._lifecycle_manager.get_current_phase(),
            },
        )

    def get_lifecycle_status(self) -> List[LifecycleStatus]:
        return self._lifecycle_manager.get_status()

    def _get_uptime(self) -> float:
        """Get uptime in seconds."""
        if not self._start_time or not self._running:
            return 0.0
        return (datetime.now(timezone.utc) - self._start_time).total_seconds()

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def _require_running(self) -> None:
        if not self._running:
            raise NotRunningError("Kernel")

    def _register_core_services(self) -> None:
        container = self._service_container
        container.register_instance(KERNEL_SERVICE, self)
        container.register_instance(EVENT_BUS_SERVICE, self._event_bus)
        container.register_instance(PLUGIN_REGISTRY_SERVICE, self._plugin_registry)
        container.register_instance(SERVICE_CONTAINER_SERVICE, container)
        container.register_instance(CONFIG_MANAGER_SERVICE, self._config_manager)
        container.register_instance(LIFECYCLE_MANAGER_SERVICE, self._lifecycle_manager)

    def _register_config_sources(self) -> None:
        options = self._options

        self._config_manager.add_source(
            EnvironmentSource(prefix=options.env_prefix, priority=100)
        )
        if options.config_file:
            self._config_manager.add_source(FileSource(options.config_file, priority=50))
        self._config_manager.add_source(DefaultsSource({
            "app": {
                "name": APP_NAME,
                "version": APP_VERSION,
                "environment": options.environment,
            },
            "plugins": {
                "directory": options.plugin_directory,
                "max_count": options.max_plugins,
                "timeout": options.plugin_timeout,
                "hot_reload": options.enable_hot_reload,
            },
            "debug": {
                "enabled": options.enable_debug_mode,
                "level": "info",
            },
        }, priority=0))

    def _setup_event_listeners(self) -> None:
        bus = self._event_bus

        if self._options.enable_debug_mode:
            bus.subscribe_to_all(self._log_event, priority=1000)

        bus.subscribe(EventType.PLUGIN_LOADED, self._on_plugin_loaded)
        bus.subscribe(EventType.PLUGIN_REGISTERED, self._on_plugin_loaded)
        bus.subscribe(EventType.PLUGIN_LOAD_ERROR, self._on_plugin_error)
        bus.subscribe(EventType.PLUGIN_REGISTER_ERROR, self._on_plugin_error)
        bus.subscribe(EventType.LIFECYCLE_PHASE_COMPLETED, self._on_phase_completed)

    @staticmethod
    def _log_event(event: Event) -> None:
        logger.debug(f"Event: {event.type} from {event.source} {event.data}")

    @staticmethod
    def _on_plugin_loaded(event: Event) -> None:
        logger.info(f"Plugin available: {event.data['plugin_id']}")

    @staticmethod
    def _on_plugin_error(event: Event) -> None:
        logger.error(f"Plugin error: {event.data['plugin_id']} - {event.data['error']}")

    @staticmethod
    def _on_phase_completed(event: Event) -> None:
        logger.info(f"Lifecycle phase completed: {event.data['phase']}")

    async def _publish(self, event_type: EventType, data: Dict[str, Any]) -> None:
        await self._event_bus.publish(event_type, data, source=SOURCE)


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "KERNEL_SERVICE",
    "EVENT_BUS_SERVICE",
    "PLUGIN_REGISTRY_SERVICE",
    "SERVICE_CONTAINER_SERVICE",
    "CONFIG_MANAGER_SERVICE",
    "LIFECYCLE_MANAGER_SERVICE",
    "KernelOptions",
    "KernelStatus",
    "Kernel",
]
