# MARKETSCOPE_FEAT: plugin-base-001
"""
MARKETSCOPE - Plugin Base Classes
=================================

Plugin contract shared by every data, AI, analytics and output plugin.

Plugin Categories:
- data-provider: Market data, news and economic indicator feeds
- ai-provider: Text generation backends
- analytics: Sentiment and other derived analysis
- output-format: Report renderers
- ui, workflow, integration, utility

Author: MARKETSCOPE Development Team
Version: 1.0.0
"""

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Type, TYPE_CHECKING, Union

from pydantic import BaseModel, ConfigDict, Field

from .event_bus import EventHandler, EventType
from .exceptions import PluginError

if TYPE_CHECKING:
    from .config_manager import ConfigManager
    from .event_bus import EventBus
    from .service_container import ServiceContainer


class PluginCategory(str, Enum):
    """Plugin categories."""

    DATA_PROVIDER = "data-provider"
    AI_PROVIDER = "ai-provider"
    ANALYTICS = "analytics"
    OUTPUT_FORMAT = "output-format"
    UI = "ui"
    WORKFLOW = "workflow"
    INTEGRATION = "integration"
    UTILITY = "utility"


class PluginStatus(str, Enum):
    """Plugin status as tracked by the registry."""

    LOADING = "loading"
    ACTIVE = "active"
    ERROR = "error"
    DISABLED = "disabled"
    UNLOADED = "unloaded"


class PluginManifest(BaseModel):
    """
    Plugin manifest.

    Accepts both snake_case and the camelCase keys used in manifest files
    (``entryPoint``, ``configSchema``).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    version: str = "1.0.0"
    description: str = ""
    author: str = ""
    category: PluginCategory
    dependencies: List[str] = Field(default_factory=list)
    entry_point: str = Field("", alias="entryPoint")
    permissions: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    capabilities: List[str] = Field(default_factory=list)
    config_schema: Optional[Dict[str, Dict[str, Any]]] = Field(None, alias="configSchema")
    homepage: Optional[str] = None
    repository: Optional[str] = None
    license: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return self.model_dump(mode="json")


@dataclass
class PluginContext:
    """Everything a plugin gets from the kernel at init time."""

    event_bus: "EventBus"
    service_container: Optional["ServiceContainer"]
    config_manager: Optional["ConfigManager"]
    plugin_id: str
    plugin_directory: str = "./plugins"
    config_directory: str = "./config"


class Plugin(ABC):
    """
    Base class for MARKETSCOPE plugins.

    The plugin registry drives the lifecycle; plugins never call these
    methods on each other.

    Lifecycle:
        1. init(context, config) - Store context, apply config defaults, subscribe
        2. start() - Begin operation
        3. stop() - Drop subscriptions, status becomes disabled
        4. cleanup() - Release resources before unload

    Set ``config_model`` to a pydantic model to get the config decoded
    into ``self.settings`` during init.

    Example:
        class NewsFeed(Plugin):
            def __init__(self):
                super().__init__(PluginManifest(
                    id="newsapi",
                    name="NewsAPI",
                    category=PluginCategory.DATA_PROVIDER,
                ))

            async def _setup_subscriptions(self) -> None:
                self.subscribe("research.requested", self.on_research)
    """

    config_model: Optional[Type[BaseModel]] = None

    def __init__(self, manifest: Union[PluginManifest, Dict[str, Any]]):
        if not isinstance(manifest, PluginManifest):
            manifest = PluginManifest.model_validate(manifest)

        self.manifest = manifest
        self.status = PluginStatus.LOADING
        self.config: Dict[str, Any] = {}
        self.settings: Optional[BaseModel] = None
        self._context: Optional[PluginContext] = None
        self._subscriptions: Set[str] = set()
        self._logger = logging.getLogger(f"MARKETSCOPE_{manifest.id}")
        self._started_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        """Plugin id."""
        return self.manifest.id

    @property
    def category(self) -> PluginCategory:
        """Plugin category."""
        return self.manifest.category

    @property
    def context(self) -> Optional[PluginContext]:
        """Context handed over by the registry."""
        return self._context

    async def init(self, context: PluginContext, config: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize plugin with its context and configuration.

        Args:
            context: Kernel context for this plugin
            config: Plugin configuration
        """
        self._context = context
        self.config = dict(config or {})
        self._apply_defaults()

        if self.config_model is not None:
            self.settings = self.config_model.model_validate(self.config)

        await self._setup_subscriptions()

        self.status = PluginStatus.ACTIVE

        if self.manifest.config_schema and not await self.validate_config(self.config):
            self._logger.warning(
                f"Configuration validation failed. Plugin {self.id} may not work correctly."
            )

        await self.publish_event(
            EventType.PLUGIN_INITIALIZED, {"plugin_id": self.id, "config": self.config}
        )
        self._logger.info(f"Plugin initialized: {self.id}")

    @abstractmethod
    async def _setup_subscriptions(self) -> None:
        """Setup event subscriptions. Must be implemented by subclasses."""
        pass

    async def start(self) -> None:
        """Start plugin operation."""
        if self.status != PluginStatus.ACTIVE:
            raise PluginError(
                self.id,
                f"Cannot start plugin {self.id} - status is {self.status.value}",
                code="INVALID_STATE",
            )

        self._started_at = datetime.now(timezone.utc)
        await self.publish_event(EventType.PLUGIN_STARTED, {"plugin_id": self.id})
        self._logger.info(f"Plugin started: {self.id}")

    async def stop(self) -> None:
        """Stop plugin operation."""
        self._cleanup_subscriptions()
        self.status = PluginStatus.DISABLED

        await self.publish_event(EventType.PLUGIN_STOPPED, {"plugin_id": self.id})
        self._logger.info(f"Plugin stopped: {self.id}")

    async def cleanup(self) -> None:
        """Release plugin resources."""
        self._cleanup_subscriptions()
        await self.publish_event(EventType.PLUGIN_CLEANUP, {"plugin_id": self.id})
        self._logger.info(f"Plugin cleaned up: {self.id}")

    def get_status(self) -> PluginStatus:
        return self.status

    async def is_healthy(self) -> bool:
        """Override to add custom health checks."""
        return self.status == PluginStatus.ACTIVE

    def get_capabilities(self) -> List[str]:
        return list(self.manifest.capabilities)

    def get_config_schema(self) -> Optional[Dict[str, Dict[str, Any]]]:
        return self.manifest.config_schema

    async def validate_config(self, config: Dict[str, Any]) -> bool:
        """Check that every required schema field is present or defaulted."""
        schema = self.manifest.config_schema
        if not schema:
            return True

        for key, spec in schema.items():
            if spec.get("required") and key not in config and spec.get("default") is None:
                self._logger.error(f"Missing required configuration field: {key}")
                return False

        return True

    def get_config(self) -> Dict[str, Any]:
        return dict(self.config)

    async def update_config(self, new_config: Dict[str, Any]) -> None:
        """
        Merge new values into the configuration.

        Raises:
            PluginError: If the merged configuration is invalid
        """
        merged = {**self.config, **new_config}
        if not await self.validate_config(merged):
            raise PluginError(
                self.id, f"Invalid configuration for plugin {self.id}", code="INVALID_CONFIG"
            )

        if self.config_model is not None:
            self.settings = self.config_model.model_validate(merged)
        self.config = merged

        await self.publish_event(
            EventType.PLUGIN_CONFIG_UPDATED, {"plugin_id": self.id, "config": self.config}
        )

    def get_config_value(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def set_config_value(self, key: str, value: Any) -> None:
        self.config[key] = value

    # -------------------------------------------------------------------------
    # Helpers for subclasses
    # -------------------------------------------------------------------------

    async def publish_event(self, event_type: Union[str, EventType], data: Any = None) -> None:
        """Publish an event with this plugin as source."""
        if self._context is not None:
            await self._context.event_bus.publish(event_type, data, source=self.id)

    def subscribe(
        self, event_type: Union[str, EventType], handler: EventHandler, priority: int = 0
    ) -> str:
        """
        Subscribe to events; removed again on stop() or cleanup().

        Returns:
            Subscription ID
        """
        if self._context is None:
            raise RuntimeError("Event bus not initialized")

        sub_id = self._context.event_bus.subscribe(
            event_type, handler, priority, f"{self.id}_{len(self._subscriptions)}"
        )
        self._subscriptions.add(sub_id)
        return sub_id

    async def get_service(self, service_id: str) -> Any:
        """Resolve a service from the kernel container."""
        if self._context is None or self._context.service_container is None:
            raise RuntimeError("Service container not available")
        return await self._context.service_container.resolve(service_id)

    def _cleanup_subscriptions(self) -> None:
        if self._context is not None:
            for sub_id in self._subscriptions:
                self._context.event_bus.unsubscribe(sub_id)
        self._subscriptions.clear()

    def _apply_defaults(self) -> None:
        for key, spec in (self.manifest.config_schema or {}).items():
            if spec.get("default") is not None and key not in self.config:
                self.config[key] = spec["default"]

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.id} status={self.status.value}>"


async def call_optional(instance: Any, method: str, *args: Any) -> bool:
    """
    Call ``instance.method(*args)`` if it exists, awaiting the result.

    Returns:
        True if the method existed and was called
    """
    func = getattr(instance, method, None)
    if not callable(func):
        return False

    result = func(*args)
    if inspect.isawaitable(result):
        await result
    return True


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "PluginCategory",
    "PluginStatus",
    "PluginManifest",
    "PluginContext",
    "Plugin",
    "call_optional",
]
