# MARKETSCOPE_FEAT: plugin-registry-001
"""
MARKETSCOPE - Plugin Registry
=============================

Tracks plugin instances, their manifests and status. The registry is the
only component that calls a plugin's init/start/stop/cleanup.

Features:
- Registration of ready-made plugin instances
- Manifest-driven loading through entry points ("pkg.module:Class" or .py files)
- Manifest discovery from plugin.yaml / plugin.json files
- Dependency validation against currently active plugins
- Per-plugin failure isolation with error counting

Author: MARKETSCOPE Development Team
Version: 1.0.0
"""

import importlib
import importlib.util
import inspect
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, TYPE_CHECKING, Union

import yaml
from pydantic import ValidationError

from .event_bus import EventBus, EventType
from .exceptions import MissingDependencyError, PluginInitError, PluginLoadError
from .plugin_base import (
    PluginCategory,
    PluginContext,
    PluginManifest,
    PluginStatus,
    call_optional,
)

if TYPE_CHECKING:
    from .config_manager import ConfigManager
    from .service_container import ServiceContainer

logger = logging.getLogger("MARKETSCOPE_PluginRegistry")

SOURCE = "plugin-registry"
MANIFEST_FILES = ("plugin.yaml", "plugin.yml", "plugin.json")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PluginInfo:
    """Registry record for one plugin."""

    manifest: PluginManifest
    instance: Any
    status: PluginStatus
    load_time: datetime
    last_used: datetime
    error_count: int = 0
    last_error: Optional[str] = None

    @property
    def id(self) -> str:
        return self.manifest.id

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.manifest.id,
            "name": self.manifest.name,
            "version": self.manifest.version,
            "category": self.manifest.category.value,
            "status": self.status.value,
            "load_time": self.load_time.isoformat(),
            "last_used": self.last_used.isoformat(),
            "error_count": self.error_count,
            "last_error": self.last_error,
        }


def manifest_of(instance: Any) -> PluginManifest:
    """Manifest of a plugin instance, validated."""
    manifest = getattr(instance, "manifest", None)
    if manifest is None:
        raise TypeError(f"{instance!r} has no manifest")
    if isinstance(manifest, PluginManifest):
        return manifest
    return PluginManifest.model_validate(manifest)


class PluginLoader(Protocol):
    """Turns an entry point into a plugin instance."""

    def can_load(self, entry_point: str) -> bool:
        ...

    def load(self, entry_point: str, manifest: PluginManifest) -> Any:
        ...


def _instantiate(plugin_class: Any, manifest: PluginManifest) -> Any:
    """Build a plugin, passing the manifest only if the constructor wants one."""
    try:
        params = [
            p for p in inspect.signature(plugin_class).parameters.values()
            if p.default is inspect.Parameter.empty
            and p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        ]
    except (TypeError, ValueError):
        params = []

    return plugin_class(manifest) if params else plugin_class()


class ModuleLoader:
    """Loads ``package.module:ClassName`` entry points with importlib."""

    def can_load(self, entry_point: str) -> bool:
        return ":" in entry_point and not entry_point.endswith(".py")

    def load(self, entry_point: str, manifest: PluginManifest) -> Any:
        module_name, _, attr = entry_point.partition(":")
        module = importlib.import_module(module_name)
        return _instantiate(getattr(module, attr), manifest)


class PythonFileLoader:
    """
    Loads a plugin class from a .py file.

    The entry point is ``path/to/file.py`` or ``path/to/file.py:ClassName``;
    relative paths are taken from the plugin directory. Without a class
    name the first class whose ``manifest_id`` matches the manifest is used.
    """

    def __init__(self, base_dir: Union[str, Path]):
        self._base_dir = Path(base_dir)

    def can_load(self, entry_point: str) -> bool:
        return entry_point.partition(":")[0].endswith(".py")

    def load(self, entry_point: str, manifest: PluginManifest) -> Any:
        file_part, _, attr = entry_point.partition(":")
        path = Path(file_part)
        if not path.is_absolute():
            path = self._base_dir / path
        if not path.exists():
            raise FileNotFoundError(f"Plugin file not found: {path}")

        module_name = f"marketscope_plugin_{manifest.id.replace('-', '_')}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if not spec or not spec.loader:
            raise ImportError(f"Cannot import {path}")

        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        if attr:
            return _instantiate(getattr(module, attr), manifest)

        for value in vars(module).values():
            if isinstance(value, type) and getattr(value, "manifest_id", None) == manifest.id:
                return _instantiate(value, manifest)

        raise ImportError(f"No plugin class with manifest_id {manifest.id!r} in {path}")


class PluginRegistry:
    """
    Plugin registry.

    Example:
        registry = PluginRegistry(event_bus, container, config_manager)

        await registry.register_plugin(YahooFinancePlugin())
        await registry.register_plugin(SentimentPlugin(), config={"window": 7})

        for info in registry.get_plugins_by_category(PluginCategory.ANALYTICS):
            print(info.manifest.name, info.status)
    """

    def __init__(
        self,
        event_bus: EventBus,
        service_container: Optional["ServiceContainer"] = None,
        config_manager: Optional["ConfigManager"] = None,
        plugin_directory: Union[str, Path] = "./plugins",
        config_directory: Union[str, Path] = "./config",
    ):
        self._event_bus = event_bus
        self._service_container = service_container
        self._config_manager = config_manager
        self._plugin_directory = str(plugin_directory)
        self._config_directory = str(config_directory)
        self._plugins: Dict[str, PluginInfo] = {}
        self._load_order: List[str] = []
        self._loaders: Dict[str, PluginLoader] = {
            ".py": PythonFileLoader(plugin_directory),
            ":": ModuleLoader(),
        }

        logger.info("PluginRegistry initialized")

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    async def register_plugin(
        self,
        instance: Any,
        force_reload: bool = False,
        config: Optional[Dict[str, Any]] = None,
    ) -> PluginInfo:
        """
        Register a ready-made plugin instance.

        Args:
            instance: Object carrying a ``manifest`` and the plugin contract
            force_reload: Replace an already active registration
            config: Configuration passed to ``init``

        Returns:
            The plugin's registry record

        Raises:
            MissingDependencyError: If a dependency is not active
            PluginInitError: If init() or start() raises
        """
        manifest = manifest_of(instance)
        existing = self._plugins.get(manifest.id)
        if existing and existing.status == PluginStatus.ACTIVE and not force_reload:
            return existing

        await self._publish(
            EventType.PLUGIN_REGISTERING,
            {"plugin_id": manifest.id, "manifest": manifest.to_dict()},
        )

        info = await self._activate(
            manifest, instance, config, EventType.PLUGIN_REGISTER_ERROR
        )

        await self._publish(
            EventType.PLUGIN_REGISTERED,
            {"plugin_id": manifest.id, "manifest": manifest.to_dict()},
        )
        logger.info(f"Plugin registered: {manifest.id}")
        return info

    async def load_plugin(
        self,
        manifest: Union[PluginManifest, Dict[str, Any]],
        force_reload: bool = False,
        config: Optional[Dict[str, Any]] = None,
    ) -> PluginInfo:
        """
        Instantiate a plugin from its manifest entry point and register it.

        Raises:
            MissingDependencyError: If a dependency is not active
            PluginLoadError: If the entry point cannot be instantiated
            PluginInitError: If init() or start() raises
        """
        if not isinstance(manifest, PluginManifest):
            manifest = PluginManifest.model_validate(manifest)

        existing = self._plugins.get(manifest.id)
        if existing and existing.status == PluginStatus.ACTIVE and not force_reload:
            return existing

        await self._publish(
            EventType.PLUGIN_LOADING,
            {"plugin_id": manifest.id, "manifest": manifest.to_dict()},
        )

        try:
            self._validate_dependencies(manifest)
            instance = self._load_instance(manifest)
        except (MissingDependencyError, PluginLoadError) as e:
            await self._record_failure(manifest, e, EventType.PLUGIN_LOAD_ERROR)
            raise

        info = await self._activate(manifest, instance, config, EventType.PLUGIN_LOAD_ERROR)

        await self._publish(
            EventType.PLUGIN_LOADED,
            {"plugin_id": manifest.id, "manifest": manifest.to_dict()},
        )
        logger.info(f"Plugin loaded: {manifest.id}")
        return info

    async def _activate(
        self,
        manifest: PluginManifest,
        instance: Any,
        config: Optional[Dict[str, Any]],
        error_event: EventType,
    ) -> PluginInfo:
        """Validate dependencies, store the record, then run init and start."""
        try:
            self._validate_dependencies(manifest)
        except MissingDependencyError as e:
            await self._record_failure(manifest, e, error_event)
            raise

        previous = self._plugins.get(manifest.id)
        if previous and previous.instance is not None:
            if previous.instance is instance:
                # Same object is initialized again; only its running state is dropped
                if previous.status == PluginStatus.ACTIVE:
                    await self._call_logged(instance, "stop", manifest.id)
            else:
                await self._release(previous)

        now = _now()
        info = PluginInfo(
            manifest=manifest,
            instance=instance,
            status=PluginStatus.ACTIVE,
            load_time=now,
            last_used=now,
            error_count=previous.error_count if previous else 0,
        )
        self._plugins[manifest.id] = info
        if manifest.id in self._load_order:
            self._load_order.remove(manifest.id)
        self._load_order.append(manifest.id)

        try:
            await call_optional(instance, "init", self._build_context(manifest.id), dict(config or {}))
            await call_optional(instance, "start")
        except Exception as e:
            error = PluginInitError(manifest.id, str(e))
            await self._record_failure(manifest, error, error_event)
            raise error from e

        return info

    async def _release(self, info: PluginInfo) -> None:
        """Stop and clean up an instance that is being replaced or abandoned."""
        if info.status == PluginStatus.ACTIVE:
            await self._call_logged(info.instance, "stop", info.id)
        await self._call_logged(info.instance, "cleanup", info.id)

    async def _call_logged(self, instance: Any, method: str, plugin_id: str) -> None:
        try:
            await call_optional(instance, method)
        except Exception as e:
            logger.error(f"Failed to {method} instance of {plugin_id}: {e}")

    async def _record_failure(
        self, manifest: PluginManifest, error: Exception, error_event: EventType
    ) -> None:
        """Mark only the offending plugin as errored and report it.

        Any instance still held by the plugin's record is stopped and cleaned
        up first, so an errored record never leaves live subscriptions behind.
        """
        previous = self._plugins.get(manifest.id)
        if previous and previous.instance is not None:
            await self._release(previous)

        error_count = (previous.error_count if previous else 0) + 1
        now = _now()

        self._plugins[manifest.id] = PluginInfo(
            manifest=manifest,
            instance=None,
            status=PluginStatus.ERROR,
            load_time=now,
            last_used=now,
            error_count=error_count,
            last_error=str(error),
        )

        logger.error(f"Plugin {manifest.id} failed: {error}")
        await self._publish(error_event, {"plugin_id": manifest.id, "error": str(error)})

    def _validate_dependencies(self, manifest: PluginManifest) -> None:
        for dependency in manifest.dependencies:
            info = self._plugins.get(dependency)
            if info is None or info.status != PluginStatus.ACTIVE:
                raise MissingDependencyError(manifest.id, dependency)

    def _build_context(self, plugin_id: str) -> PluginContext:
        return PluginContext(
            event_bus=self._event_bus,
            service_container=self._service_container,
            config_manager=self._config_manager,
            plugin_id=plugin_id,
            plugin_directory=self._plugin_directory,
            config_directory=self._config_directory,
        )

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def register_loader(self, key: str, loader: PluginLoader) -> None:
        """
        Add a loader for entry points.

        Args:
            key: File extension (".py") or other loader key
            loader: Loader instance
        """
        self._loaders[key] = loader
        logger.debug(f"Plugin loader registered: {key}")

    def _load_instance(self, manifest: PluginManifest) -> Any:
        entry_point = manifest.entry_point
        if not entry_point:
            raise PluginLoadError(manifest.id, entry_point, "manifest has no entry point")

        # Extension-specific loaders win over the generic module loader
        loaders = sorted(self._loaders.items(), key=lambda item: item[0] == ":")
        for _, loader in loaders:
            if not loader.can_load(entry_point):
                continue
            try:
                instance = loader.load(entry_point, manifest)
            except Exception as e:
                raise PluginLoadError(manifest.id, entry_point, str(e)) from e

            loaded_manifest = getattr(instance, "manifest", None)
            if isinstance(loaded_manifest, dict):
                loaded_id = loaded_manifest.get("id")
            else:
                loaded_id = getattr(loaded_manifest, "id", None)
            if loaded_id is not None and loaded_id != manifest.id:
                raise PluginLoadError(
                    manifest.id, entry_point, f"entry point provides plugin {loaded_id!r}"
                )
            return instance

        raise PluginLoadError(manifest.id, entry_point, "no loader accepts this entry point")

    def discover_plugins(self, directory: Optional[Union[str, Path]] = None) -> List[PluginManifest]:
        """
        Scan for manifest files.

        Args:
            directory: Directory to scan (defaults to the plugin directory)

        Returns:
            Valid manifests, in path order
        """
        root = Path(directory or self._plugin_directory)
        if not root.exists():
            return []

        manifests: List[PluginManifest] = []
        for path in sorted(root.rglob("*")):
            if path.name not in MANIFEST_FILES:
                continue

            try:
                with open(path, "r") as f:
                    if path.suffix == ".json":
                        raw = json.load(f)
                    else:
                        raw = yaml.safe_load(f) or {}
                manifests.append(PluginManifest.model_validate(raw))
                logger.debug(f"Discovered plugin manifest: {path}")
            except (OSError, ValueError, yaml.YAMLError, ValidationError) as e:
                logger.warning(f"Failed to read manifest {path}: {e}")

        logger.info(f"Discovered {len(manifests)} plugin manifests in {root}")
        return manifests

    # -------------------------------------------------------------------------
    # Stop / unload
    # -------------------------------------------------------------------------

    async def stop_plugin(self, plugin_id: str) -> bool:
        """
        Stop an active plugin; its status becomes disabled.

        Returns:
            False if the plugin is unknown or not active
        """
        info = self._plugins.get(plugin_id)
        if info is None or info.status != PluginStatus.ACTIVE:
            return False

        try:
            await call_optional(info.instance, "stop")
        except Exception as e:
            info.error_count += 1
            info.last_error = str(e)
            raise

        await self.set_plugin_status(plugin_id, PluginStatus.DISABLED)
        return True

    async def stop_all(self) -> int:
        """
        Stop every active plugin in reverse registration order.

        Returns:
            Number of plugins stopped
        """
        stopped = 0
        for plugin_id in reversed(self._load_order):
            try:
                if await self.stop_plugin(plugin_id):
                    stopped += 1
            except Exception as e:
                logger.error(f"Failed to stop {plugin_id}: {e}")

        logger.info(f"Stopped {stopped} plugins")
        return stopped

    async def unload_plugin(self, plugin_id: str) -> bool:
        """
        Clean up and unload a plugin.

        Dependent plugins are not checked.

        Returns:
            False if the plugin is unknown
        """
        info = self._plugins.get(plugin_id)
        if info is None:
            return False

        await self._publish(EventType.PLUGIN_UNLOADING, {"plugin_id": plugin_id})

        try:
            if info.instance is not None:
                if info.status == PluginStatus.ACTIVE:
                    await call_optional(info.instance, "stop")
                await call_optional(info.instance, "cleanup")
        except Exception as e:
            info.error_count += 1
            info.last_error = str(e)
            logger.error(f"Failed to unload {plugin_id}: {e}")
            await self._publish(
                EventType.PLUGIN_UNLOAD_ERROR, {"plugin_id": plugin_id, "error": str(e)}
            )
            raise

        info.status = PluginStatus.UNLOADED
        info.instance = None
        if plugin_id in self._load_order:
            self._load_order.remove(plugin_id)

        await self._publish(EventType.PLUGIN_UNLOADED, {"plugin_id": plugin_id})
        logger.info(f"Plugin unloaded: {plugin_id}")
        return True

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_plugin(self, plugin_id: str) -> Optional[PluginInfo]:
        """Get a plugin record; touches last_used for active plugins."""
        info = self._plugins.get(plugin_id)
        if info is not None and info.status == PluginStatus.ACTIVE:
            info.last_used = _now()
        return info

    def get_all_plugins(self) -> List[PluginInfo]:
        return list(self._plugins.values())

    def get_plugins_by_category(self, category: Union[str, PluginCategory]) -> List[PluginInfo]:
        """Active plugins in a category."""
        category = PluginCategory(category)
        return [
            info for info in self._plugins.values()
            if info.manifest.category == category and info.status == PluginStatus.ACTIVE
        ]

    def get_plugins_by_tag(self, tag: str) -> List[PluginInfo]:
        """Active plugins carrying a tag."""
        return [
            info for info in self._plugins.values()
            if tag in info.manifest.tags and info.status == PluginStatus.ACTIVE
        ]

    def get_plugins_by_capability(self, capability: type) -> List[PluginInfo]:
        """Active plugins whose instance implements a capability protocol."""
        return [
            info for info in self._plugins.values()
            if info.status == PluginStatus.ACTIVE and isinstance(info.instance, capability)
        ]

    async def set_plugin_status(self, plugin_id: str, status: Union[str, PluginStatus]) -> bool:
        """Override a plugin's status directly."""
        info = self._plugins.get(plugin_id)
        if info is None:
            return False

        status = PluginStatus(status)
        old_status = info.status
        info.status = status

        await self._publish(
            EventType.PLUGIN_STATUS_CHANGED,
            {"plugin_id": plugin_id, "old_status": old_status.value, "new_status": status.value},
        )
        return True

    async def health_check_all(self) -> Dict[str, bool]:
        """Ask every active plugin whether it is healthy."""
        results = {}

        for plugin_id, info in self._plugins.items():
            if info.status != PluginStatus.ACTIVE:
                continue

            check = getattr(info.instance, "is_healthy", None)
            if not callable(check):
                results[plugin_id] = True
                continue

            try:
                result = check()
                if inspect.isawaitable(result):
                    result = await result
                results[plugin_id] = bool(result)
            except Exception as e:
                logger.warning(f"Health check failed for {plugin_id}: {e}")
                results[plugin_id] = False

        return results

    def get_statistics(self) -> Dict[str, Any]:
        """Counts by status and by category."""
        plugins = list(self._plugins.values())
        by_category: Dict[str, int] = {}
        for info in plugins:
            category = info.manifest.category.value
            by_category[category] = by_category.get(category, 0) + 1

        stats: Dict[str, Any] = {"total": len(plugins)}
        for status in PluginStatus:
            stats[status.value] = sum(1 for p in plugins if p.status == status)
        stats["by_category"] = by_category
        return stats

    async def _publish(self, event_type: EventType, data: Dict[str, Any]) -> None:
        await self._event_bus.publish(event_type, data, source=SOURCE)


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "PluginInfo",
    "PluginLoader",
    "manifest_of",
    "ModuleLoader",
    "PythonFileLoader",
    "PluginRegistry",
]
