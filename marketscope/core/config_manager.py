# MARKETSCOPE_FEAT: config-manager-001
"""
MARKETSCOPE - Configuration Manager
===================================

Layered configuration for the kernel and its plugins.

Features:
- Prioritized sources (environment, YAML/JSON files, static defaults)
- Dot-notation access to nested values
- Validation with pydantic type adapters
- Change watchers and change events

Author: MARKETSCOPE Development Team
Version: 1.0.0
"""

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Union

import yaml
from pydantic import TypeAdapter, ValidationError

from .event_bus import EventBus, EventType
from .exceptions import ConfigKeyError, ConfigValidationError

logger = logging.getLogger("MARKETSCOPE_ConfigManager")

SOURCE = "config-manager"
MANUAL_PRIORITY = 1000

_MISSING = object()

ConfigWatcher = Callable[[Any, Any], None]


class ConfigSource(Protocol):
    """A place configuration is loaded from."""

    name: str
    priority: int

    async def load(self) -> Dict[str, Any]:
        ...


def parse_env_value(value: str) -> Any:
    """Parse string value to appropriate type."""
    # Try boolean
    if value.lower() in ("true", "false"):
        return value.lower() == "true"

    # Try integer
    try:
        return int(value)
    except ValueError:
        pass

    # Try float
    try:
        return float(value)
    except ValueError:
        pass

    # Return as string
    return value


def _set_nested(target: Dict[str, Any], key: str, value: Any) -> Any:
    """Set a nested value using dot notation; returns the previous value."""
    parts = key.split(".")
    current = target

    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]

    old_value = current.get(parts[-1])
    current[parts[-1]] = value
    return old_value


def _deep_merge(base: Dict[str, Any], incoming: Dict[str, Any], overwrite: bool) -> Dict[str, Any]:
    """Merge incoming into base; on leaf conflicts incoming wins only if overwrite."""
    for key, value in incoming.items():
        if isinstance(base.get(key), dict) and isinstance(value, dict):
            _deep_merge(base[key], value, overwrite)
        elif key not in base or overwrite:
            base[key] = copy.deepcopy(value)
    return base


class EnvironmentSource:
    """
    Environment variables with a prefix.

    ``APP_DEBUG=true`` becomes ``debug: True``; a double underscore nests,
    so ``APP_DEBUG__LEVEL=info`` becomes ``debug.level: "info"``.
    """

    def __init__(self, prefix: str = "APP_", priority: int = 100, name: str = "environment"):
        self.name = name
        self.priority = priority
        self._prefix = prefix

    async def load(self) -> Dict[str, Any]:
        config: Dict[str, Any] = {}
        for key, value in os.environ.items():
            if key.startswith(self._prefix):
                config_key = key[len(self._prefix):].lower().replace("__", ".")
                if config_key:
                    _set_nested(config, config_key, parse_env_value(value))
        return config


class DefaultsSource:
    """Static default values."""

    def __init__(self, values: Dict[str, Any], priority: int = 0, name: str = "defaults"):
        self.name = name
        self.priority = priority
        self._values = values

    async def load(self) -> Dict[str, Any]:
        return copy.deepcopy(self._values)


class FileSource:
    """YAML or JSON file; also supports saving."""

    def __init__(self, path: Union[str, Path], priority: int = 50, name: str = "file"):
        self.name = name
        self.priority = priority
        self.path = Path(path)

    async def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            logger.warning(f"Config file not found: {self.path}")
            return {}

        with open(self.path, "r") as f:
            if self.path.suffix in (".yaml", ".yml"):
                return yaml.safe_load(f) or {}
            if self.path.suffix == ".json":
                return json.load(f)

        raise ValueError(f"Unsupported config format: {self.path.suffix}")

    async def save(self, config: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            if self.path.suffix in (".yaml", ".yml"):
                yaml.safe_dump(config, f, default_flow_style=False)
            else:
                json.dump(config, f, indent=2, default=str)

        logger.info(f"Configuration saved to: {self.path}")


@dataclass
class ConfigValidation:
    """Validation rule for one key."""

    adapter: TypeAdapter
    required: bool = False


@dataclass
class ConfigMetadata:
    """Where a value came from."""

    key: str
    value: Any
    source: str
    priority: int
    last_modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ConfigManager:
    """
    Configuration manager.

    Sources are loaded from highest to lowest priority; a key keeps the
    value of the highest-priority source that sets it, nested sections
    are merged.

    Example:
        config = ConfigManager(event_bus)
        config.add_source(DefaultsSource({"debug": {"level": "info"}}))
        config.add_source(EnvironmentSource(prefix="APP_"))
        await config.load()

        level = config.get("debug.level")
        await config.set("debug.level", "debug")
    """

    def __init__(self, event_bus: EventBus):
        self._event_bus = event_bus
        self._config: Dict[str, Any] = {}
        self._metadata: Dict[str, ConfigMetadata] = {}
        self._sources: List[ConfigSource] = []
        self._validations: Dict[str, ConfigValidation] = {}
        self._watchers: Dict[str, Set[ConfigWatcher]] = {}
        self._loaded_at: Optional[datetime] = None

        logger.info("ConfigManager initialized")

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------

    def add_source(self, source: ConfigSource) -> None:
        """Add a source; sources are kept in descending priority."""
        self._sources.append(source)
        self._sources.sort(key=lambda s: s.priority, reverse=True)

        logger.debug(f"Config source added: {source.name} (priority={source.priority})")
        self._event_bus.emit(
            EventType.CONFIG_SOURCE_ADDED,
            {"source_name": source.name, "priority": source.priority},
            source=SOURCE,
        )

    async def load(self) -> None:
        """
        Load every source and validate the result.

        A failing source is reported and skipped.

        Raises:
            ConfigValidationError: If a required validation fails
        """
        await self._publish(
            EventType.CONFIG_LOADING_STARTED, {"sources": [s.name for s in self._sources]}
        )

        try:
            for source in self._sources:
                try:
                    values = await source.load()
                except Exception as e:
                    logger.error(f"Config source {source.name} failed: {e}")
                    await self._publish(
                        EventType.CONFIG_SOURCE_ERROR,
                        {"source_name": source.name, "error": str(e)},
                    )
                    continue

                self._merge(values or {}, source.name, source.priority)

            await self._validate_all()
        except Exception as e:
            await self._publish(EventType.CONFIG_LOADING_ERROR, {"error": str(e)})
            raise

        self._loaded_at = datetime.now(timezone.utc)
        logger.info(f"Configuration loaded from {len(self._sources)} sources")
        await self._publish(EventType.CONFIG_LOADING_COMPLETED, {"total_keys": len(self._config)})

    async def reload(self) -> None:
        """Drop all values and load the sources again."""
        self._config.clear()
        self._metadata.clear()
        await self.load()

    async def save(self, source_name: Optional[str] = None) -> None:
        """
        Write the current configuration to sources that support saving.

        Raises:
            KeyError: If a named source is unknown or cannot save
        """
        config = self.to_dict()

        if source_name:
            source = next((s for s in self._sources if s.name == source_name), None)
            save = getattr(source, "save", None)
            if save is None:
                raise KeyError(f"Source '{source_name}' not found or doesn't support saving")
            await save(config)
        else:
            for source in self._sources:
                save = getattr(source, "save", None)
                if save is None:
                    continue
                try:
                    await save(config)
                except Exception as e:
                    logger.error(f"Failed to save config to {source.name}: {e}")
                    await self._publish(
                        EventType.CONFIG_SAVE_ERROR,
                        {"source_name": source.name, "error": str(e)},
                    )

        await self._publish(EventType.CONFIG_SAVED, {"source_name": source_name})

    def _merge(self, values: Dict[str, Any], source_name: str, priority: int) -> None:
        for key, value in values.items():
            existing = self._metadata.get(key)
            overwrite = existing is None or priority >= existing.priority

            if isinstance(self._config.get(key), dict) and isinstance(value, dict):
                _deep_merge(self._config[key], value, overwrite)
            elif overwrite:
                self._config[key] = copy.deepcopy(value)
            else:
                continue

            if overwrite:
                self._metadata[key] = ConfigMetadata(
                    key=key, value=self._config[key], source=source_name, priority=priority
                )

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    def get(self, key: str, default: Any = _MISSING) -> Any:
        """
        Get configuration value by key.

        Args:
            key: Dot-notation key (e.g., "debug.level")
            default: Returned when the key is missing

        Raises:
            ConfigKeyError: If missing and no default was given
        """
        current: Any = self._config

        for part in key.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                if default is _MISSING:
                    raise ConfigKeyError(key)
                return default

        return current

    def has(self, key: str) -> bool:
        return self._lookup(key)

    def _lookup(self, key: str) -> bool:
        current: Any = self._config
        for part in key.split("."):
            if not isinstance(current, dict) or part not in current:
                return False
            current = current[part]
        return True

    async def set(self, key: str, value: Any, source: str = "manual") -> None:
        """
        Set a value at runtime; dot-notation keys create nested sections.

        Raises:
            ConfigValidationError: If a required validation fails
        """
        old_value = _set_nested(self._config, key, value)
        self._metadata[key] = ConfigMetadata(
            key=key, value=value, source=source, priority=MANUAL_PRIORITY
        )

        await self._validate_key(key, value)
        self._notify_watchers(key, value, old_value)

        await self._publish(
            EventType.CONFIG_VALUE_CHANGED,
            {"key": key, "value": value, "old_value": old_value, "source": source},
        )

    async def delete(self, key: str) -> bool:
        """Remove a key; returns False if it did not exist."""
        if not self._lookup(key):
            return False

        parts = key.split(".")
        parent = self._config
        for part in parts[:-1]:
            parent = parent[part]
        old_value = parent.pop(parts[-1])
        self._metadata.pop(key, None)

        self._notify_watchers(key, None, old_value)
        await self._publish(EventType.CONFIG_VALUE_DELETED, {"key": key, "old_value": old_value})
        return True

    def keys(self) -> List[str]:
        return list(self._config.keys())

    def to_dict(self) -> Dict[str, Any]:
        """Deep copy of the whole configuration."""
        return copy.deepcopy(self._config)

    def get_metadata(self, key: str) -> Optional[ConfigMetadata]:
        return self._metadata.get(key)

    def get_all_metadata(self) -> List[ConfigMetadata]:
        return list(self._metadata.values())

    # -------------------------------------------------------------------------
    # Validation and watchers
    # -------------------------------------------------------------------------

    def add_validation(self, key: str, schema: Any, required: bool = False) -> None:
        """
        Validate a key against a type.

        Args:
            key: Dot-notation key
            schema: Anything pydantic's TypeAdapter accepts (model class, int, Literal[...])
            required: Raise instead of only reporting invalid values
        """
        self._validations[key] = ConfigValidation(adapter=TypeAdapter(schema), required=required)

    async def validate(self) -> None:
        """Validate every key that has a rule and a value."""
        await self._validate_all()

    def watch(self, key: str, callback: ConfigWatcher) -> Callable[[], None]:
        """
        Call ``callback(value, old_value)`` when a key changes.

        Returns:
            Function that removes the watcher
        """
        self._watchers.setdefault(key, set()).add(callback)

        def unwatch() -> None:
            self._watchers.get(key, set()).discard(callback)

        return unwatch

    async def _validate_key(self, key: str, value: Any) -> None:
        validation = self._validations.get(key)
        if validation is None:
            return

        try:
            validation.adapter.validate_python(value)
        except ValidationError as e:
            logger.warning(f"Config validation failed for {key}: {e}")
            await self._publish(
                EventType.CONFIG_VALIDATION_ERROR, {"key": key, "value": value, "error": str(e)}
            )
            if validation.required:
                raise ConfigValidationError(key, str(e)) from e

    async def _validate_all(self) -> None:
        for key in list(self._validations):
            if self._lookup(key):
                await self._validate_key(key, self.get(key))

    def _notify_watchers(self, key: str, value: Any, old_value: Any) -> None:
        for callback in list(self._watchers.get(key, ())):
            try:
                callback(value, old_value)
            except Exception as e:
                logger.error(f"Error in config watcher for key '{key}': {e}")

    def get_statistics(self) -> Dict[str, Any]:
        """Get configuration statistics."""
        return {
            "total_keys": len(self._config),
            "sources": len(self._sources),
            "validations": len(self._validations),
            "watchers": sum(len(w) for w in self._watchers.values()),
            "loaded_at": self._loaded_at.isoformat() if self._loaded_at else None,
        }

    async def _publish(self, event_type: EventType, data: Dict[str, Any]) -> None:
        await self._event_bus.publish(event_type, data, source=SOURCE)


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "ConfigSource",
    "EnvironmentSource",
    "DefaultsSource",
    "FileSource",
    "ConfigValidation",
    "ConfigMetadata",
    "ConfigManager",
    "parse_env_value",
]
