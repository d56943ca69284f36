"""
MARKETSCOPE Test Configuration
==============================

Pytest fixtures and configuration for MARKETSCOPE microkernel tests.
"""

import pytest
from typing import Any, Dict, List, Optional

from marketscope.core.config_manager import ConfigManager
from marketscope.core.event_bus import EventBus
from marketscope.core.plugin_base import Plugin, PluginCategory, PluginManifest
from marketscope.core.plugin_registry import PluginRegistry
from marketscope.core.service_container import ServiceContainer


class RecordingPlugin(Plugin):
    """Plugin that records lifecycle calls."""

    def __init__(
        self,
        plugin_id: str = "recording",
        dependencies: Optional[List[str]] = None,
        category: PluginCategory = PluginCategory.UTILITY,
        fail_on: Optional[str] = None,
        subscribe_to: Optional[List[str]] = None,
        **manifest: Any,
    ):
        super().__init__(PluginManifest(
            id=plugin_id,
            name=plugin_id.title(),
            category=category,
            dependencies=dependencies or [],
            **manifest,
        ))
        self.calls: List[str] = []
        self.fail_on = fail_on
        self.subscribe_to = list(subscribe_to or [])
        self.received: List[Any] = []

    async def _setup_subscriptions(self) -> None:
        for event_type in self.subscribe_to:
            self.subscribe(event_type, self._record_event)

    async def _record_event(self, event) -> None:
        self.received.append(event.data)

    async def init(self, context, config: Optional[Dict[str, Any]] = None) -> None:
        self.calls.append("init")
        if self.fail_on == "init":
            raise RuntimeError("init exploded")
        await super().init(context, config)

    async def start(self) -> None:
        self.calls.append("start")
        if self.fail_on == "start":
            raise RuntimeError("start exploded")
        await super().start()

    async def stop(self) -> None:
        self.calls.append("stop")
        await super().stop()

    async def cleanup(self) -> None:
        self.calls.append("cleanup")
        await super().cleanup()


@pytest.fixture
def event_bus():
    """Create an event bus for testing."""
    return EventBus()


@pytest.fixture
def container(event_bus):
    """Create a service container for testing."""
    return ServiceContainer(event_bus)


@pytest.fixture
def config_manager(event_bus):
    """Create an empty config manager for testing."""
    return ConfigManager(event_bus)


@pytest.fixture
def registry(event_bus, container, config_manager, tmp_path):
    """Create a plugin registry rooted in a temporary plugin directory."""
    return PluginRegistry(
        event_bus,
        container,
        config_manager,
        plugin_directory=tmp_path,
        config_directory=tmp_path / "config",
    )


@pytest.fixture
def make_plugin():
    """Factory for recording plugins."""
    def _make(plugin_id: str = "recording", **kwargs: Any) -> RecordingPlugin:
        return RecordingPlugin(plugin_id, **kwargs)
    return _make
