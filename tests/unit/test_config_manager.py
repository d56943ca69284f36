"""
Tests for MARKETSCOPE Config Manager
====================================

Tests layered sources, dot-notation access, validation and watchers.
"""

import json
import pytest
from typing import Literal

from pydantic import BaseModel

from marketscope.core.config_manager import (
    DefaultsSource,
    EnvironmentSource,
    FileSource,
    parse_env_value,
)
from marketscope.core.event_bus import EventType
from marketscope.core.exceptions import ConfigKeyError, ConfigValidationError


class FailingSource:
    name = "broken"
    priority = 75

    async def load(self):
        raise OSError("unreachable")


class TestParseEnvValue:
    """Tests for environment value parsing."""

    def test_types(self):
        assert parse_env_value("true") is True
        assert parse_env_value("False") is False
        assert parse_env_value("42") == 42
        assert parse_env_value("0.5") == 0.5
        assert parse_env_value("info") == "info"


class TestSources:
    """Tests for source layering."""

    @pytest.mark.asyncio
    async def test_priority_wins(self, config_manager, monkeypatch):
        """Environment beats file beats defaults."""
        monkeypatch.setenv("APP_DEBUG__LEVEL", "warning")

        config_manager.add_source(DefaultsSource({"debug": {"level": "info", "enabled": False}}))
        config_manager.add_source(EnvironmentSource(prefix="APP_"))
        await config_manager.load()

        assert config_manager.get("debug.level") == "warning"
        assert config_manager.get("debug.enabled") is False

    @pytest.mark.asyncio
    async def test_yaml_file(self, config_manager, tmp_path):
        path = tmp_path / "research.yaml"
        path.write_text("plugins:\n  directory: ./custom\n")

        config_manager.add_source(DefaultsSource({"plugins": {"directory": "./plugins", "timeout": 30}}))
        config_manager.add_source(FileSource(path))
        await config_manager.load()

        assert config_manager.get("plugins.directory") == "./custom"
        assert config_manager.get("plugins.timeout") == 30

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, config_manager, tmp_path):
        config_manager.add_source(FileSource(tmp_path / "absent.yaml"))
        await config_manager.load()

        assert config_manager.to_dict() == {}

    @pytest.mark.asyncio
    async def test_failing_source_skipped(self, config_manager, event_bus):
        config_manager.add_source(FailingSource())
        config_manager.add_source(DefaultsSource({"app": {"name": "Research"}}))

        await config_manager.load()

        assert config_manager.get("app.name") == "Research"
        errors = event_bus.get_history(event_type=EventType.CONFIG_SOURCE_ERROR)
        assert errors[0].data["source_name"] == "broken"

    @pytest.mark.asyncio
    async def test_metadata_tracks_source(self, config_manager):
        config_manager.add_source(DefaultsSource({"app": {"name": "Research"}}))
        await config_manager.load()

        metadata = config_manager.get_metadata("app")
        assert metadata.source == "defaults"
        assert metadata.priority == 0

    @pytest.mark.asyncio
    async def test_save_json(self, config_manager, tmp_path):
        path = tmp_path / "out.json"
        config_manager.add_source(FileSource(path))
        await config_manager.set("app.name", "Research")

        await config_manager.save("file")

        assert json.loads(path.read_text()) == {"app": {"name": "Research"}}

    @pytest.mark.asyncio
    async def test_save_unknown_source(self, config_manager):
        config_manager.add_source(DefaultsSource({}))

        with pytest.raises(KeyError):
            await config_manager.save("defaults")


class TestAccess:
    """Tests for get/set/delete."""

    def test_missing_key_raises(self, config_manager):
        with pytest.raises(ConfigKeyError):
            config_manager.get("debug.level")

    def test_missing_key_default(self, config_manager):
        assert config_manager.get("debug.level", "info") == "info"
        assert config_manager.get("debug.level", None) is None

    @pytest.mark.asyncio
    async def test_set_nested(self, config_manager, event_bus):
        await config_manager.set("debug.level", "debug")

        assert config_manager.get("debug") == {"level": "debug"}
        assert config_manager.has("debug.level")
        changes = event_bus.get_history(event_type=EventType.CONFIG_VALUE_CHANGED)
        assert changes[0].data["key"] == "debug.level"

    @pytest.mark.asyncio
    async def test_delete(self, config_manager):
        await config_manager.set("debug.level", "debug")

        assert await config_manager.delete("debug.level") is True
        assert not config_manager.has("debug.level")
        assert await config_manager.delete("debug.level") is False

    @pytest.mark.asyncio
    async def test_to_dict_is_copy(self, config_manager):
        await config_manager.set("app.name", "Research")

        snapshot = config_manager.to_dict()
        snapshot["app"]["name"] = "changed"

        assert config_manager.get("app.name") == "Research"


class TestValidation:
    """Tests for pydantic-backed validation."""

    @pytest.mark.asyncio
    async def test_required_validation_rejects(self, config_manager):
        config_manager.add_validation("debug.level", Literal["debug", "info"], required=True)

        with pytest.raises(ConfigValidationError):
            await config_manager.set("debug.level", "loud")

    @pytest.mark.asyncio
    async def test_optional_validation_reports(self, config_manager, event_bus):
        config_manager.add_validation("plugins.timeout", int)

        await config_manager.set("plugins.timeout", "soon")

        errors = event_bus.get_history(event_type=EventType.CONFIG_VALIDATION_ERROR)
        assert errors[0].data["key"] == "plugins.timeout"

    @pytest.mark.asyncio
    async def test_model_validation_on_load(self, config_manager):
        class PluginSettings(BaseModel):
            directory: str
            timeout: int

        config_manager.add_validation("plugins", PluginSettings, required=True)
        config_manager.add_source(DefaultsSource({"plugins": {"directory": "./plugins"}}))

        with pytest.raises(ConfigValidationError):
            await config_manager.load()


class TestWatchers:
    """Tests for change watchers."""

    @pytest.mark.asyncio
    async def test_watch_and_unwatch(self, config_manager):
        seen = []
        unwatch = config_manager.watch("debug.level", lambda new, old: seen.append((new, old)))

        await config_manager.set("debug.level", "info")
        await config_manager.set("debug.level", "debug")
        unwatch()
        await config_manager.set("debug.level", "warning")

        assert seen == [("info", None), ("debug", "info")]

    @pytest.mark.asyncio
    async def test_failing_watcher_does_not_block(self, config_manager):
        seen = []

        def broken(new, old):
            raise ValueError("boom")

        config_manager.watch("debug.level", broken)
        config_manager.watch("debug.level", lambda new, old: seen.append(new))

        await config_manager.set("debug.level", "info")

        assert seen == ["info"]

    @pytest.mark.asyncio
    async def test_statistics(self, config_manager):
        config_manager.add_source(DefaultsSource({"a": 1, "b": 2}))
        config_manager.watch("a", lambda new, old: None)
        await config_manager.load()

        stats = config_manager.get_statistics()

        assert stats["total_keys"] == 2
        assert stats["sources"] == 1
        assert stats["watchers"] == 1
        assert stats["loaded_at"] is not None
