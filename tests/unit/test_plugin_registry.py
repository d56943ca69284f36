"""
Tests for MARKETSCOPE Plugin Registry
=====================================

Tests registration, dependency validation, failure isolation, loading
from manifests and unload behavior.
"""

import json
import pytest

from marketscope.core.capabilities import NewsArticle, NewsSource
from marketscope.core.event_bus import EventType
from marketscope.core.exceptions import (
    MissingDependencyError,
    PluginInitError,
    PluginLoadError,
)
from marketscope.core.plugin_base import PluginCategory, PluginManifest, PluginStatus


PLUGIN_SOURCE = '''
from marketscope.core.plugin_base import Plugin


class HeadlinePlugin(Plugin):
    manifest_id = "headlines"

    async def _setup_subscriptions(self):
        pass
'''


class TestRegistration:
    """Tests for register_plugin()."""

    @pytest.mark.asyncio
    async def test_register_runs_init_then_start(self, registry, make_plugin):
        plugin = make_plugin("yahoo")

        info = await registry.register_plugin(plugin, config={"interval": 5})

        assert plugin.calls == ["init", "start"]
        assert info.status == PluginStatus.ACTIVE
        assert plugin.get_config() == {"interval": 5}
        assert plugin.context.plugin_id == "yahoo"

    @pytest.mark.asyncio
    async def test_register_events(self, registry, make_plugin, event_bus):
        await registry.register_plugin(make_plugin("yahoo"))

        types = [e.type for e in event_bus.get_history()]
        assert types.index("plugin.registering") < types.index("plugin.registered")

    @pytest.mark.asyncio
    async def test_register_again_is_noop(self, registry, make_plugin):
        """An active plugin is not re-initialized without force_reload."""
        plugin = make_plugin("yahoo")
        first = await registry.register_plugin(plugin)
        second = await registry.register_plugin(plugin)

        assert first is second
        assert plugin.calls == ["init", "start"]

    @pytest.mark.asyncio
    async def test_force_reload_releases_previous(self, registry, make_plugin):
        old = make_plugin("yahoo")
        new = make_plugin("yahoo")
        await registry.register_plugin(old)

        await registry.register_plugin(new, force_reload=True)

        assert old.calls == ["init", "start", "stop", "cleanup"]
        assert registry.get_plugin("yahoo").instance is new

    @pytest.mark.asyncio
    async def test_missing_dependency(self, registry, make_plugin):
        """A dependency that is not active blocks registration."""
        with pytest.raises(MissingDependencyError) as exc_info:
            await registry.register_plugin(make_plugin("sentiment", dependencies=["newsapi"]))

        assert exc_info.value.dependency_id == "newsapi"
        info = registry.get_plugin("sentiment")
        assert info.status == PluginStatus.ERROR
        assert registry.get_plugins_by_category(PluginCategory.UTILITY) == []

    @pytest.mark.asyncio
    async def test_inactive_dependency(self, registry, make_plugin):
        """A disabled dependency counts as missing."""
        await registry.register_plugin(make_plugin("newsapi"))
        await registry.stop_plugin("newsapi")

        with pytest.raises(MissingDependencyError):
            await registry.register_plugin(make_plugin("sentiment", dependencies=["newsapi"]))

    @pytest.mark.asyncio
    async def test_init_failure_isolated(self, registry, make_plugin, event_bus):
        """A failing plugin is marked errored without touching others."""
        await registry.register_plugin(make_plugin("yahoo"))

        with pytest.raises(PluginInitError) as exc_info:
            await registry.register_plugin(make_plugin("broken", fail_on="init"))

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        broken = registry.get_plugin("broken")
        assert broken.status == PluginStatus.ERROR
        assert broken.error_count == 1
        assert broken.instance is None
        assert "init exploded" in broken.last_error
        assert registry.get_plugin("yahoo").status == PluginStatus.ACTIVE

        errors = event_bus.get_history(event_type=EventType.PLUGIN_REGISTER_ERROR)
        assert errors[-1].data["plugin_id"] == "broken"

    @pytest.mark.asyncio
    async def test_start_failure(self, registry, make_plugin):
        with pytest.raises(PluginInitError):
            await registry.register_plugin(make_plugin("broken", fail_on="start"))

        assert registry.get_plugin("broken").status == PluginStatus.ERROR

    @pytest.mark.asyncio
    async def test_error_count_accumulates(self, registry, make_plugin):
        for _ in range(2):
            with pytest.raises(PluginInitError):
                await registry.register_plugin(make_plugin("broken", fail_on="init"))

        assert registry.get_plugin("broken").error_count == 2

    @pytest.mark.asyncio
    async def test_start_failure_releases_subscriptions(self, registry, make_plugin, event_bus):
        """A plugin whose start() raises is stopped and cleaned up."""
        plugin = make_plugin("broken", fail_on="start", subscribe_to=["ping"])

        with pytest.raises(PluginInitError):
            await registry.register_plugin(plugin)

        await event_bus.publish("ping", "hello")

        assert plugin.calls == ["init", "start", "stop", "cleanup"]
        assert plugin.received == []
        assert event_bus.get_subscription_count("ping") == 0

    @pytest.mark.asyncio
    async def test_failed_reload_releases_previous(self, registry, make_plugin, event_bus):
        """A reload that fails validation does not leave the old instance running."""
        await registry.register_plugin(make_plugin("newsapi"))
        plugin = make_plugin("sentiment", dependencies=["newsapi"], subscribe_to=["ping"])
        await registry.register_plugin(plugin)
        await registry.stop_plugin("newsapi")

        with pytest.raises(MissingDependencyError):
            await registry.register_plugin(plugin, force_reload=True)

        await event_bus.publish("ping", "hello")

        assert plugin.calls == ["init", "start", "stop", "cleanup"]
        assert plugin.received == []
        info = registry.get_plugin("sentiment")
        assert info.status == PluginStatus.ERROR
        assert info.instance is None

    @pytest.mark.asyncio
    async def test_force_reload_same_instance(self, registry, make_plugin, event_bus):
        """Reloading the same instance stops it before initializing it again."""
        plugin = make_plugin("yahoo", subscribe_to=["ping"])
        await registry.register_plugin(plugin)

        info = await registry.register_plugin(plugin, force_reload=True)
        await event_bus.publish("ping", "hello")

        assert plugin.calls == ["init", "start", "stop", "init", "start"]
        assert event_bus.get_subscription_count("ping") == 1
        assert plugin.received == ["hello"]
        assert info.status == PluginStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_plain_object_plugin(self, registry):
        """Objects without optional lifecycle methods can be registered."""

        class Bare:
            manifest = {"id": "bare", "name": "Bare", "category": "utility"}

        info = await registry.register_plugin(Bare())

        assert info.status == PluginStatus.ACTIVE


class TestEndToEnd:
    """Dependent plugins registered together."""

    @pytest.mark.asyncio
    async def test_dependent_plugins_active(self, registry, make_plugin):
        await registry.register_plugin(make_plugin("p1"))
        await registry.register_plugin(make_plugin("p2", dependencies=["p1"]))

        plugins = registry.get_all_plugins()
        assert [p.id for p in plugins] == ["p1", "p2"]
        assert all(p.status == PluginStatus.ACTIVE for p in plugins)

    @pytest.mark.asyncio
    async def test_unload_does_not_check_dependents(self, registry, make_plugin):
        """Unloading P1 while P2 depends on it is allowed."""
        p1 = make_plugin("p1")
        await registry.register_plugin(p1)
        await registry.register_plugin(make_plugin("p2", dependencies=["p1"]))

        assert await registry.unload_plugin("p1") is True

        assert p1.calls == ["init", "start", "stop", "cleanup"]
        assert registry.get_plugin("p1").status == PluginStatus.UNLOADED
        assert registry.get_plugin("p2").status == PluginStatus.ACTIVE


class TestStopAndUnload:
    """Tests for stop_plugin(), stop_all() and unload_plugin()."""

    @pytest.mark.asyncio
    async def test_stop_plugin(self, registry, make_plugin, event_bus):
        plugin = make_plugin("yahoo")
        await registry.register_plugin(plugin)

        assert await registry.stop_plugin("yahoo") is True
        assert registry.get_plugin("yahoo").status == PluginStatus.DISABLED
        assert await registry.stop_plugin("yahoo") is False

        changes = event_bus.get_history(event_type=EventType.PLUGIN_STATUS_CHANGED)
        assert changes[-1].data["new_status"] == "disabled"

    @pytest.mark.asyncio
    async def test_stop_all_reverse_order(self, registry, make_plugin):
        order = []
        for plugin_id in ("a", "b", "c"):
            await registry.register_plugin(make_plugin(plugin_id))

        for info in registry.get_all_plugins():
            original = info.instance.stop

            async def stop(original=original, plugin_id=info.id):
                order.append(plugin_id)
                await original()

            info.instance.stop = stop

        assert await registry.stop_all() == 3
        assert order == ["c", "b", "a"]

    @pytest.mark.asyncio
    async def test_unload_unknown(self, registry):
        assert await registry.unload_plugin("missing") is False

    @pytest.mark.asyncio
    async def test_unload_stopped_plugin_skips_stop(self, registry, make_plugin):
        plugin = make_plugin("yahoo")
        await registry.register_plugin(plugin)
        await registry.stop_plugin("yahoo")

        await registry.unload_plugin("yahoo")

        assert plugin.calls == ["init", "start", "stop", "cleanup"]


class TestQueries:
    """Tests for lookups and statistics."""

    @pytest.mark.asyncio
    async def test_by_category_and_tag(self, registry, make_plugin):
        await registry.register_plugin(
            make_plugin("yahoo", category=PluginCategory.DATA_PROVIDER, tags=["stocks"])
        )
        await registry.register_plugin(make_plugin("pdf", category=PluginCategory.OUTPUT_FORMAT))

        assert [p.id for p in registry.get_plugins_by_category("data-provider")] == ["yahoo"]
        assert [p.id for p in registry.get_plugins_by_tag("stocks")] == ["yahoo"]

    @pytest.mark.asyncio
    async def test_by_capability(self, registry, make_plugin):
        class NewsFeed:
            manifest = {"id": "newsapi", "name": "NewsAPI", "category": "data-provider"}

            async def get_news(self, query, limit=10):
                return [NewsArticle(title=query, url="https://example.com", source="newsapi")]

        await registry.register_plugin(NewsFeed())
        await registry.register_plugin(make_plugin("yahoo"))

        found = registry.get_plugins_by_capability(NewsSource)

        assert [p.id for p in found] == ["newsapi"]

    @pytest.mark.asyncio
    async def test_get_plugin_touches_last_used(self, registry, make_plugin):
        info = await registry.register_plugin(make_plugin("yahoo"))
        before = info.last_used

        assert registry.get_plugin("yahoo").last_used >= before
        assert registry.get_plugin("missing") is None

    @pytest.mark.asyncio
    async def test_health_check_all(self, registry, make_plugin):
        await registry.register_plugin(make_plugin("yahoo"))
        await registry.register_plugin(make_plugin("pdf"))
        await registry.stop_plugin("pdf")

        assert await registry.health_check_all() == {"yahoo": True}

    @pytest.mark.asyncio
    async def test_statistics(self, registry, make_plugin):
        await registry.register_plugin(make_plugin("yahoo"))
        with pytest.raises(PluginInitError):
            await registry.register_plugin(make_plugin("broken", fail_on="init"))

        stats = registry.get_statistics()

        assert stats["total"] == 2
        assert stats["active"] == 1
        assert stats["error"] == 1
        assert stats["by_category"] == {"utility": 2}

    @pytest.mark.asyncio
    async def test_set_plugin_status(self, registry, make_plugin):
        await registry.register_plugin(make_plugin("yahoo"))

        assert await registry.set_plugin_status("yahoo", "disabled") is True
        assert registry.get_plugin("yahoo").status == PluginStatus.DISABLED
        assert await registry.set_plugin_status("missing", "active") is False


class TestLoading:
    """Tests for manifest discovery and entry point loading."""

    def test_discover_manifests(self, registry, tmp_path):
        (tmp_path / "news").mkdir()
        (tmp_path / "news" / "plugin.json").write_text(json.dumps({
            "id": "newsapi",
            "name": "NewsAPI",
            "category": "data-provider",
            "entryPoint": "news/plugin.py",
        }))
        (tmp_path / "yahoo").mkdir()
        (tmp_path / "yahoo" / "plugin.yaml").write_text(
            "id: yahoo\nname: Yahoo Finance\ncategory: data-provider\n"
        )
        (tmp_path / "bad").mkdir()
        (tmp_path / "bad" / "plugin.yaml").write_text("name: no id\n")

        manifests = registry.discover_plugins()

        assert sorted(m.id for m in manifests) == ["newsapi", "yahoo"]
        news = next(m for m in manifests if m.id == "newsapi")
        assert news.entry_point == "news/plugin.py"

    def test_discover_missing_directory(self, registry, tmp_path):
        assert registry.discover_plugins(tmp_path / "nowhere") == []

    @pytest.mark.asyncio
    async def test_load_from_python_file(self, registry, tmp_path):
        (tmp_path / "headlines.py").write_text(PLUGIN_SOURCE)
        manifest = PluginManifest(
            id="headlines",
            name="Headlines",
            category=PluginCategory.DATA_PROVIDER,
            entry_point="headlines.py",
        )

        info = await registry.load_plugin(manifest)

        assert info.status == PluginStatus.ACTIVE
        assert info.instance.manifest.id == "headlines"

    @pytest.mark.asyncio
    async def test_load_from_module(self, registry, tmp_path, monkeypatch):
        package = tmp_path / "research_plugins"
        package.mkdir()
        (package / "__init__.py").write_text("")
        (package / "headlines.py").write_text(PLUGIN_SOURCE)
        monkeypatch.syspath_prepend(str(tmp_path))

        info = await registry.load_plugin({
            "id": "headlines",
            "name": "Headlines",
            "category": "data-provider",
            "entryPoint": "research_plugins.headlines:HeadlinePlugin",
        })

        assert info.status == PluginStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_load_wrong_plugin_id(self, registry, tmp_path):
        """An entry point that builds a different plugin is rejected."""
        (tmp_path / "fixed.py").write_text(
            "class Fixed:\n"
            "    manifest = {'id': 'fixed', 'name': 'Fixed', 'category': 'utility'}\n"
        )

        with pytest.raises(PluginLoadError):
            await registry.load_plugin(PluginManifest(
                id="other",
                name="Other",
                category="utility",
                entry_point="fixed.py:Fixed",
            ))

    @pytest.mark.asyncio
    async def test_load_missing_file(self, registry, event_bus):
        manifest = PluginManifest(
            id="ghost", name="Ghost", category="utility", entry_point="ghost.py"
        )

        with pytest.raises(PluginLoadError):
            await registry.load_plugin(manifest)

        assert registry.get_plugin("ghost").status == PluginStatus.ERROR
        assert event_bus.get_history(event_type=EventType.PLUGIN_LOAD_ERROR)

    @pytest.mark.asyncio
    async def test_load_without_entry_point(self, registry):
        manifest = PluginManifest(id="ghost", name="Ghost", category="utility")

        with pytest.raises(PluginLoadError):
            await registry.load_plugin(manifest)

    @pytest.mark.asyncio
    async def test_custom_loader(self, registry, make_plugin):
        class FactoryLoader:
            def can_load(self, entry_point):
                return entry_point.startswith("factory://")

            def load(self, entry_point, manifest):
                return make_plugin(manifest.id)

        registry.register_loader("factory://", FactoryLoader())
        info = await registry.load_plugin(
            PluginManifest(id="made", name="Made", category="utility", entry_point="factory://made")
        )

        assert info.status == PluginStatus.ACTIVE
