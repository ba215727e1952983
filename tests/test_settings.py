"""
Settings / Editor Options Tests
===============================
"""

import json

import pytest

from graph_editor import settings
from graph_editor.models import EdgeStyle
from graph_editor.settings import EditorOptions, SettingsManager, get_setting, init_settings


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    monkeypatch.setattr(settings, "settings_manager", None)


class TestSettingsManager:

    def test_missing_file_is_created_with_defaults(self, tmp_path):
        config_file = tmp_path / "nested" / "config.json"
        manager = SettingsManager("GraphEditor", "GraphEditor", config_file=config_file)

        assert config_file.exists()
        assert manager.get("editor.grid_size") == 1
        assert json.loads(config_file.read_text(encoding="utf-8"))["editor"]["paste_offset"] == 50

    def test_defaults_are_not_shared(self, tmp_path):
        first = SettingsManager("GraphEditor", "GraphEditor", config_file=tmp_path / "a.json")
        first.set("editor.node_defaults.width", 999)
        second = SettingsManager("GraphEditor", "GraphEditor", config_file=tmp_path / "b.json")

        assert second.get("editor.node_defaults.width") == 200

    def test_set_persists(self, tmp_path):
        config_file = tmp_path / "config.json"
        SettingsManager("GraphEditor", "GraphEditor", config_file=config_file).set("editor.grid_size", 20)

        reloaded = SettingsManager("GraphEditor", "GraphEditor", config_file=config_file)
        assert reloaded.get("editor.grid_size") == 20

    def test_set_creates_intermediate_sections(self, tmp_path):
        manager = SettingsManager("GraphEditor", "GraphEditor", config_file=tmp_path / "config.json")
        manager.set("plugins.extra.enabled", True)
        assert manager.get("plugins.extra.enabled") is True

    def test_partial_file_is_filled_from_defaults(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"editor": {"edge_style": {"color": "#000000"}}}), encoding="utf-8")

        manager = SettingsManager("GraphEditor", "GraphEditor", config_file=config_file)

        assert manager.get("editor.edge_style.color") == "#000000"
        assert manager.get("editor.edge_style.width") == 2
        assert manager.get("editor.grid_size") == 1
        assert manager.get("node_search_paths") == []

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path, capsys):
        config_file = tmp_path / "config.json"
        config_file.write_text("{oops", encoding="utf-8")

        manager = SettingsManager("GraphEditor", "GraphEditor", config_file=config_file)

        assert manager.get("editor.paste_offset") == 50
        assert "Warning: Could not read settings" in capsys.readouterr().out

    def test_missing_key_returns_default(self, tmp_path):
        manager = SettingsManager("GraphEditor", "GraphEditor", config_file=tmp_path / "config.json")
        assert manager.get("editor.nope", "fallback") == "fallback"
        assert manager.get("editor.grid_size.deeper") is None


class TestEditorOptions:

    def test_defaults(self):
        options = EditorOptions()
        assert options.grid_size == 1
        assert options.flush_delay_ms == 16
        assert options.allow_reverse_edges is True
        assert options.edge_style == EdgeStyle()

    def test_from_settings(self, tmp_path):
        manager = SettingsManager("GraphEditor", "GraphEditor", config_file=tmp_path / "config.json")
        manager.set("editor.grid_size", 25)
        manager.set("editor.allow_reverse_edges", False)
        manager.set("editor.edge_style.color", "#123456")

        options = EditorOptions.from_settings(manager)

        assert options.grid_size == 25
        assert options.allow_reverse_edges is False
        assert options.edge_style.color == "#123456"
        assert options.spawn_region == (100, 100, 400, 300)

    def test_from_settings_without_manager(self):
        assert EditorOptions.from_settings() == EditorOptions()

    def test_global_settings(self, tmp_path):
        assert get_setting("editor.grid_size", "unset") == "unset"

        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"editor": {"paste_offset": 75}}), encoding="utf-8")
        init_settings(config_file)

        assert get_setting("editor.paste_offset") == 75
        assert EditorOptions.from_settings().paste_offset == 75

    def test_store_uses_global_settings(self, tmp_path):
        from graph_editor.core import GraphStore
        from graph_editor.scheduler import ManualTimer

        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"editor": {"allow_reverse_edges": False}}), encoding="utf-8")
        init_settings(config_file)

        store = GraphStore(timer=ManualTimer())
        a = store.create_node("default", {"x": 0, "y": 0})
        b = store.create_node("default", {"x": 0, "y": 0})
        store.create_edge(a, b)

        assert store.create_edge(b, a) is None
