import copy
import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from platformdirs import user_config_dir
from pydantic import BaseModel, Field

from .models import EdgeStyle

DEFAULT_SETTINGS: Dict[str, Any] = {
    "config_version": "0.0.1",
    "editor": {
        "grid_size": 1,
        "flush_delay_ms": 16,
        "paste_offset": 50,
        "allow_reverse_edges": True,
        "spawn_region": [100, 100, 400, 300],
        "edge_style": {"color": "#6b7280", "width": 2, "dashed": False, "animated": False},
        "node_defaults": {"width": 200, "resizable": False, "deletable": True},
    },
    "node_search_paths": [],
}


class EditorOptions(BaseModel):
    """Runtime options of one editor instance."""
    grid_size: int = 1  # 1 = snapping disabled
    flush_delay_ms: float = 16
    paste_offset: float = 50
    allow_reverse_edges: bool = True
    spawn_region: Tuple[float, float, float, float] = (100, 100, 400, 300)  # x, y, width, height
    edge_style: EdgeStyle = Field(default_factory=EdgeStyle)
    node_defaults: Dict[str, Any] = Field(
        default_factory=lambda: {"width": 200, "resizable": False, "deletable": True}
    )

    @classmethod
    def from_settings(cls, manager: Optional["SettingsManager"] = None) -> "EditorOptions":
        """Builds options from the 'editor' section of the settings."""
        if manager is None:
            manager = settings_manager
        if manager is None:
            return cls()
        return cls(**manager.get("editor", {}))


def _merge_defaults(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """ファイルの値をデフォルト値の上に再帰的に重ねる（未記載のキーはデフォルトで補完）"""
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_defaults(merged[key], value)
        else:
            merged[key] = value
    return merged


class SettingsManager:
    """
    JSON-backed editor settings addressed with dot-separated keys.

    A missing file is created from DEFAULT_SETTINGS. An existing file only
    needs to name the keys it changes; everything else falls back to the
    defaults.
    """
    def __init__(self, app_name: str, app_author: str, config_file: Optional[Path] = None):
        self.app_name = app_name
        if config_file:
            self.config_file = Path(config_file)
        else:
            self.config_file = Path(user_config_dir(app_name, app_author)) / "config.json"
        self.config_dir = self.config_file.parent
        self.settings: Dict[str, Any] = {}
        self.load_settings()

    def load_settings(self):
        if not self.config_file.exists():
            self.settings = copy.deepcopy(DEFAULT_SETTINGS)
            self.save_settings()
            return
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                stored = json.load(f)
        except (OSError, ValueError) as e:
            print(f"Warning: Could not read settings from {self.config_file}: {e}. Using defaults.")
            stored = {}
        if not isinstance(stored, dict):
            print(f"Warning: Settings file {self.config_file} is not a JSON object. Using defaults.")
            stored = {}
        self.settings = _merge_defaults(DEFAULT_SETTINGS, stored)

    def save_settings(self):
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(self.settings, f, indent=2, ensure_ascii=False)

    def get(self, key: str, default: Any = None) -> Any:
        """'editor.grid_size' のようなドット区切りキーで値を取得"""
        node: Any = self.settings
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any):
        """ドット区切りキーで値を設定し、即座にファイルへ保存"""
        *sections, leaf = key.split(".")
        node = self.settings
        for part in sections:
            node = node.setdefault(part, {})
        node[leaf] = value
        self.save_settings()


# 使用側（ヘッドレスランナー等）が init_settings() で初期化する
settings_manager: Optional[SettingsManager] = None


def init_settings(config_file: Optional[Path] = None) -> SettingsManager:
    global settings_manager
    settings_manager = SettingsManager("GraphEditor", "GraphEditor", config_file=config_file)
    return settings_manager


def get_setting(key: str, default: Any = None) -> Any:
    """グローバル設定から値を取得（未初期化ならdefault）"""
    if settings_manager is None:
        return default
    return settings_manager.get(key, default)
