"""
ワークフローJSONをヘッドレスで読み込み、グラフの状態を検証・表示するモジュール

使用方法:
    python run_headless.py <workflow.json>
    python run_headless.py workflow.json --export normalized.json
"""

from pathlib import Path
from typing import Optional

from graph_editor.editor import GraphEditor
from graph_editor.node_types import discover_node_types
from graph_editor.render import NullRenderAdapter
from graph_editor.scheduler import ManualTimer
from graph_editor.settings import EditorOptions, init_settings


def build_headless_editor(project_root: Path, config_file: Optional[Path] = None) -> GraphEditor:
    """設定を読み込み、ノードタイプを検出したヘッドレスエディタを作成"""
    if config_file is None:
        config_file = project_root / "config.json"
    settings_manager = init_settings(config_file)

    editor = GraphEditor(
        render=NullRenderAdapter(),
        options=EditorOptions.from_settings(settings_manager),
        timer=ManualTimer(),
    )

    # config.jsonのnode_search_pathsからノードタイプを読み込み
    for path_str in settings_manager.get("node_search_paths", []):
        path = Path(path_str)
        # 相対パスの場合はプロジェクトルートからの相対パスとして解決
        if not path.is_absolute():
            path = project_root / path
        if path.exists():
            discover_node_types(path, editor.registry)
            print(f"Info: Discovered node types from: {path}")
        else:
            print(f"Warning: node_search_path not found: {path}")
    return editor


def run_headless(
    graph_file: Path,
    project_root: Path,
    config_file: Optional[Path] = None,
    export_file: Optional[Path] = None,
) -> int:
    """
    ワークフローを読み込んで遅延処理をすべて実行し、概要を表示

    Returns:
        終了コード（0=成功、1=読み込み失敗）
    """
    editor = build_headless_editor(project_root, config_file)
    try:
        if not editor.store.load(graph_file):
            print(f"Error: Could not load workflow: {graph_file}")
            return 1

        # ヘッドレスでは仮想クロックを進めてフラッシュを完了させる
        editor.timer.run_all()

        issues = editor.store.revalidate()
        for line in editor.summary():
            print(line)
        print(f"cache issues: {issues}")

        if export_file is not None:
            editor.store.save(export_file)
            print(f"Info: Exported workflow to: {export_file}")
        return 0
    finally:
        editor.destroy()
