"""
グラフエディタのコアをGUIなしで動かすエントリポイント

ワークフローJSONを読み込み、遅延フラッシュを最後まで実行してから
ノード/エッジ数と各ノードの接続を表示します。

使用方法:
    python run_headless.py <workflow.json>
    python run_headless.py workflow.json --export normalized.json
    python run_headless.py workflow.json --config path/to/config.json
"""

import argparse
import sys
from pathlib import Path

# srcディレクトリをパスに追加
project_root = Path(__file__).resolve().parent
sys.path.insert(0, str(project_root / "src"))

from gui.headless.headless_main import run_headless


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="ワークフローJSONをヘッドレスで読み込み、グラフ構造を検証")
    parser.add_argument("graph_file", type=Path, help="ワークフローJSONファイル")
    parser.add_argument("--export", type=Path, default=None, help="正規化したワークフローの書き出し先")
    parser.add_argument("--config", type=Path, default=None, help="設定ファイル（省略時はプロジェクト直下のconfig.json）")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    for label, path in (("Workflow", args.graph_file), ("Config", args.config)):
        if path is not None and not path.exists():
            print(f"Error: {label} file not found: {path}")
            return 1

    return run_headless(
        graph_file=args.graph_file,
        project_root=project_root,
        config_file=args.config,
        export_file=args.export,
    )


if __name__ == "__main__":
    sys.exit(main())
