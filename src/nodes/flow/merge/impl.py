from typing import Any

from graph_editor.models import ConnectionSnapshot, Node
from graph_editor.node_types import NodeBehavior


class MergeBehavior(NodeBehavior):
    """入力ノードのタイトルを連結して表示するノード"""

    def template(self, node: Node) -> Any:
        snapshot = node.connection_snapshot
        if snapshot is None or not snapshot.inputs:
            return f"{node.data.get('title', 'Merge')}: (no inputs)"
        titles = [s.data.get("title", s.id) for s in snapshot.inputs]
        return f"{node.data.get('title', 'Merge')}: {' + '.join(titles)}"

    def on_connection_change(self, node: Node, snapshot: ConnectionSnapshot):
        node.data["input_count"] = snapshot.input_count
