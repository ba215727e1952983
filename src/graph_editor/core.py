import copy
import json
import random
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Union

from pydantic import ValidationError

from .adjacency import AdjacencyCache
from .commands import (
    AddEdgeCommand,
    AddNodeCommand,
    CommandHistory,
    MoveNodesCommand,
    RemoveEdgeCommand,
    RemoveNodeCommand,
    UpdateNodeDataCommand,
)
from .models import (
    INPUT,
    OUTPUT,
    PORT_ROLES,
    WORKFLOW_FORMAT_VERSION,
    ConnectionSnapshot,
    Edge,
    EdgeStyle,
    IdAllocator,
    Node,
    Position,
    WorkflowDocument,
    WorkflowEdge,
    WorkflowNode,
)
from .node_types import NodeTypeRegistry
from .render import NullRenderAdapter, RenderAdapter
from .scheduler import DirtyBatchScheduler, EdgeLayoutQueue, make_default_timer
from .settings import EditorOptions

PositionLike = Union[Position, Dict[str, float], None]


class GraphStore:
    """
    ノードとエッジの正本を保持するストア。

    グラフ構造の変更はすべてこのクラスの公開メソッド（内部的にはコマンド）を
    経由し、隣接キャッシュの更新は変更と同じターン内で同期的に行われます。
    """

    def __init__(
        self,
        registry: Optional[NodeTypeRegistry] = None,
        render: Optional[RenderAdapter] = None,
        options: Optional[EditorOptions] = None,
        callbacks: Optional[Dict[str, Callable]] = None,
        timer=None,
        seed: Optional[int] = None,
    ):
        self.options = options or EditorOptions.from_settings()
        self.registry = registry or NodeTypeRegistry()
        self.render = render or NullRenderAdapter()
        self.callbacks: Dict[str, Callable] = dict(callbacks or {})

        self.nodes: Dict[str, Node] = {}
        self.edges: Dict[str, Edge] = {}
        self.selection: Set[str] = set()

        self.adjacency = AdjacencyCache(self.nodes, self.edges)
        self.timer = timer or make_default_timer()
        self.dirty = DirtyBatchScheduler(self, self.timer, self.options.flush_delay_ms)
        self.layout_queue = EdgeLayoutQueue(self, self.timer, self.options.flush_delay_ms)
        self.history = CommandHistory()

        self._node_ids = IdAllocator("node")
        self._edge_ids = IdAllocator("edge")
        self._random = random.Random(seed)

    # --- Queries ---
    def get_node(self, node_id: str) -> Optional[Node]:
        return self.nodes.get(node_id)

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        return self.edges.get(edge_id)

    def find_edge(self, source: str, target: str) -> Optional[Edge]:
        """source -> target のエッジを隣接キャッシュから探します。"""
        for edge_id in self.adjacency.outgoing(source):
            edge = self.edges.get(edge_id)
            if edge is not None and edge.target == target:
                return edge
        return None

    def get_connected_nodes(self, node_id: str, direction: Optional[str] = None) -> ConnectionSnapshot:
        return self.adjacency.query(node_id, direction)

    def neighbour_ids(self, node_id: str) -> List[str]:
        neighbours: Dict[str, None] = {}
        for edge_id in self.adjacency.edge_ids(node_id):
            edge = self.edges.get(edge_id)
            if edge is not None:
                neighbours[edge.target if edge.source == node_id else edge.source] = None
        return list(neighbours)

    # --- Node operations ---
    def build_node(self, type: str = "default", position: PositionLike = None, data: Optional[Dict[str, Any]] = None) -> Node:
        """IDを割り当て、デフォルトデータをマージしたノードを作成します（まだ登録はしない）。"""
        if not self.registry.is_registered(type):
            print(f"Warning: Node type '{type}' is not registered. Using default behavior.")
        node_type = self.registry.get(type)
        merged = {
            **copy.deepcopy(self.options.node_defaults),
            **copy.deepcopy(node_type.defaults),
            **copy.deepcopy(data or {}),
        }
        return Node(
            id=self._node_ids.next(),
            type=type,
            position=self._initial_position(position),
            data=merged,
        )

    def create_node(self, type: str = "default", position: PositionLike = None, data: Optional[Dict[str, Any]] = None) -> str:
        """ノードを作成し、そのIDを返します。"""
        node = self.build_node(type, position, data)
        self.history.execute(AddNodeCommand(self, node))
        return node.id

    def update_node_data(self, node_id: str, data: Dict[str, Any]) -> bool:
        """ノードのデータに指定フィールドをマージします。ノードが無ければFalseを返します。"""
        if node_id not in self.nodes:
            return False
        self.history.execute(UpdateNodeDataCommand(self, node_id, data))
        return True

    def delete_node(self, node_id: str) -> bool:
        """ノードと、それに接続された全エッジを削除します。"""
        node = self.nodes.get(node_id)
        if node is None:
            return False
        self.history.execute(RemoveNodeCommand(self, node))
        return True

    def move_node(self, node_id: str, x: float, y: float) -> bool:
        node = self.nodes.get(node_id)
        if node is None:
            return False
        start = node.position.model_copy()
        end = Position(x=x, y=y).clamped()
        if start == end:
            return False
        self.history.execute(MoveNodesCommand(self, {node_id: (start, end)}))
        return True

    def set_node_position(self, node: Node, x: float, y: float):
        """位置のみを書き換えます（グラフ構造は変わらないため履歴には残しません）。"""
        node.position = Position(x=x, y=y).clamped()
        self.render.position_node(node)
        self.layout_queue.mark(node.id)

    # --- Edge operations ---
    def build_edge(self, source: str, target: str, options: Optional[Dict[str, Any]] = None) -> Edge:
        options = options or {}
        return Edge(
            id=self._edge_ids.next(),
            source=source,
            target=target,
            style=self.edge_style(options.get("style")),
            data=copy.deepcopy(options.get("data") or {}),
        )

    def edge_style(self, overrides: Union[EdgeStyle, Dict[str, Any], None] = None) -> EdgeStyle:
        """グローバルのエッジスタイルに個別の上書きを重ねます。値が不正ならValidationErrorを送出します。"""
        overrides = overrides or {}
        if isinstance(overrides, EdgeStyle):
            overrides = overrides.model_dump(exclude_unset=True)
        return EdgeStyle(**{**self.options.edge_style.model_dump(), **overrides})

    def create_edge(self, source: str, target: str, options: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """2つのノード間にエッジを作成します。

        既に同じ向きのエッジがあればそのIDを返し、無効な接続の場合はNoneを返します。
        """
        if source not in self.nodes or target not in self.nodes:
            print(f"Warning: Invalid source or target node: {source} -> {target}")
            return None
        if source == target:
            return None

        existing = self.find_edge(source, target)
        if existing is not None:
            return existing.id
        if not self.options.allow_reverse_edges and self.find_edge(target, source) is not None:
            return None

        edge = self.build_edge(source, target, options)
        self.history.execute(AddEdgeCommand(self, edge))
        return edge.id

    def delete_edge(self, edge_id: str) -> bool:
        edge = self.edges.get(edge_id)
        if edge is None:
            return False
        self.history.execute(RemoveEdgeCommand(self, edge))
        return True

    def validate_connection(self, source_id: str, source_role: str, target_id: str, target_role: str) -> bool:
        """ポート間の接続が可能か判定します（向きはoutput→inputに揃えて判定）。"""
        if source_id == target_id or source_role == target_role:
            return False
        if source_role not in PORT_ROLES or target_role not in PORT_ROLES:
            return False
        source_node = self.nodes.get(source_id)
        target_node = self.nodes.get(target_id)
        if source_node is None or target_node is None:
            return False
        if not self.registry.get(source_node.type).has_port(source_role):
            return False
        if not self.registry.get(target_node.type).has_port(target_role):
            return False

        if source_role == OUTPUT:
            return not self._pair_blocked(source_id, target_id)
        return not self._pair_blocked(target_id, source_id)

    def _pair_blocked(self, source: str, target: str) -> bool:
        if self.find_edge(source, target) is not None:
            return True
        return not self.options.allow_reverse_edges and self.find_edge(target, source) is not None

    # --- Attach / detach primitives (used by commands only) ---
    def _attach_node(self, node: Node):
        self.nodes[node.id] = node
        self.adjacency.ensure_node(node.id)
        node.connection_snapshot = None
        self.rerender_node(node)

        self.registry.get(node.type).call_hook("on_create", node)
        self.trigger_callback("on_node_create", node)

    def _detach_node(self, node_id: str) -> Optional[Node]:
        node = self.nodes.get(node_id)
        if node is None:
            return None
        for edge_id in self.adjacency.edge_ids(node_id):
            self._detach_edge(edge_id)

        self.selection.discard(node_id)
        self.adjacency.drop_node(node_id)
        self.dirty.discard(node_id)
        self.layout_queue.discard(node_id)
        self._destroy_handle(node)
        del self.nodes[node_id]

        self.registry.get(node.type).call_hook("on_delete", node)
        self.trigger_callback("on_node_delete", node)
        return node

    def _attach_edge(self, edge: Edge):
        source = self.nodes[edge.source]
        target = self.nodes[edge.target]
        self.edges[edge.id] = edge
        self.adjacency.record_edge_created(edge)
        self.dirty.mark_dirty(edge.source)
        self.dirty.mark_dirty(edge.target)

        edge.handle = self.render.render_edge(edge)
        self.render.layout_edge(edge, source, target)
        self.update_port_states(edge.source)
        self.update_port_states(edge.target)

        self.registry.get(source.type).call_hook("on_connect", source, target, edge)
        self.registry.get(target.type).call_hook("on_connect", target, source, edge)
        self.trigger_callback("on_edge_create", edge)

    def _detach_edge(self, edge_id: str) -> Optional[Edge]:
        edge = self.edges.get(edge_id)
        if edge is None:
            return None
        self.adjacency.record_edge_deleted(edge)
        self.dirty.mark_dirty(edge.source)
        self.dirty.mark_dirty(edge.target)
        self.update_port_states(edge.source)
        self.update_port_states(edge.target)

        source = self.nodes.get(edge.source)
        target = self.nodes.get(edge.target)
        if source is not None and target is not None:
            self.registry.get(source.type).call_hook("on_disconnect", source, target, edge)
            self.registry.get(target.type).call_hook("on_disconnect", target, source, edge)

        self._destroy_handle(edge)
        del self.edges[edge_id]
        self.trigger_callback("on_edge_delete", edge)
        return edge

    def _apply_node_data(self, node: Node, changes: Dict[str, Any], replace: bool):
        if replace:
            node.data = copy.deepcopy(changes)
        else:
            node.data.update(changes)
        self.rerender_node(node)
        self.layout_queue.mark(node.id)

        # 隣接ノードのスナップショットはこのノードのデータを含むため再計算する
        self.dirty.mark_dirty(node.id)
        for neighbour_id in self.neighbour_ids(node.id):
            self.dirty.mark_dirty(neighbour_id)

        self.registry.get(node.type).call_hook("on_update", node, changes)
        self.trigger_callback("on_node_update", node, changes)

    def _apply_positions(self, positions: Dict[str, Position]):
        for node_id, position in positions.items():
            node = self.nodes.get(node_id)
            if node is None:
                continue
            self.set_node_position(node, position.x, position.y)
            self.trigger_callback("on_node_move", node)

    # --- Rendering ---
    def rerender_node(self, node: Node):
        """新しいハンドルを作成してから古いハンドルを破棄します。"""
        old_handle = node.handle
        try:
            node.handle = self.render.render_node(node, self.registry.get(node.type))
        except Exception as e:
            print(f"[ERROR] Rendering node {node.id} ({node.type}) failed: {e}")
            node.handle = None
        if old_handle is not None:
            self.render.destroy(old_handle)
        if node.handle is None:
            return
        if node.id in self.selection:
            self.render.set_selected(node, True)
        self.update_port_states(node.id)

    def update_port_states(self, node_id: str):
        """入力側はincomingが、出力側はoutgoingがあるときに接続済みとして表示します。"""
        node = self.nodes.get(node_id)
        if node is None or node.handle is None:
            return
        self.render.set_port_connected(node, INPUT, bool(self.adjacency.incoming(node_id)))
        self.render.set_port_connected(node, OUTPUT, bool(self.adjacency.outgoing(node_id)))

    def _destroy_handle(self, entity: Union[Node, Edge]):
        if entity.handle is not None:
            self.render.destroy(entity.handle)
            entity.handle = None

    # --- Validation ---
    def revalidate(self) -> int:
        """隣接キャッシュを再構築して検証し、不整合のあったノード数を返します。"""
        issues = self.adjacency.revalidate()
        if issues:
            print(f"Warning: Adjacency cache validation found {issues} issues, rebuilt.")
        return issues

    # --- Snapshot / persistence ---
    def get_workflow_snapshot(self) -> WorkflowDocument:
        """グラフの深いコピーを返します。戻り値を変更してもストアには影響しません。"""
        return WorkflowDocument(
            nodes=[
                WorkflowNode(
                    id=node.id,
                    type=node.type,
                    position={"x": node.position.x, "y": node.position.y},
                    data=copy.deepcopy(node.data),
                )
                for node in self.nodes.values()
            ],
            edges=[
                WorkflowEdge(
                    id=edge.id,
                    source=edge.source,
                    target=edge.target,
                    style=copy.deepcopy(edge.style.model_dump()),
                    data=copy.deepcopy(edge.data),
                )
                for edge in self.edges.values()
            ],
        )

    def load_snapshot(self, snapshot: Union[WorkflowDocument, Dict[str, Any]]) -> bool:
        """ワークフロー文書を読み込みます。

        文書が不正な場合は現在のグラフに触れずにFalseを返します。
        IDは新しく割り当て直し、存在しないノードを参照するエッジは黙って捨てます。
        """
        try:
            if isinstance(snapshot, WorkflowDocument):
                document = snapshot
            else:
                document = WorkflowDocument.model_validate(snapshot)
            # スタイルの値検証はクリア前に済ませ、不正な文書で既存グラフを壊さない
            for edge_data in document.edges:
                self.edge_style(edge_data.style)
        except ValidationError as e:
            print(f"Error: Failed to load workflow: {e}")
            return False

        self.validate_version(document)
        self.clear()

        id_map: Dict[str, str] = {}
        for node_data in document.nodes:
            id_map[node_data.id] = self.create_node(node_data.type, node_data.position, node_data.data)

        for edge_data in document.edges:
            source_id = id_map.get(edge_data.source)
            target_id = id_map.get(edge_data.target)
            if source_id and target_id:
                self.create_edge(source_id, target_id, {"style": edge_data.style, "data": edge_data.data})

        self.revalidate()
        self.history.clear()
        return True

    def validate_version(self, document: WorkflowDocument):
        """文書のフォーマットバージョンを検証し、警告を出力します。"""
        app_version = WORKFLOW_FORMAT_VERSION
        file_version = document.format_version
        if app_version.split('.')[0] != file_version.split('.')[0]:
            print(
                f"Warning: Workflow format version mismatch. "
                f"App supports v{app_version}, but document is v{file_version}."
            )

    def export_json(self) -> str:
        return json.dumps(self.get_workflow_snapshot().model_dump(mode="json"), indent=2, ensure_ascii=False)

    def import_json(self, text: str) -> bool:
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            print(f"Error: Failed to import JSON: {e}")
            return False
        return self.load_snapshot(data)

    def save(self, path: Union[str, Path]):
        """グラフをJSONファイルに保存します。"""
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.export_json())

    def load(self, path: Union[str, Path]) -> bool:
        """JSONファイルからグラフを読み込みます。"""
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            print(f"Error: Failed to read workflow file {path}: {e}")
            return False
        return self.import_json(text)

    # --- Lifecycle ---
    def clear(self):
        """全ノードを削除し、IDカウンタと選択、履歴をリセットします。"""
        for node_id in list(self.nodes):
            RemoveNodeCommand(self, self.nodes[node_id]).execute()
        self.adjacency.clear()
        self.selection.clear()
        self.history.clear()
        self._node_ids.reset()
        self._edge_ids.reset()

    def destroy(self):
        """保留中のフラッシュを取り消し、全ハンドルを破棄して状態を空にします。"""
        self.dirty.cancel()
        self.layout_queue.cancel()
        for edge in self.edges.values():
            self._destroy_handle(edge)
        for node in self.nodes.values():
            self._destroy_handle(node)
        self.edges.clear()
        self.nodes.clear()
        self.adjacency.clear()
        self.selection.clear()
        self.history.clear()

    def trigger_callback(self, name: str, *args) -> Any:
        """ホストのコールバックを呼び出し、その戻り値を返します。未登録や例外時はNone。"""
        callback = self.callbacks.get(name)
        if callback is None:
            return None
        try:
            return callback(*args)
        except Exception as e:
            print(f"[ERROR] Callback {name} failed: {e}")
            return None

    def _initial_position(self, position: PositionLike) -> Position:
        if isinstance(position, Position):
            x, y = position.x, position.y
        elif position:
            x, y = position.get("x"), position.get("y")
        else:
            x = y = None
        left, top, width, height = self.options.spawn_region
        if x is None:
            x = left + self._random.random() * width
        if y is None:
            y = top + self._random.random() * height
        return Position(x=x, y=y).clamped()
