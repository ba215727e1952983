from typing import Any, Callable, Dict, List, Optional, Tuple

from .core import GraphStore
from .interaction import InteractionController, KeyEvent, PointerEvent, State
from .node_types import NodeType, NodeTypeRegistry
from .render import RenderAdapter
from .settings import EditorOptions

# ノードの表示サイズの目安（ビュー中央寄せの計算用）
NODE_EXTENT = (200.0, 100.0)


class GraphEditor:
    """
    Graph store, node type registry and interaction state machine wired together.

    The host owns the event plumbing: it translates its pointer/keyboard input
    into PointerEvent/KeyEvent and feeds them in one at a time.
    """

    def __init__(
        self,
        render: Optional[RenderAdapter] = None,
        options: Optional[EditorOptions] = None,
        callbacks: Optional[Dict[str, Callable]] = None,
        timer=None,
        registry: Optional[NodeTypeRegistry] = None,
        seed: Optional[int] = None,
    ):
        self.registry = registry or NodeTypeRegistry()
        self.store = GraphStore(
            registry=self.registry,
            render=render,
            options=options,
            callbacks=callbacks,
            timer=timer,
            seed=seed,
        )
        self.interaction = InteractionController(self.store)

    @property
    def options(self) -> EditorOptions:
        return self.store.options

    @property
    def render(self) -> RenderAdapter:
        return self.store.render

    @property
    def timer(self):
        return self.store.timer

    def register_node_type(self, name: str, **config: Any) -> NodeType:
        return self.registry.register(name, **config)

    # --- Input ---
    def pointer_down(self, event: PointerEvent) -> bool:
        return self.interaction.pointer_down(event)

    def pointer_move(self, event: PointerEvent):
        self.interaction.pointer_move(event)

    def pointer_up(self, event: PointerEvent):
        return self.interaction.pointer_up(event)

    def key_down(self, event: KeyEvent) -> bool:
        return self.interaction.key_down(event)

    # --- Deferred work ---
    def flush(self):
        """Run the pending dirty-node flush and edge re-layout immediately."""
        self.store.dirty.flush()
        self.store.layout_queue.flush()

    def relayout_all(self) -> int:
        """Lay out every edge now, e.g. after the host viewport was resized."""
        store = self.store
        count = 0
        for edge in store.edges.values():
            source = store.get_node(edge.source)
            target = store.get_node(edge.target)
            if source is None or target is None:
                continue
            store.render.layout_edge(edge, source, target)
            count += 1
        return count

    # --- View ---
    def content_bounds(self) -> Optional[Tuple[float, float, float, float]]:
        """Bounding box (min_x, min_y, max_x, max_y) of all nodes, or None when empty."""
        if not self.store.nodes:
            return None
        width, height = NODE_EXTENT
        xs = [node.position.x for node in self.store.nodes.values()]
        ys = [node.position.y for node in self.store.nodes.values()]
        return min(xs), min(ys), max(xs) + width, max(ys) + height

    def center_view(self) -> Optional[Tuple[float, float]]:
        bounds = self.content_bounds()
        if bounds is None:
            return None
        min_x, min_y, max_x, max_y = bounds
        center = ((min_x + max_x) / 2, (min_y + max_y) / 2)
        self.render.scroll_to(*center)
        return center

    def destroy(self):
        """Cancel pending deferred work and release every visual handle."""
        if self.interaction.state != State.IDLE:
            self.interaction.abort()
        self.interaction.clipboard = None
        self.store.destroy()
        self.registry.clear()

    def summary(self) -> List[str]:
        lines = [f"nodes: {len(self.store.nodes)}, edges: {len(self.store.edges)}"]
        for node in self.store.nodes.values():
            snapshot = self.store.get_connected_nodes(node.id)
            inputs = ", ".join(s.id for s in snapshot.inputs) or "-"
            outputs = ", ".join(s.id for s in snapshot.outputs) or "-"
            lines.append(f"  {node.id} ({node.type}) in: {inputs} out: {outputs}")
        return lines
