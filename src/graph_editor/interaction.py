import math
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .commands import AddEdgeCommand, AddNodeCommand, CompoundCommand, MoveNodesCommand, RemoveNodeCommand
from .models import OUTPUT, PORT_ROLES, Position, WorkflowEdge, WorkflowNode

if TYPE_CHECKING:
    from .core import GraphStore


class State(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    CONNECTING = "connecting"


class TargetKind(str, Enum):
    PORT = "port"
    NODE_SURFACE = "node_surface"
    NODE_CONTROL = "node_control"  # input/select/button embedded in a node body
    EDGE = "edge"
    CANVAS = "canvas"
    NONE = "none"


class Intent(str, Enum):
    START_CONNECT = "start_connect"
    START_DRAG = "start_drag"
    TOGGLE_SELECT = "toggle_select"
    PRESS_EDGE = "press_edge"
    CLEAR_SELECTION = "clear_selection"
    IGNORE = "ignore"


class PointerTarget(BaseModel):
    """The element under the pointer, as classified by the host."""
    kind: TargetKind = TargetKind.NONE
    node_id: Optional[str] = None
    port_role: Optional[str] = None
    edge_id: Optional[str] = None

    @classmethod
    def port(cls, node_id: str, role: str) -> "PointerTarget":
        return cls(kind=TargetKind.PORT, node_id=node_id, port_role=role)

    @classmethod
    def node(cls, node_id: str) -> "PointerTarget":
        return cls(kind=TargetKind.NODE_SURFACE, node_id=node_id)

    @classmethod
    def control(cls, node_id: str) -> "PointerTarget":
        return cls(kind=TargetKind.NODE_CONTROL, node_id=node_id)

    @classmethod
    def edge(cls, edge_id: str) -> "PointerTarget":
        return cls(kind=TargetKind.EDGE, edge_id=edge_id)

    @classmethod
    def canvas(cls) -> "PointerTarget":
        return cls(kind=TargetKind.CANVAS)


class PointerEvent(BaseModel):
    """Pointer input in canvas-local coordinates."""
    x: float = 0.0
    y: float = 0.0
    target: PointerTarget = Field(default_factory=PointerTarget)
    ctrl: bool = False
    meta: bool = False
    shift: bool = False


class KeyEvent(BaseModel):
    key: str
    ctrl: bool = False
    meta: bool = False
    shift: bool = False


class DragSession(BaseModel):
    node_ids: List[str]
    primary_id: str
    start_positions: Dict[str, Position]
    offset: Position  # pointer offset from the primary node's origin
    pointer_start: Position


class ConnectionInProgress(BaseModel):
    source_node_id: str
    source_role: str
    preview: Any = None


class Clipboard(BaseModel):
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)


def classify_target(target: PointerTarget, multi: bool = False) -> Intent:
    """Map the pressed element's role to an interaction intent."""
    if target.kind == TargetKind.PORT:
        return Intent.START_CONNECT
    if target.kind == TargetKind.NODE_SURFACE:
        return Intent.TOGGLE_SELECT if multi else Intent.START_DRAG
    if target.kind == TargetKind.EDGE:
        return Intent.PRESS_EDGE
    if target.kind == TargetKind.CANVAS:
        return Intent.CLEAR_SELECTION
    return Intent.IGNORE


# (state, intent) -> handler; pairs not listed are ignored
_TRANSITIONS = {
    (State.IDLE, Intent.START_DRAG): "_start_drag",
    (State.IDLE, Intent.START_CONNECT): "_start_connection",
    (State.IDLE, Intent.TOGGLE_SELECT): "_toggle_from_pointer",
    (State.IDLE, Intent.PRESS_EDGE): "_press_edge",
    (State.IDLE, Intent.CLEAR_SELECTION): "_clear_from_pointer",
}


class InteractionController:
    """
    Pointer/keyboard state machine on top of a GraphStore.

    Exactly one of idle, dragging, connecting is active. Dragging writes
    positions directly and records a single move command on release;
    connecting never touches the store until the release commits an edge.
    """

    def __init__(self, store: "GraphStore"):
        self.store = store
        self.state = State.IDLE
        self.drag: Optional[DragSession] = None
        self.connection: Optional[ConnectionInProgress] = None
        self.clipboard: Optional[Clipboard] = None

    # --- Pointer input ---
    def pointer_down(self, event: PointerEvent) -> bool:
        intent = classify_target(event.target, multi=event.ctrl or event.meta)
        handler = _TRANSITIONS.get((self.state, intent))
        if handler is None:
            return False
        return getattr(self, handler)(event)

    def pointer_move(self, event: PointerEvent):
        if self.state == State.DRAGGING:
            self._update_drag(event)
        elif self.state == State.CONNECTING:
            self._update_preview(event)

    def pointer_up(self, event: PointerEvent):
        """Finish the active gesture. Returns moved node ids or the committed edge id."""
        if self.state == State.DRAGGING:
            return self._end_drag()
        if self.state == State.CONNECTING:
            return self._end_connection(event)
        return None

    def abort(self):
        """Cancel the active gesture without committing anything."""
        if self.state == State.DRAGGING:
            for node_id in self.drag.node_ids:
                node = self.store.get_node(node_id)
                if node is None:
                    continue
                start = self.drag.start_positions[node_id]
                self.store.set_node_position(node, start.x, start.y)
                self.store.render.set_dragging(node, False)
            self.drag = None
            self.state = State.IDLE
        elif self.state == State.CONNECTING:
            self._cleanup_connection()

    # --- Dragging ---
    def _start_drag(self, event: PointerEvent) -> bool:
        store = self.store
        node = store.get_node(event.target.node_id)
        if node is None:
            return False

        if node.id in store.selection:
            node_ids = self.selected_ids()
        else:
            self.select_node(node.id)
            node_ids = [node.id]

        self.drag = DragSession(
            node_ids=node_ids,
            primary_id=node.id,
            start_positions={
                node_id: store.nodes[node_id].position.model_copy() for node_id in node_ids
            },
            offset=Position(x=event.x - node.position.x, y=event.y - node.position.y),
            pointer_start=Position(x=event.x, y=event.y),
        )
        for node_id in node_ids:
            store.render.set_dragging(store.nodes[node_id], True)
        self.state = State.DRAGGING
        return True

    def _update_drag(self, event: PointerEvent):
        dx = event.x - self.drag.pointer_start.x
        dy = event.y - self.drag.pointer_start.y
        for node_id in self.drag.node_ids:
            node = self.store.get_node(node_id)
            if node is None:
                continue
            start = self.drag.start_positions[node_id]
            self.store.set_node_position(node, self._snap(start.x + dx), self._snap(start.y + dy))

    def _snap(self, value: float) -> float:
        grid = self.store.options.grid_size
        if grid > 1:
            # round half up
            return math.floor(value / grid + 0.5) * grid
        return value

    def _end_drag(self) -> List[str]:
        store = self.store
        moves = {}
        for node_id in self.drag.node_ids:
            node = store.get_node(node_id)
            if node is None:
                continue
            store.render.set_dragging(node, False)
            start = self.drag.start_positions[node_id]
            if node.position != start:
                moves[node_id] = (start, node.position.model_copy())

        self.drag = None
        self.state = State.IDLE
        if moves:
            store.history.execute(MoveNodesCommand(store, moves))
        return list(moves)

    # --- Connecting ---
    def _start_connection(self, event: PointerEvent) -> bool:
        store = self.store
        node = store.get_node(event.target.node_id)
        role = event.target.port_role
        if node is None or role not in PORT_ROLES:
            return False
        if not store.registry.get(node.type).has_port(role):
            return False

        preview = store.render.create_preview(node, role)
        store.render.set_port_connecting(node, role, True)
        self.connection = ConnectionInProgress(source_node_id=node.id, source_role=role, preview=preview)
        self.state = State.CONNECTING
        return True

    def _update_preview(self, event: PointerEvent):
        node = self.store.get_node(self.connection.source_node_id)
        if node is None:
            return
        self.store.render.update_preview(
            self.connection.preview, node, self.connection.source_role, event.x, event.y
        )

    def _end_connection(self, event: PointerEvent) -> Optional[str]:
        store = self.store
        connection = self.connection
        target = event.target
        edge_id = None
        try:
            if target.kind == TargetKind.PORT and target.node_id is not None and store.validate_connection(
                connection.source_node_id, connection.source_role, target.node_id, target.port_role
            ):
                # エッジは常に output -> input の向きで作成する
                if connection.source_role == OUTPUT:
                    edge_id = store.create_edge(connection.source_node_id, target.node_id)
                else:
                    edge_id = store.create_edge(target.node_id, connection.source_node_id)
        finally:
            self._cleanup_connection()
        return edge_id

    def _cleanup_connection(self):
        connection = self.connection
        render = self.store.render
        if connection.preview is not None:
            render.destroy(connection.preview)
        node = self.store.get_node(connection.source_node_id)
        if node is not None:
            render.set_port_connecting(node, connection.source_role, False)
        self.connection = None
        self.state = State.IDLE

    # --- Other pointer intents ---
    def _toggle_from_pointer(self, event: PointerEvent) -> bool:
        return self.toggle_selection(event.target.node_id) is not None

    def _press_edge(self, event: PointerEvent) -> bool:
        edge = self.store.get_edge(event.target.edge_id)
        if edge is None:
            return False
        if self.store.trigger_callback("confirm_edge_delete", edge):
            self.store.delete_edge(edge.id)
        return True

    def _clear_from_pointer(self, event: PointerEvent) -> bool:
        self.clear_selection()
        return True

    # --- Selection ---
    def selected_ids(self) -> List[str]:
        return [node_id for node_id in self.store.nodes if node_id in self.store.selection]

    def select_node(self, node_id: str, multi: bool = False) -> bool:
        if not multi:
            self.clear_selection()
        node = self.store.get_node(node_id)
        if node is None:
            return False
        self.store.selection.add(node_id)
        self.store.render.set_selected(node, True)
        self.store.trigger_callback("on_node_select", node)
        return True

    def toggle_selection(self, node_id: str) -> Optional[bool]:
        """Flip one node's membership. Returns the new state, or None for unknown ids."""
        node = self.store.get_node(node_id)
        if node is None:
            return None
        if node_id in self.store.selection:
            self.store.selection.discard(node_id)
            self.store.render.set_selected(node, False)
            return False
        return self.select_node(node_id, multi=True)

    def select_all(self):
        for node_id, node in self.store.nodes.items():
            self.store.selection.add(node_id)
            self.store.render.set_selected(node, True)

    def clear_selection(self):
        for node_id in self.selected_ids():
            self.store.render.set_selected(self.store.nodes[node_id], False)
        self.store.selection.clear()

    def delete_selected(self) -> List[str]:
        """Delete the selected nodes as one undo step, skipping non-deletable ones."""
        store = self.store
        nodes = [
            store.nodes[node_id] for node_id in self.selected_ids()
            if store.nodes[node_id].data.get("deletable", True) is not False
        ]
        if nodes:
            store.history.execute(CompoundCommand([RemoveNodeCommand(store, node) for node in nodes]))
        self.clear_selection()
        return [node.id for node in nodes]

    # --- Clipboard ---
    def copy_selected(self) -> int:
        """Copy the selected nodes and the edges running between them."""
        selected = set(self.selected_ids())
        document = self.store.get_workflow_snapshot()
        self.clipboard = Clipboard(
            nodes=[node for node in document.nodes if node.id in selected],
            edges=[
                edge for edge in document.edges
                if edge.source in selected and edge.target in selected
            ],
        )
        return len(self.clipboard.nodes)

    def paste(self) -> List[str]:
        """Paste the clipboard at a fixed offset with fresh ids; the copies become the selection."""
        if self.clipboard is None or not self.clipboard.nodes:
            return []
        store = self.store
        offset = store.options.paste_offset
        self.clear_selection()

        id_map: Dict[str, str] = {}
        commands = []
        for node_data in self.clipboard.nodes:
            position = node_data.position or {}
            node = store.build_node(
                node_data.type,
                {"x": position.get("x", 0.0) + offset, "y": position.get("y", 0.0) + offset},
                node_data.data,
            )
            id_map[node_data.id] = node.id
            commands.append(AddNodeCommand(store, node))
        for edge_data in self.clipboard.edges:
            edge = store.build_edge(
                id_map[edge_data.source],
                id_map[edge_data.target],
                {"style": edge_data.style, "data": edge_data.data},
            )
            commands.append(AddEdgeCommand(store, edge))
        store.history.execute(CompoundCommand(commands))

        for node_id in id_map.values():
            self.select_node(node_id, multi=True)
        return list(id_map.values())

    # --- Keyboard ---
    def key_down(self, event: KeyEvent) -> bool:
        """Handle editor shortcuts. Returns True when the key was consumed."""
        key = event.key.lower() if len(event.key) == 1 else event.key
        modifier = event.ctrl or event.meta

        if key == "Escape":
            if self.state != State.IDLE:
                self.abort()
            else:
                self.clear_selection()
            return True
        if self.state != State.IDLE:
            return False

        if key == "Delete":
            self.delete_selected()
        elif modifier and key == "a":
            self.select_all()
        elif modifier and key == "c":
            self.copy_selected()
        elif modifier and key == "v":
            self.paste()
        elif modifier and key == "z":
            if event.shift:
                self.store.history.redo()
            else:
                self.store.history.undo()
        elif modifier and key == "y":
            self.store.history.redo()
        else:
            return False
        return True
