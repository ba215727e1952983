import itertools

import pytest

from graph_editor.editor import GraphEditor
from graph_editor.render import RenderAdapter
from graph_editor.scheduler import ManualTimer
from graph_editor.settings import EditorOptions

CALLBACK_NAMES = (
    "on_node_create",
    "on_node_update",
    "on_node_delete",
    "on_node_move",
    "on_node_select",
    "on_edge_create",
    "on_edge_delete",
)


class RecordingRenderAdapter(RenderAdapter):
    """Render adapter that keeps track of handles instead of drawing."""

    def __init__(self):
        self._seq = itertools.count(1)
        self.live = set()
        self.destroyed = []
        self.contents = {}
        self.positions = []
        self.layouts = []
        self.selected = set()
        self.dragging = set()
        self.connecting = set()
        self.connected = set()
        self.previews = []
        self.preview_moves = []
        self.scrolled = None
        self.styles_installed = 0

    def _handle(self, kind, entity_id):
        handle = (kind, entity_id, next(self._seq))
        self.live.add(handle)
        return handle

    def install_styles(self):
        self.styles_installed += 1

    def render_node(self, node, node_type):
        self.contents[node.id] = node_type.template(node)
        return self._handle("node", node.id)

    def render_edge(self, edge):
        return self._handle("edge", edge.id)

    def destroy(self, handle):
        self.live.discard(handle)
        self.destroyed.append(handle)

    def position_node(self, node):
        self.positions.append((node.id, node.position.x, node.position.y))

    def layout_edge(self, edge, source, target):
        self.layouts.append(edge.id)

    def set_selected(self, node, selected):
        if selected:
            self.selected.add(node.id)
        else:
            self.selected.discard(node.id)

    def set_dragging(self, node, dragging):
        if dragging:
            self.dragging.add(node.id)
        else:
            self.dragging.discard(node.id)

    def set_port_connecting(self, node, role, connecting):
        if connecting:
            self.connecting.add((node.id, role))
        else:
            self.connecting.discard((node.id, role))

    def set_port_connected(self, node, role, connected):
        if connected:
            self.connected.add((node.id, role))
        else:
            self.connected.discard((node.id, role))

    def create_preview(self, node, role):
        handle = self._handle("preview", node.id)
        self.previews.append(handle)
        return handle

    def update_preview(self, preview, node, role, x, y):
        self.preview_moves.append((x, y))

    def scroll_to(self, x, y):
        self.scrolled = (x, y)

    def live_of(self, kind):
        return {handle for handle in self.live if handle[0] == kind}


class EventLog:
    """Collects editor callbacks in the order they fire."""

    def __init__(self):
        self.records = []

    def callbacks(self):
        return {name: self._recorder(name) for name in CALLBACK_NAMES}

    def _recorder(self, name):
        def record(*args):
            self.records.append((name, args))
        return record

    def named(self, name):
        return [args for record_name, args in self.records if record_name == name]

    def names(self):
        return [name for name, _ in self.records]

    def clear(self):
        self.records.clear()


@pytest.fixture
def render():
    return RecordingRenderAdapter()


@pytest.fixture
def timer():
    return ManualTimer()


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def editor(render, timer, events):
    return GraphEditor(
        render=render,
        options=EditorOptions(),
        callbacks=events.callbacks(),
        timer=timer,
        seed=7,
    )


@pytest.fixture
def store(editor):
    return editor.store


@pytest.fixture
def make_editor(render, timer, events):
    """Factory for editors with non-default options."""
    def factory(**option_overrides):
        return GraphEditor(
            render=render,
            options=EditorOptions(**option_overrides),
            callbacks=events.callbacks(),
            timer=timer,
            seed=7,
        )
    return factory
