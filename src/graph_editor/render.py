from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .models import Edge, Node
    from .node_types import NodeType


class RenderAdapter(ABC):
    """
    Boundary to whatever draws the graph.

    The core asks the adapter to create, move and destroy visual handles and
    never looks inside them. Handles are replaced, never mutated in place:
    a re-render creates a new handle and the old one is destroyed afterwards.
    """

    _styles_installed = False

    def ensure_styles(self):
        """One-time style installation, invoked explicitly by the host."""
        if self._styles_installed:
            return
        self.install_styles()
        self._styles_installed = True

    def install_styles(self):
        pass

    @abstractmethod
    def render_node(self, node: "Node", node_type: "NodeType") -> Any:
        """Create a visual handle for the node's current state."""

    @abstractmethod
    def render_edge(self, edge: "Edge") -> Any:
        """Create a visual handle for the edge."""

    @abstractmethod
    def destroy(self, handle: Any):
        """Release a handle previously returned by this adapter."""

    def position_node(self, node: "Node"):
        pass

    def layout_edge(self, edge: "Edge", source: "Node", target: "Node"):
        pass

    def set_selected(self, node: "Node", selected: bool):
        pass

    def set_dragging(self, node: "Node", dragging: bool):
        pass

    def set_port_connecting(self, node: "Node", role: str, connecting: bool):
        pass

    def set_port_connected(self, node: "Node", role: str, connected: bool):
        """Persistent marker: the port has at least one edge attached."""

    def create_preview(self, node: "Node", role: str) -> Any:
        return None

    def update_preview(self, preview: Any, node: "Node", role: str, x: float, y: float):
        pass

    def scroll_to(self, x: float, y: float):
        pass


class NullRenderAdapter(RenderAdapter):
    """Adapter for headless use: handles are plain tuples, nothing is drawn."""

    def render_node(self, node, node_type) -> Any:
        return ("node", node.id, node_type.template(node))

    def render_edge(self, edge) -> Any:
        return ("edge", edge.id)

    def destroy(self, handle: Optional[Any]):
        pass
