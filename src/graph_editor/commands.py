import copy
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Tuple

if TYPE_CHECKING:
    from .core import GraphStore
    from .models import Edge, Node, Position


class Command(ABC):
    """Base class for all commands in the undo/redo framework."""
    @abstractmethod
    def execute(self):
        pass

    @abstractmethod
    def undo(self):
        pass


class CommandHistory:
    """Manages the execution, undoing, and redoing of commands."""
    def __init__(self):
        self._undo_stack: List[Command] = []
        self._redo_stack: List[Command] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._undo_stack)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo_stack)

    def execute(self, command: Command):
        """Executes a command and adds it to the undo stack."""
        command.execute()
        self._undo_stack.append(command)
        self._redo_stack.clear()

    def undo(self) -> bool:
        """Undoes the most recent command."""
        if not self._undo_stack:
            return False
        command = self._undo_stack.pop()
        command.undo()
        self._redo_stack.append(command)
        return True

    def redo(self) -> bool:
        """Redoes the most recently undone command."""
        if not self._redo_stack:
            return False
        command = self._redo_stack.pop()
        command.execute()
        self._undo_stack.append(command)
        return True

    def clear(self):
        self._undo_stack.clear()
        self._redo_stack.clear()


class CompoundCommand(Command):
    """Runs several commands as one undo step."""
    def __init__(self, commands: List[Command]):
        self.commands = commands

    def execute(self):
        for command in self.commands:
            command.execute()

    def undo(self):
        for command in reversed(self.commands):
            command.undo()


class AddNodeCommand(Command):
    """Command to add a node to the graph."""
    def __init__(self, store: 'GraphStore', node: 'Node'):
        self.store = store
        self.node = node

    def execute(self):
        self.store._attach_node(self.node)

    def undo(self):
        self.store._detach_node(self.node.id)


class RemoveNodeCommand(Command):
    """Command to remove a node and its incident edges from the graph."""
    def __init__(self, store: 'GraphStore', node: 'Node'):
        self.store = store
        self.node = node
        self.removed_edges: List['Edge'] = []

    def execute(self):
        self.removed_edges = []
        for edge_id in self.store.adjacency.edge_ids(self.node.id):
            edge = self.store._detach_edge(edge_id)
            if edge is not None:
                self.removed_edges.append(edge)
        self.store._detach_node(self.node.id)

    def undo(self):
        self.store._attach_node(self.node)
        for edge in self.removed_edges:
            self.store._attach_edge(edge)
        self.removed_edges = []


class AddEdgeCommand(Command):
    """Command to add an edge to the graph."""
    def __init__(self, store: 'GraphStore', edge: 'Edge'):
        self.store = store
        self.edge = edge

    def execute(self):
        self.store._attach_edge(self.edge)

    def undo(self):
        self.store._detach_edge(self.edge.id)


class RemoveEdgeCommand(Command):
    """Command to remove an edge from the graph."""
    def __init__(self, store: 'GraphStore', edge: 'Edge'):
        self.store = store
        self.edge = edge

    def execute(self):
        self.store._detach_edge(self.edge.id)

    def undo(self):
        self.store._attach_edge(self.edge)


class UpdateNodeDataCommand(Command):
    """Command to merge fields into a node's data."""
    def __init__(self, store: 'GraphStore', node_id: str, changes: Dict[str, Any]):
        self.store = store
        self.node_id = node_id
        self.changes = copy.deepcopy(changes)
        self.previous: Dict[str, Any] = {}

    def execute(self):
        node = self.store.get_node(self.node_id)
        if node is None:
            return
        self.previous = copy.deepcopy(node.data)
        self.store._apply_node_data(node, copy.deepcopy(self.changes), replace=False)

    def undo(self):
        node = self.store.get_node(self.node_id)
        if node is None:
            return
        self.store._apply_node_data(node, self.previous, replace=True)


class MoveNodesCommand(Command):
    """Command to move one or more nodes between two recorded positions."""
    def __init__(self, store: 'GraphStore', moves: Dict[str, Tuple['Position', 'Position']]):
        self.store = store
        self.moves = moves

    def execute(self):
        self.store._apply_positions({node_id: end for node_id, (_, end) in self.moves.items()})

    def undo(self):
        self.store._apply_positions({node_id: start for node_id, (start, _) in self.moves.items()})
