from typing import Dict, List, Mapping, Optional

from .models import INPUT, OUTPUT, ConnectionSnapshot, ConnectionSummary, Edge, Node


class AdjacencyEntry:
    """Incoming/outgoing edge ids of one node, kept in insertion order."""

    __slots__ = ("inputs", "outputs")

    def __init__(self):
        self.inputs: Dict[str, None] = {}
        self.outputs: Dict[str, None] = {}

    def sizes(self):
        return len(self.inputs), len(self.outputs)


class AdjacencyCache:
    """
    Derived node -> incident edge index.

    The cache reads the store's node and edge mappings but never writes them.
    Updates only arrive through record_edge_created/record_edge_deleted, which
    the store calls in the same turn as the mutation they reflect.
    """

    def __init__(self, nodes: Mapping[str, Node], edges: Mapping[str, Edge]):
        self._nodes = nodes
        self._edges = edges
        self._entries: Dict[str, AdjacencyEntry] = {}

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._entries

    def ensure_node(self, node_id: str) -> AdjacencyEntry:
        entry = self._entries.get(node_id)
        if entry is None:
            entry = self._entries[node_id] = AdjacencyEntry()
        return entry

    def drop_node(self, node_id: str):
        self._entries.pop(node_id, None)

    def clear(self):
        self._entries.clear()

    def record_edge_created(self, edge: Edge):
        self.ensure_node(edge.source).outputs[edge.id] = None
        self.ensure_node(edge.target).inputs[edge.id] = None

    def record_edge_deleted(self, edge: Edge):
        source = self._entries.get(edge.source)
        target = self._entries.get(edge.target)
        if source is not None:
            source.outputs.pop(edge.id, None)
        if target is not None:
            target.inputs.pop(edge.id, None)

    def incoming(self, node_id: str) -> List[str]:
        entry = self._entries.get(node_id)
        return list(entry.inputs) if entry else []

    def outgoing(self, node_id: str) -> List[str]:
        entry = self._entries.get(node_id)
        return list(entry.outputs) if entry else []

    def edge_ids(self, node_id: str) -> List[str]:
        return self.incoming(node_id) + self.outgoing(node_id)

    def query(self, node_id: str, direction: Optional[str] = None) -> ConnectionSnapshot:
        """Resolve cached edge ids to summaries of the opposite endpoints."""
        if direction not in (None, INPUT, OUTPUT):
            raise ValueError(f"Unknown direction: {direction!r}")

        snapshot = ConnectionSnapshot()
        if direction in (None, INPUT):
            snapshot.inputs = self._summaries(self.incoming(node_id), "source")
        if direction in (None, OUTPUT):
            snapshot.outputs = self._summaries(self.outgoing(node_id), "target")
        return snapshot

    def _summaries(self, edge_ids: List[str], endpoint: str) -> List[ConnectionSummary]:
        summaries = []
        for edge_id in edge_ids:
            edge = self._edges.get(edge_id)
            if edge is None:
                continue
            other = self._nodes.get(getattr(edge, endpoint))
            if other is None:
                continue
            summaries.append(ConnectionSummary(
                id=other.id,
                type=other.type,
                data=dict(other.data),
                edge_id=edge.id,
            ))
        return summaries

    def rebuild(self) -> Dict[str, AdjacencyEntry]:
        entries = {node_id: AdjacencyEntry() for node_id in self._nodes}
        for edge in self._edges.values():
            if edge.source in entries and edge.target in entries:
                entries[edge.source].outputs[edge.id] = None
                entries[edge.target].inputs[edge.id] = None
        return entries

    def revalidate(self) -> int:
        """Rebuild the index from the edges and swap it in if the live one drifted.

        Returns the number of nodes whose incoming/outgoing sizes disagreed,
        counting entries left behind for nodes that no longer exist.
        """
        rebuilt = self.rebuild()
        issues = 0
        for node_id, entry in rebuilt.items():
            current = self._entries.get(node_id)
            if current is None or current.sizes() != entry.sizes():
                issues += 1
        issues += sum(1 for node_id in self._entries if node_id not in rebuilt)

        if issues:
            self._entries = rebuilt
        return issues
