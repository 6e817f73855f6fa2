"""Graph document model for canvas playback."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

NODE_KINDS = ("text", "file", "subGraphRef", "group")
GRAPH_SUFFIX = ".canvas"


class GraphLoadError(Exception):
    """Base class for recoverable graph loading failures."""


class GraphNotFoundError(GraphLoadError):
    """Raised when a referenced graph document does not exist."""


class GraphFormatError(GraphLoadError):
    """Raised when a graph document cannot be parsed."""


class NodeNotFoundError(GraphLoadError):
    """Raised when a node id is missing from a graph."""


class StartNodeNotFoundError(GraphLoadError):
    """Raised when no playable start node can be resolved."""


@dataclass
class Node:
    id: str
    kind: str = "text"
    text: Optional[str] = None
    graph_ref: Optional[str] = None
    file: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_sub_graph(self) -> bool:
        return self.kind == "subGraphRef" and bool(self.graph_ref)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Node":
        payload = dict(data)
        node_id = payload.pop("id")
        kind = payload.pop("kind", None)
        text = payload.pop("text", None)
        graph_ref = payload.pop("graphRef", None)
        raw_type = payload.get("type")
        file_ref = payload.get("file")
        if not isinstance(file_ref, str):
            file_ref = None
        if kind not in NODE_KINDS:
            # Canvas documents describe nodes by `type`; nested graphs are file cards.
            if raw_type == "file" and file_ref and file_ref.endswith(GRAPH_SUFFIX):
                kind = "subGraphRef"
                graph_ref = graph_ref or file_ref
            elif raw_type in ("file", "group"):
                kind = raw_type
            else:
                kind = "text"
        return cls(
            id=str(node_id),
            kind=kind,
            text=text if isinstance(text, str) else None,
            graph_ref=graph_ref if isinstance(graph_ref, str) else None,
            file=file_ref if kind == "file" else None,
            extra=payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id}
        data.update(self.extra)
        if "type" not in self.extra:
            data["kind"] = self.kind
            if self.graph_ref:
                data["graphRef"] = self.graph_ref
        if self.text is not None:
            data["text"] = self.text
        return data


@dataclass(frozen=True)
class Edge:
    id: str
    from_node: str
    to_node: str
    label: str = ""
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Edge":
        payload = dict(data)
        label = payload.pop("label", None)
        return cls(
            id=str(payload.pop("id")),
            from_node=str(payload.pop("fromNode")),
            to_node=str(payload.pop("toNode")),
            label=label if isinstance(label, str) else "",
            extra=payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "fromNode": self.from_node, "toNode": self.to_node}
        data.update(self.extra)
        if self.label:
            data["label"] = self.label
        return data


@dataclass
class Graph:
    """A loaded graph document. ``graph_id`` is its store-relative path."""

    graph_id: str
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, graph_id: str, data: Mapping[str, Any]) -> "Graph":
        if not isinstance(data, Mapping):
            raise GraphFormatError(f"{graph_id}: graph data must be a JSON object.")
        raw_nodes = data.get("nodes") or []
        raw_edges = data.get("edges") or []
        if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
            raise GraphFormatError(f"{graph_id}: 'nodes' and 'edges' must be lists.")
        for entry in raw_nodes + raw_edges:
            if not isinstance(entry, Mapping):
                raise GraphFormatError(f"{graph_id}: node and edge entries must be JSON objects.")
        try:
            nodes = [Node.from_dict(entry) for entry in raw_nodes]
            edges = [Edge.from_dict(entry) for entry in raw_edges]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise GraphFormatError(f"{graph_id}: malformed node or edge entry ({exc}).") from exc
        extra = {key: value for key, value in data.items() if key not in ("nodes", "edges")}
        return cls(graph_id=graph_id, nodes=nodes, edges=edges, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data["nodes"] = [node.to_dict() for node in self.nodes]
        data["edges"] = [edge.to_dict() for edge in self.edges]
        return data

    def get_node(self, node_id: Optional[str]) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def require_node(self, node_id: str) -> Node:
        node = self.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(f"Node {node_id} not found in {self.graph_id}")
        return node

    def outgoing(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.from_node == node_id]


def find_start_node(graph: Graph, marker: Optional[str]) -> Optional[Node]:
    """Resolve where playback begins.

    With a marker configured, the first text node containing it (case-insensitive)
    is located and the target of its first outgoing edge is returned; the marker
    card itself is never played. Without a marker, the first text node with no
    incoming edges wins, then simply the first node.
    """
    start_text = (marker or "").strip().lower()
    if not start_text:
        with_incoming = {edge.to_node for edge in graph.edges}
        for node in graph.nodes:
            if node.kind == "text" and node.id not in with_incoming:
                return node
        return graph.nodes[0] if graph.nodes else None

    marker_node = next(
        (
            node
            for node in graph.nodes
            if node.kind == "text" and isinstance(node.text, str) and start_text in node.text.lower()
        ),
        None,
    )
    if marker_node is None:
        return None
    edges = graph.outgoing(marker_node.id)
    if not edges:
        return None
    return graph.get_node(edges[0].to_node)
