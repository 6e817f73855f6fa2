"""Structural validation for graph documents."""

from __future__ import annotations

import json
from collections import Counter
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .graph import GRAPH_SUFFIX, NODE_KINDS, Graph, GraphLoadError, find_start_node


def path(*parts: object) -> str:
    path_str = ""
    for part in parts:
        if isinstance(part, int):
            path_str = f"{path_str}[{part}]"
            continue
        if not isinstance(part, str):
            part = str(part)
        if part.isidentifier():
            path_str = f"{path_str}.{part}" if path_str else part
        else:
            path_str = f"{path_str}[{json.dumps(part)}]"
    return path_str


def format_validation_message(path_str: str, context: str, message: str) -> str:
    if context:
        return f"{path_str}: {context}: {message}"
    return f"{path_str}: {message}"


def is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


class ValidationContext:
    """Utility container for accumulating validation errors."""

    def __init__(self) -> None:
        self.errors: List[str] = []

    def add(self, context: str, path_str: str, message: str) -> None:
        self.errors.append(format_validation_message(path_str, context, message))

    def extend(self, messages: Iterable[str]) -> None:
        self.errors.extend(messages)

    def ok(self) -> bool:
        return not self.errors


def _validate_node(node: Any, index: int, ctx: ValidationContext) -> Optional[str]:
    node_path = ("nodes", index)
    if not isinstance(node, Mapping):
        ctx.add(f"Node {index}", path(*node_path), "must be an object.")
        return None
    node_id = node.get("id")
    if not is_non_empty_str(node_id):
        ctx.add(f"Node {index}", path(*node_path, "id"), "requires a non-empty string 'id'.")
        return None
    context = f"Node '{node_id}'"

    kind = node.get("kind")
    if kind is not None and kind not in NODE_KINDS:
        ctx.add(context, path(*node_path, "kind"), f"unsupported kind '{kind}'.")
    for key in ("text", "type", "file", "graphRef"):
        value = node.get(key)
        if value is not None and not isinstance(value, str):
            ctx.add(context, path(*node_path, key), f"'{key}' must be a string if present.")
    if kind == "subGraphRef" and not is_non_empty_str(node.get("graphRef")):
        ctx.add(context, path(*node_path, "graphRef"), "nested graph nodes require a 'graphRef'.")
    return node_id


def validate_graph_data(data: Any) -> List[str]:
    """Validate a raw graph document; returns ``path: message`` strings."""
    ctx = ValidationContext()
    if not isinstance(data, Mapping):
        ctx.add("Graph data", "$", "must be a JSON object.")
        return ctx.errors

    nodes = data.get("nodes")
    if not isinstance(nodes, Sequence) or isinstance(nodes, (str, bytes)):
        ctx.add("Graph data", path("nodes"), "must include a 'nodes' list.")
        nodes = []
    edges = data.get("edges", [])
    if not isinstance(edges, Sequence) or isinstance(edges, (str, bytes)):
        ctx.add("Graph data", path("edges"), "'edges' must be a list if present.")
        edges = []

    node_ids: List[str] = []
    for index, node in enumerate(nodes):
        node_id = _validate_node(node, index, ctx)
        if node_id is not None:
            node_ids.append(node_id)
    duplicates = [node_id for node_id, count in Counter(node_ids).items() if count > 1]
    if duplicates:
        ctx.add("Nodes", path("nodes"), f"duplicate node IDs detected: {', '.join(sorted(duplicates))}.")
    known = set(node_ids)

    edge_ids: List[str] = []
    for index, edge in enumerate(edges):
        edge_path = ("edges", index)
        if not isinstance(edge, Mapping):
            ctx.add(f"Edge {index}", path(*edge_path), "must be an object.")
            continue
        edge_id = edge.get("id")
        if not is_non_empty_str(edge_id):
            ctx.add(f"Edge {index}", path(*edge_path, "id"), "requires a non-empty string 'id'.")
        else:
            edge_ids.append(edge_id)
        context = f"Edge '{edge_id}'" if is_non_empty_str(edge_id) else f"Edge {index}"
        for key in ("fromNode", "toNode"):
            ref = edge.get(key)
            if not is_non_empty_str(ref):
                ctx.add(context, path(*edge_path, key), f"requires a non-empty '{key}'.")
            elif ref not in known:
                ctx.add(context, path(*edge_path, key), f"references unknown node '{ref}'.")
        label = edge.get("label")
        if label is not None and not isinstance(label, str):
            ctx.add(context, path(*edge_path, "label"), "'label' must be a string if present.")

    duplicate_edges = [edge_id for edge_id, count in Counter(edge_ids).items() if count > 1]
    if duplicate_edges:
        ctx.add("Edges", path("edges"), f"duplicate edge IDs detected: {', '.join(sorted(duplicate_edges))}.")
    return ctx.errors


def validate_graph_links(store, graph: Graph, start_text: Optional[str] = None) -> List[str]:
    """Check what only the store can answer: nested graph refs and the start node."""
    ctx = ValidationContext()
    for index, node in enumerate(graph.nodes):
        if not node.is_sub_graph:
            continue
        context = f"Node '{node.id}'"
        resolved = store.resolve_ref(node.graph_ref, graph.graph_id)
        if resolved is None:
            ctx.add(context, path("nodes", index), f"nested graph '{node.graph_ref}' not found.")
            continue
        try:
            store.load_graph(resolved)
        except GraphLoadError as exc:
            ctx.add(context, path("nodes", index), f"nested graph failed to load ({exc}).")
        if not resolved.endswith(GRAPH_SUFFIX):
            ctx.add(context, path("nodes", index), f"nested graph '{resolved}' is not a {GRAPH_SUFFIX} file.")

    if find_start_node(graph, start_text) is None:
        marker = f"marker '{start_text}'" if start_text else "no marker"
        ctx.add("Graph data", path("nodes"), f"no start node could be resolved ({marker}).")
    return ctx.errors
