"""Directive lint helpers for graph validation."""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Dict, List, Optional, Set

from canvas_player.graph import Graph, find_start_node
from canvas_player.logic import TAG_PATTERN, parse_label
from canvas_player.schema import path


def _edge_paths(graph: Graph) -> Dict[str, str]:
    return {edge.id: path("edges", index) for index, edge in enumerate(graph.edges)}


def analyze_directives(graph: Graph, start_text: Optional[str] = None) -> List[str]:
    """Return soft-lock style warnings for a graph's edge directives.

    Flags variables that are read but never set in this graph, nodes whose
    every exit is conditional, conditional-only chains reachable from the
    start node, and directive tags that failed to parse.
    """
    edge_paths = _edge_paths(graph)
    warnings: List[str] = []

    set_vars: Set[str] = set()
    read_vars: Dict[str, List[str]] = defaultdict(list)
    gated: Dict[str, bool] = {}
    for edge in graph.edges:
        parsed = parse_label(edge.label)
        gated[edge.id] = parsed.expression is not None
        set_vars.update(op.variable for op in parsed.set_ops)
        for name in parsed.dependencies:
            read_vars[name].append(edge_paths[edge.id])
        leftover = TAG_PATTERN.search(parsed.display_text)
        if leftover is not None:
            warnings.append(f"{edge_paths[edge.id]}: malformed directive '{leftover.group(0)}' shown as text.")

    for name in sorted(read_vars):
        if name not in set_vars:
            where = ", ".join(read_vars[name])
            warnings.append(
                f"{path('edges')}: variable '{name}' is read but never set in this graph"
                f" (the reader will be prompted). Read at: {where}."
            )

    for node in graph.nodes:
        exits = graph.outgoing(node.id)
        if exits and all(gated[edge.id] for edge in exits):
            exit_paths = ", ".join(edge_paths[edge.id] for edge in exits)
            warnings.append(f"{path('nodes', node.id)}: all exits are conditional. Edges: {exit_paths}.")

    start = find_start_node(graph, start_text)
    if start is not None:
        visited: Set[str] = set()
        queue = deque([start.id])
        while queue:
            node_id = queue.popleft()
            if node_id in visited:
                continue
            visited.add(node_id)
            for edge in graph.outgoing(node_id):
                if not gated[edge.id]:
                    queue.append(edge.to_node)
        stuck = [
            node_id
            for node_id in sorted(visited)
            if graph.outgoing(node_id) and all(gated[edge.id] for edge in graph.outgoing(node_id))
        ]
        for node_id in stuck:
            warnings.append(
                f"{path('nodes', node_id)}: reachable from start '{start.id}' without conditions"
                " but has no unconditional exit."
            )

    return warnings
