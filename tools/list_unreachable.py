#!/usr/bin/env python3
"""List nodes that can never be reached from a graph's start node."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set

REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from canvas_player.graph import Graph, GraphLoadError, find_start_node
from canvas_player.settings import Settings
from canvas_player.storage import FileGraphStore


def build_adjacency(graph: Graph) -> Dict[str, List[str]]:
    adjacency: Dict[str, List[str]] = {node.id: [] for node in graph.nodes}
    for edge in graph.edges:
        if edge.from_node in adjacency and edge.to_node in adjacency:
            adjacency[edge.from_node].append(edge.to_node)
    return adjacency


def traverse_from(start_node: str, adjacency: Dict[str, List[str]]) -> Set[str]:
    if start_node not in adjacency:
        return set()
    visited: Set[str] = set()
    stack = [start_node]
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        stack.extend(adjacency.get(current, []))
    return visited


def find_unreachable(graph: Graph, start_text: Optional[str]) -> List[str]:
    """Nodes outside the start node's reach; the marker card and groups are ignored."""
    adjacency = build_adjacency(graph)
    start = find_start_node(graph, start_text)
    reached = traverse_from(start.id, adjacency) if start is not None else set()
    marker = (start_text or "").strip().lower()
    ignored = {
        node.id
        for node in graph.nodes
        if node.kind == "group" or (marker and node.kind == "text" and marker in (node.text or "").lower())
    }
    return sorted(set(adjacency) - reached - ignored)


def main(argv: Sequence[str]) -> int:
    parser = argparse.ArgumentParser(description="List unreachable nodes in a canvas graph.")
    parser.add_argument("graph_path", help="Path to the .canvas file.")
    parser.add_argument("--start-text", default=Settings().start_text)
    args = parser.parse_args(argv)

    graph_path = Path(args.graph_path).resolve()
    store = FileGraphStore(graph_path.parent)
    try:
        graph = store.load_graph(graph_path.name)
    except GraphLoadError as exc:
        print(f"[!] {exc}")
        return 1

    unreachable = find_unreachable(graph, args.start_text)
    reachable = len(graph.nodes) - len(unreachable)
    print(f"Graph file: {graph_path}")
    print(f"Total nodes: {len(graph.nodes)}")
    print(f"Reachable or ignored nodes: {reachable}")
    if unreachable:
        print("Unreachable nodes:")
        for node_id in unreachable:
            print(f"  - {node_id}")
    else:
        print("All nodes reachable from the start node.")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
