#!/usr/bin/env python3
"""Rewrite edge labels from the flat legacy directive form to the canonical one."""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Sequence, Tuple

REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from canvas_player.graph import Graph, GraphLoadError
from canvas_player.logic import has_directives, upgrade_label
from canvas_player.storage import FileGraphStore


def upgrade_graph(graph: Graph) -> List[Tuple[str, str, str]]:
    """Upgrade labels in place; return ``(edge_id, old, new)`` for each change."""
    changes = []
    for index, edge in enumerate(graph.edges):
        if not has_directives(edge.label):
            continue
        upgraded = upgrade_label(edge.label)
        if upgraded == edge.label:
            continue
        changes.append((edge.id, edge.label, upgraded))
        graph.edges[index] = replace(edge, label=upgraded)
    return changes


def main(argv: Sequence[str]) -> int:
    parser = argparse.ArgumentParser(description="Upgrade legacy directive labels in a canvas graph.")
    parser.add_argument("graph_path", help="Path to the .canvas file.")
    parser.add_argument("--dry-run", action="store_true", help="Show changes without writing them.")
    args = parser.parse_args(argv)

    graph_path = Path(args.graph_path).resolve()
    store = FileGraphStore(graph_path.parent)
    try:
        graph = store.load_graph(graph_path.name)
    except GraphLoadError as exc:
        print(f"[!] {exc}")
        return 1

    changes = upgrade_graph(graph)
    for edge_id, old, new in changes:
        print(f"{edge_id}: {old!r} -> {new!r}")
    if not changes:
        print("No labels needed upgrading.")
        return 0
    if args.dry_run:
        print(f"{len(changes)} label(s) would change (dry run).")
        return 0
    store.save_graph(graph)
    print(f"Upgraded {len(changes)} label(s) in {graph_path.name}.")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
