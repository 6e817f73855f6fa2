#!/usr/bin/env python3
"""Strip learned node timings from a canvas graph and the notes it links."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from canvas_player.graph import GraphLoadError
from canvas_player.storage import FileGraphStore
from canvas_player.timing_storage import reset_timing_for_graph


def main(argv: Sequence[str]) -> int:
    parser = argparse.ArgumentParser(description="Reset learned timings for one canvas graph.")
    parser.add_argument("graph_path", help="Path to the .canvas file.")
    args = parser.parse_args(argv)

    graph_path = Path(args.graph_path).resolve()
    store = FileGraphStore(graph_path.parent)
    try:
        result = reset_timing_for_graph(store, graph_path.name)
    except (GraphLoadError, OSError) as exc:
        print(f"[!] Failed to reset timing: {exc}")
        return 1

    if not result.graph_changed and not result.documents_changed:
        print(f"No timing data found in {graph_path.name}.")
        return 0
    if result.graph_changed:
        print(f"Cleared timing data in {graph_path.name}.")
    for doc_id in sorted(result.documents_changed):
        print(f"Cleared timing data in linked file {doc_id}.")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
