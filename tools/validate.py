#!/usr/bin/env python3
"""Validate a canvas graph for common authoring mistakes."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from canvas_player.graph import Graph
from canvas_player.schema import validate_graph_data, validate_graph_links
from canvas_player.settings import Settings
from canvas_player.storage import FileGraphStore
from tools.softlock import analyze_directives


def load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate a canvas graph document.")
    parser.add_argument("graph_path", help="Path to the .canvas file.")
    parser.add_argument(
        "--start-text",
        default=Settings().start_text,
        help="Start marker text (empty string for the first node without incoming edges).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str]) -> None:
    args = parse_args(argv[1:])
    graph_path = Path(args.graph_path).resolve()
    try:
        data = load_json(graph_path)
    except (OSError, json.JSONDecodeError) as exc:
        print(f"Failed to read JSON from {graph_path}: {exc}")
        sys.exit(1)

    errors = validate_graph_data(data)
    if not errors:
        store = FileGraphStore(graph_path.parent)
        graph = Graph.from_dict(graph_path.name, data)
        errors = validate_graph_links(store, graph, args.start_text)
    if errors:
        print("Validation failed (path: message):")
        for err in errors:
            print(f" - {err}")
        sys.exit(1)

    warnings = analyze_directives(graph, args.start_text)
    if warnings:
        print("Directive warnings (path: message):")
        for warning in warnings:
            print(f" - {warning}")

    print(f"Validation passed for {graph_path}.")


if __name__ == "__main__":
    main(sys.argv)
