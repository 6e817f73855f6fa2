#!/usr/bin/env python3
"""Print complexity metrics and the weighted score for canvas graphs."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from canvas_player.complexity import calculate_metrics, compute_score
from canvas_player.graph import GraphLoadError
from canvas_player.settings import SETTINGS_PATH, load_settings
from canvas_player.storage import FileGraphStore


def main(argv: Sequence[str]) -> int:
    parser = argparse.ArgumentParser(description="Report canvas graph complexity.")
    parser.add_argument("graph_paths", nargs="+", help="One or more .canvas files.")
    parser.add_argument("--settings", default=str(SETTINGS_PATH), help="Settings file with complexity weights.")
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of text.")
    args = parser.parse_args(argv)

    weights = load_settings(args.settings).complexity_weights
    report = {}
    failed = False
    for raw_path in args.graph_paths:
        graph_path = Path(raw_path).resolve()
        store = FileGraphStore(graph_path.parent)
        try:
            graph = store.load_graph(graph_path.name)
        except GraphLoadError as exc:
            print(f"[!] {exc}", file=sys.stderr)
            failed = True
            continue
        metrics = calculate_metrics(graph)
        report[str(graph_path)] = {"metrics": metrics.to_dict(), "score": compute_score(metrics, weights)}

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        for name, entry in report.items():
            print(f"{name}: score {entry['score']}")
            for metric, value in entry["metrics"].items():
                shown = f"{value:.2f}" if isinstance(value, float) else str(value)
                print(f"  {metric}: {shown}")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
