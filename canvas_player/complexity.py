"""Structural complexity metrics for a graph."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Dict, Mapping, Optional

from .graph import Graph
from .logic import has_directives, label_variables, parse_label
from .settings import DEFAULT_COMPLEXITY_WEIGHTS


@dataclass(frozen=True)
class ComplexityMetrics:
    node_count: int
    edge_count: int
    cyclomatic_complexity: int
    branching_factor: float
    logic_density: float
    variable_count: int
    content_volume: int

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def calculate_metrics(graph: Graph) -> ComplexityMetrics:
    node_count = len(graph.nodes)
    edge_count = len(graph.edges)

    logic_edges = 0
    variables = set()
    for edge in graph.edges:
        if has_directives(edge.label):
            logic_edges += 1
        variables.update(label_variables(parse_label(edge.label)))

    return ComplexityMetrics(
        node_count=node_count,
        edge_count=edge_count,
        # One connected component assumed.
        cyclomatic_complexity=max(1, edge_count - node_count + 2),
        branching_factor=edge_count / node_count if node_count else 0.0,
        logic_density=logic_edges / edge_count if edge_count else 0.0,
        variable_count=len(variables),
        content_volume=sum(len(node.text) for node in graph.nodes if node.text),
    )


def compute_score(metrics: ComplexityMetrics, weights: Optional[Mapping[str, float]] = None) -> int:
    """Weighted sum of the metrics; logic density counts in percentage points."""
    merged = dict(DEFAULT_COMPLEXITY_WEIGHTS)
    if weights:
        merged.update(weights)
    score = 0.0
    for name, value in metrics.to_dict().items():
        if name == "logic_density":
            value *= 100
        score += value * merged.get(name, 0.0)
    return int(math.floor(score + 0.5))
