"""Where learned node timings live inside graph documents.

Lookup order for a node:

1. a marker comment inside a text node's own text,
2. a marker comment inside the document a file node links to,
3. a ``canvasPlayerTiming`` property on the node object.

Only ``avgMs`` and ``samples`` are persisted.
"""

from __future__ import annotations

import json
import re
import sys
from dataclasses import dataclass, field
from typing import Callable, Optional, Set, Tuple

from .graph import GRAPH_SUFFIX, Graph, GraphLoadError, Node
from .timing import TimingRecord

TIMING_COMMENT_PATTERN = re.compile(r"<!--\s*canvas-player:timing\s*(\{[^}]+\})\s*-->")
TIMING_PROPERTY = "canvasPlayerTiming"


def _record_from_payload(data) -> Optional[TimingRecord]:
    if not isinstance(data, dict):
        return None
    avg = data.get("avgMs")
    samples = data.get("samples")
    if isinstance(avg, bool) or isinstance(samples, bool):
        return None
    if not isinstance(avg, (int, float)) or not isinstance(samples, (int, float)):
        return None
    return TimingRecord(float(avg), int(samples))


def parse_timing_from_text(text: Optional[str]) -> Optional[TimingRecord]:
    if not text:
        return None
    match = TIMING_COMMENT_PATTERN.search(text)
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        print(f"[Timing] Failed to parse timing comment: {exc}", file=sys.stderr)
        return None
    return _record_from_payload(data)


def format_timing_comment(record: TimingRecord) -> str:
    return f"<!-- canvas-player:timing {json.dumps(record.to_marker(), separators=(',', ':'))} -->"


def update_timing_in_text(text: Optional[str], record: TimingRecord) -> str:
    comment = format_timing_comment(record)
    text = text or ""
    if TIMING_COMMENT_PATTERN.search(text):
        return TIMING_COMMENT_PATTERN.sub(lambda _match: comment, text, count=1)
    if not text.strip():
        return comment
    return f"{text.rstrip()}\n{comment}"


def strip_timing_comment(text: str) -> Tuple[str, bool]:
    if not TIMING_COMMENT_PATTERN.search(text):
        return text, False
    return TIMING_COMMENT_PATTERN.sub("", text).rstrip(), True


def _linked_document(store, graph: Graph, node: Node) -> Optional[str]:
    if node.kind != "file" or not node.file or node.file.endswith(GRAPH_SUFFIX):
        return None
    return store.resolve_ref(node.file, graph.graph_id)


class NodeTimingStore:
    """Load and save :class:`TimingRecord` values through a graph store.

    Text-node and property updates mark the graph dirty and write it back
    immediately; linked documents are rewritten in place.
    """

    def __init__(self, store, *, print_func: Callable[[str], None] = print) -> None:
        self.store = store
        self.print = print_func

    def load(self, graph: Graph, node: Node) -> Optional[TimingRecord]:
        if node.kind == "text" and node.text:
            record = parse_timing_from_text(node.text)
            if record is not None:
                return record

        doc_id = _linked_document(self.store, graph, node)
        if doc_id is not None:
            try:
                record = parse_timing_from_text(self.store.read_document(doc_id))
            except GraphLoadError as exc:
                self.print(f"[Timing] Failed to read linked file for timing: {exc}")
            else:
                if record is not None:
                    return record

        return _record_from_payload(node.extra.get(TIMING_PROPERTY))

    def save(self, graph: Graph, node: Node, record: TimingRecord) -> None:
        if self.apply(graph, node, record):
            self.store.save_graph(graph)

    def apply(self, graph: Graph, node: Node, record: TimingRecord) -> bool:
        """Store ``record``; return True when the graph itself needs saving."""
        if node.kind == "text":
            updated = update_timing_in_text(node.text, record)
            if updated == node.text:
                return False
            node.text = updated
            return True

        doc_id = _linked_document(self.store, graph, node)
        if doc_id is not None:
            try:
                content = self.store.read_document(doc_id)
                updated = update_timing_in_text(content, record)
                if updated != content:
                    self.store.write_document(doc_id, updated)
                return False
            except (GraphLoadError, OSError) as exc:
                self.print(f"[Timing] Failed to save timing to linked file: {exc}")

        node.extra[TIMING_PROPERTY] = record.to_marker()
        return True


@dataclass
class ResetResult:
    graph_changed: bool = False
    documents_changed: Set[str] = field(default_factory=set)


def reset_timing_for_graph(store, graph_id: str, *, print_func: Callable[[str], None] = print) -> ResetResult:
    """Remove learned timings from one graph and the documents it links.

    Nested graphs are left alone; reset them individually.
    """
    result = ResetResult()
    graph = store.load_graph(graph_id)
    needs_save = False
    for node in graph.nodes:
        if node.kind == "text" and node.text is not None:
            cleaned, changed = strip_timing_comment(node.text)
            if changed:
                node.text = cleaned
                needs_save = True

        doc_id = _linked_document(store, graph, node)
        if doc_id is not None:
            try:
                content = store.read_document(doc_id)
            except GraphLoadError as exc:
                print_func(f"[Timing] Failed to reset timing for linked file {node.file}: {exc}")
            else:
                cleaned, changed = strip_timing_comment(content)
                if changed:
                    store.write_document(doc_id, cleaned)
                    result.documents_changed.add(doc_id)

        if TIMING_PROPERTY in node.extra:
            del node.extra[TIMING_PROPERTY]
            needs_save = True

    if needs_save:
        store.save_graph(graph)
        result.graph_changed = True
    return result
