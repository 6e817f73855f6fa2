import json
from pathlib import Path

import pytest

from canvas_player.graph import (
    Graph,
    GraphFormatError,
    GraphNotFoundError,
    Node,
    NodeNotFoundError,
    find_start_node,
)
from canvas_player.storage import FileGraphStore


def text(node_id: str, body: str = "") -> dict:
    return {"id": node_id, "type": "text", "text": body or node_id}


def edge(edge_id: str, source: str, target: str, label: str = "") -> dict:
    return {"id": edge_id, "fromNode": source, "toNode": target, "label": label}


def test_file_card_pointing_at_canvas_is_a_nested_graph() -> None:
    node = Node.from_dict({"id": "n", "type": "file", "file": "sub/inner.canvas", "x": 10})
    assert node.kind == "subGraphRef"
    assert node.graph_ref == "sub/inner.canvas"
    assert node.is_sub_graph
    assert node.to_dict()["x"] == 10


def test_file_card_pointing_at_note_is_a_file_node() -> None:
    node = Node.from_dict({"id": "n", "type": "file", "file": "notes/a.md"})
    assert node.kind == "file"
    assert node.file == "notes/a.md"
    assert not node.is_sub_graph


def test_graph_from_dict_rejects_bad_shapes() -> None:
    with pytest.raises(GraphFormatError):
        Graph.from_dict("g.canvas", {"nodes": "nope"})
    with pytest.raises(GraphFormatError):
        Graph.from_dict("g.canvas", {"nodes": [{"text": "no id"}]})


@pytest.mark.parametrize(
    "data",
    [
        {"nodes": ["abc"], "edges": []},
        {"nodes": [text("a")], "edges": [42]},
        {"nodes": [text("a")], "edges": [["id", "e1"]]},
    ],
)
def test_graph_from_dict_rejects_entries_that_are_not_objects(data) -> None:
    with pytest.raises(GraphFormatError):
        Graph.from_dict("g.canvas", data)


def test_require_node_raises_node_not_found() -> None:
    graph = Graph.from_dict("g.canvas", {"nodes": [text("a")], "edges": []})
    with pytest.raises(NodeNotFoundError):
        graph.require_node("b")


def test_find_start_node_skips_marker_card() -> None:
    graph = Graph.from_dict(
        "g.canvas",
        {
            "nodes": [text("a"), text("m", "Canvas-Start here"), text("b")],
            "edges": [edge("e1", "m", "b"), edge("e2", "m", "a"), edge("e3", "a", "b")],
        },
    )
    assert find_start_node(graph, "  canvas-start ").id == "b"


def test_find_start_node_without_marker_prefers_node_without_incoming_edges() -> None:
    graph = Graph.from_dict(
        "g.canvas",
        {"nodes": [text("b"), text("a")], "edges": [edge("e1", "a", "b")]},
    )
    assert find_start_node(graph, "").id == "a"


def test_find_start_node_falls_back_to_first_node() -> None:
    graph = Graph.from_dict(
        "g.canvas",
        {"nodes": [text("a"), text("b")], "edges": [edge("e1", "a", "b"), edge("e2", "b", "a")]},
    )
    assert find_start_node(graph, None).id == "a"
    assert find_start_node(Graph("empty.canvas"), None) is None


@pytest.mark.parametrize(
    "edges",
    [
        [],
        [edge("e1", "m", "ghost")],
    ],
)
def test_find_start_node_marker_without_usable_edge(edges) -> None:
    graph = Graph.from_dict("g.canvas", {"nodes": [text("m", "canvas-start"), text("a")], "edges": edges})
    assert find_start_node(graph, "canvas-start") is None


def test_store_load_errors_are_distinguishable(tmp_path: Path) -> None:
    store = FileGraphStore(tmp_path)
    (tmp_path / "broken.canvas").write_text("{not json", encoding="utf-8")
    with pytest.raises(GraphNotFoundError):
        store.load_graph("missing.canvas")
    with pytest.raises(GraphFormatError):
        store.load_graph("broken.canvas")
    with pytest.raises(GraphNotFoundError):
        store.load_graph("../outside.canvas")


def test_store_reports_invalid_utf8_as_format_error(tmp_path: Path) -> None:
    (tmp_path / "bad.canvas").write_bytes(b'{"nodes": [], "note": "\xff"}')
    with pytest.raises(GraphFormatError):
        FileGraphStore(tmp_path).load_graph("bad.canvas")


def test_store_save_keeps_unknown_keys(tmp_path: Path) -> None:
    data = {
        "nodes": [dict(text("a"), x=1, y=2, width=200)],
        "edges": [dict(edge("e1", "a", "a", "Loop"), fromSide="right")],
        "metadata": {"version": "1.0"},
    }
    (tmp_path / "g.canvas").write_text(json.dumps(data), encoding="utf-8")
    store = FileGraphStore(tmp_path)
    graph = store.load_graph("g.canvas")
    store.save_graph(graph)
    saved = json.loads((tmp_path / "g.canvas").read_text(encoding="utf-8"))
    assert saved["metadata"] == {"version": "1.0"}
    assert saved["nodes"][0]["width"] == 200
    assert saved["nodes"][0]["type"] == "text"
    assert "kind" not in saved["nodes"][0]
    assert saved["edges"][0]["fromSide"] == "right"
    assert saved["edges"][0]["label"] == "Loop"


def test_resolve_ref_prefers_the_referencing_folder(tmp_path: Path) -> None:
    (tmp_path / "story").mkdir()
    (tmp_path / "story" / "inner.canvas").write_text("{}", encoding="utf-8")
    (tmp_path / "inner.canvas").write_text("{}", encoding="utf-8")
    (tmp_path / "only-root.canvas").write_text("{}", encoding="utf-8")
    store = FileGraphStore(tmp_path)
    assert store.resolve_ref("inner.canvas", "story/root.canvas") == "story/inner.canvas"
    assert store.resolve_ref("only-root.canvas", "story/root.canvas") == "only-root.canvas"
    assert store.resolve_ref("nowhere.canvas", "story/root.canvas") is None
    assert store.list_graphs() == ["inner.canvas", "only-root.canvas", "story/inner.canvas"]
