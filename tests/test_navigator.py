import json
from pathlib import Path

import pytest

from canvas_player.economy import Ledger
from canvas_player.graph import GraphFormatError, GraphNotFoundError, StartNodeNotFoundError
from canvas_player.navigator import GraphNavigator, NavigationError, NavigatorStatus
from canvas_player.resume import ResumeStore
from canvas_player.settings import Settings
from canvas_player.storage import FileGraphStore
from canvas_player.timing import TimingRecord, TimingTracker
from canvas_player.timing_storage import NodeTimingStore, format_timing_comment


def text(node_id: str, body: str = "") -> dict:
    return {"id": node_id, "type": "text", "text": body or node_id}


def nested(node_id: str, ref: str) -> dict:
    return {"id": node_id, "type": "file", "file": ref}


def edge(edge_id: str, source: str, target: str, label: str = "") -> dict:
    return {"id": edge_id, "fromNode": source, "toNode": target, "label": label}


def make_navigator(tmp_path: Path, **kwargs) -> GraphNavigator:
    settings = kwargs.pop("settings", Settings(start_text=""))
    messages = kwargs.pop("messages", [])
    return GraphNavigator(FileGraphStore(tmp_path), settings, print_func=messages.append, **kwargs)


def choice_texts(scene) -> list:
    return [choice.text for choice in scene.choices]


@pytest.fixture
def key_door(write_canvas):
    return write_canvas(
        "door.canvas",
        [text("A"), text("B"), text("C")],
        [
            edge("e1", "A", "B", "{set:hasKey=true} Go"),
            edge("e2", "B", "C", "{if:hasKey} Open door"),
        ],
    )


def test_key_and_door_walkthrough(tmp_path: Path, key_door) -> None:
    navigator = make_navigator(tmp_path)
    scene = navigator.start("door.canvas")
    assert scene.status is NavigatorStatus.NAVIGATING
    assert scene.node.id == "A"
    assert choice_texts(scene) == ["Go"]

    scene = navigator.choose(0)
    assert scene.node.id == "B"
    assert scene.state == {"hasKey": True}
    assert choice_texts(scene) == ["Open door"]
    assert scene.choices[0].target.id == "C"

    scene = navigator.choose(scene.choices[0])
    assert scene.node.id == "C"
    assert scene.status is NavigatorStatus.END_OF_PATH


def test_locked_door_without_key_ends_the_path(tmp_path: Path, write_canvas) -> None:
    write_canvas(
        "door.canvas",
        [text("A"), text("B"), text("C")],
        [edge("e1", "A", "B", "Go"), edge("e2", "B", "C", "{if:hasKey} Open door")],
    )
    navigator = make_navigator(tmp_path)
    navigator.start("door.canvas")
    scene = navigator.choose(0)
    assert scene.status is NavigatorStatus.AWAITING_INPUT
    assert scene.missing_variables == ["hasKey"]

    scene = navigator.continue_()
    assert scene.state == {"hasKey": False}
    assert scene.choices == []
    assert scene.status is NavigatorStatus.END_OF_PATH


def test_supplied_variable_unlocks_choice(tmp_path: Path, write_canvas) -> None:
    write_canvas(
        "door.canvas",
        [text("B"), text("C"), text("D")],
        [edge("e1", "B", "C", "{if:hasKey} Open door"), edge("e2", "B", "D", "{if:!hasKey} Knock")],
    )
    navigator = make_navigator(tmp_path)
    scene = navigator.start("door.canvas")
    assert scene.status is NavigatorStatus.AWAITING_INPUT
    scene = navigator.set_variable("hasKey", True)
    assert scene.status is NavigatorStatus.NAVIGATING
    assert choice_texts(scene) == ["Open door"]


def test_two_node_cycle_has_no_step_limit(tmp_path: Path, write_canvas) -> None:
    write_canvas("loop.canvas", [text("A"), text("B")], [edge("e1", "A", "B", "Next"), edge("e2", "B", "A", "Back again")])
    navigator = make_navigator(tmp_path)
    scene = navigator.start("loop.canvas")
    for _ in range(200):
        scene = navigator.choose(0)
        assert scene.status is NavigatorStatus.NAVIGATING
    assert scene.node.id == "A"
    assert len(navigator.session.history) == 200


def test_edges_to_missing_nodes_are_not_offered(tmp_path: Path, write_canvas) -> None:
    write_canvas("g.canvas", [text("A"), text("B")], [edge("e1", "A", "ghost", "Boo"), edge("e2", "A", "B", "Real")])
    navigator = make_navigator(tmp_path)
    assert choice_texts(navigator.start("g.canvas")) == ["Real"]


@pytest.fixture
def dive_graphs(write_canvas):
    write_canvas(
        "root.canvas",
        [text("A"), nested("S", "inner.canvas"), text("D")],
        [edge("e1", "A", "S", "{set:flag=true} Enter"), edge("e2", "S", "D", "Done")],
    )
    write_canvas(
        "inner.canvas",
        [text("N1"), text("N2")],
        [edge("i1", "N1", "N2", "{set:flag=false}{set:inner=true} Go")],
    )


def test_dive_isolates_scope_and_return_restores_it(tmp_path: Path, dive_graphs) -> None:
    navigator = make_navigator(tmp_path)
    navigator.start("root.canvas")
    assert navigator.scene().choices[0].enters_sub_graph

    scene = navigator.choose(0)
    assert scene.graph_id == "inner.canvas"
    assert scene.node.id == "N1"
    assert scene.state == {}
    assert scene.depth == 1
    assert not scene.can_go_back

    scene = navigator.choose(0)
    assert scene.state == {"flag": False, "inner": True}
    assert scene.status is NavigatorStatus.RETURN_AVAILABLE

    scene = navigator.return_to_parent()
    assert scene.graph_id == "root.canvas"
    assert scene.node.id == "S"
    assert scene.state == {"flag": True}
    assert scene.depth == 0
    assert not scene.can_go_back
    assert choice_texts(scene) == ["Done"]


def test_failed_dive_rolls_back(tmp_path: Path, write_canvas) -> None:
    write_canvas(
        "root.canvas",
        [text("A"), nested("S", "missing.canvas")],
        [edge("e1", "A", "S", "{set:flag=true} Enter")],
    )
    messages = []
    navigator = make_navigator(tmp_path, messages=messages)
    navigator.start("root.canvas")

    scene = navigator.choose(0)
    assert scene.status is NavigatorStatus.FAILED
    assert isinstance(scene.error, GraphNotFoundError)
    assert scene.node.id == "A"
    assert scene.state == {}
    assert scene.depth == 0
    assert not scene.can_go_back
    assert any("missing.canvas" in message for message in messages)
    assert navigator.scene().status is NavigatorStatus.NAVIGATING


def test_back_keeps_state(tmp_path: Path, key_door) -> None:
    navigator = make_navigator(tmp_path)
    navigator.start("door.canvas")
    navigator.choose(0)
    scene = navigator.back()
    assert scene.node.id == "A"
    assert scene.state == {"hasKey": True}
    with pytest.raises(NavigationError):
        navigator.back()


def test_invalid_actions_raise_navigation_error(tmp_path: Path, key_door) -> None:
    navigator = make_navigator(tmp_path)
    with pytest.raises(NavigationError):
        navigator.choose(0)
    navigator.start("door.canvas")
    with pytest.raises(NavigationError):
        navigator.choose(5)
    with pytest.raises(NavigationError):
        navigator.end_path()


def test_start_failures_are_reported_not_raised(tmp_path: Path, write_canvas) -> None:
    write_canvas("g.canvas", [text("A")])
    navigator = make_navigator(tmp_path)
    scene = navigator.start("nope.canvas")
    assert scene.status is NavigatorStatus.FAILED
    assert isinstance(scene.error, GraphNotFoundError)

    marked = make_navigator(tmp_path, settings=Settings(start_text="canvas-start"))
    scene = marked.start("g.canvas")
    assert isinstance(scene.error, StartNodeNotFoundError)
    assert marked.session is None


def test_return_with_empty_stack_stops(tmp_path: Path, key_door) -> None:
    navigator = make_navigator(tmp_path)
    navigator.start("door.canvas")
    scene = navigator.return_to_parent()
    assert scene.status is NavigatorStatus.STOPPED
    assert navigator.session is None


def test_stop_and_resume(tmp_path: Path, dive_graphs) -> None:
    resume_store = ResumeStore(tmp_path / "data")
    navigator = make_navigator(tmp_path, resume_store=resume_store)
    navigator.start("root.canvas")
    navigator.choose(0)
    assert navigator.stop().status is NavigatorStatus.STOPPED

    record = resume_store.get("root.canvas")
    assert record.current_graph == "inner.canvas"
    assert record.current_node == "N1"
    assert [frame.to_dict() for frame in record.stack] == [
        {"graph": "root.canvas", "node": "S", "state": {"flag": True}}
    ]

    fresh = make_navigator(tmp_path, resume_store=resume_store)
    scene = fresh.resume("root.canvas")
    assert scene.graph_id == "inner.canvas"
    assert scene.node.id == "N1"
    fresh.choose(0)
    scene = fresh.return_to_parent()
    assert scene.node.id == "S"
    assert scene.state == {"flag": True}


def test_resume_with_stale_snapshot_restarts(tmp_path: Path, key_door) -> None:
    resume_store = ResumeStore(tmp_path / "data")
    messages = []
    navigator = make_navigator(tmp_path, resume_store=resume_store, messages=messages)
    navigator.start("door.canvas")
    navigator.choose(0)
    navigator.stop()

    key_door.write_text(
        json.dumps({"nodes": [text("A"), text("C")], "edges": [edge("e1", "A", "C", "Go")]}),
        encoding="utf-8",
    )
    scene = navigator.resume("door.canvas")
    assert scene.node.id == "A"
    assert "starting from the beginning" in scene.notice
    assert any(message.startswith("[Resume]") for message in messages)
    assert resume_store.get("door.canvas") is None


def test_play_from_node(tmp_path: Path, key_door) -> None:
    navigator = make_navigator(tmp_path)
    scene = navigator.play_from_node("door.canvas", "B")
    assert scene.node.id == "B"
    assert scene.status is NavigatorStatus.AWAITING_INPUT
    assert navigator.play_from_node("door.canvas", "Z").status is NavigatorStatus.FAILED


def test_timed_walkthrough_learns_and_awards_points(tmp_path: Path, key_door, clock) -> None:
    store = FileGraphStore(tmp_path)
    ledger = Ledger("dev", clock=clock)
    tracker = TimingTracker(NodeTimingStore(store), ledger=ledger, clock=clock)
    navigator = GraphNavigator(store, Settings(start_text=""), tracker=tracker, print_func=lambda _msg: None)

    scene = navigator.start("door.canvas")
    assert scene.timer.mode == "countup"
    clock.advance(5000)
    scene = navigator.choose(0)
    assert scene.outcome.points == 0
    assert "canvas-player:timing" in key_door.read_text(encoding="utf-8")
    assert ledger.balance == 0

    navigator.stop()
    scene = navigator.start("door.canvas")
    assert scene.timer.mode == "countdown"
    assert scene.text == "A"
    clock.advance(4650)
    scene = navigator.choose(0)
    assert scene.outcome.points == 12
    assert ledger.balance == 12


def test_back_aborts_timer_without_recording(tmp_path: Path, key_door, clock) -> None:
    store = FileGraphStore(tmp_path)
    tracker = TimingTracker(NodeTimingStore(store), clock=clock)
    navigator = GraphNavigator(store, Settings(start_text=""), tracker=tracker)
    navigator.start("door.canvas")
    navigator.choose(0)
    before = key_door.read_text(encoding="utf-8")
    clock.advance(3000)
    navigator.back()
    graph = store.load_graph("door.canvas")
    assert "canvas-player:timing" not in (graph.get_node("B").text or "")
    assert key_door.read_text(encoding="utf-8") == before


@pytest.mark.parametrize(
    "payload",
    [b'{"nodes": [], "edges": [], "note": "\xff"}', b'{"nodes": ["abc"], "edges": []}'],
)
def test_start_on_malformed_document_fails_cleanly(tmp_path: Path, payload: bytes) -> None:
    (tmp_path / "bad.canvas").write_bytes(payload)
    navigator = make_navigator(tmp_path)
    scene = navigator.start("bad.canvas")
    assert scene.status is NavigatorStatus.FAILED
    assert isinstance(scene.error, GraphFormatError)
    assert navigator.session is None


def test_malformed_nested_graph_keeps_the_parent_position(tmp_path: Path, write_canvas) -> None:
    write_canvas("root.canvas", [text("A"), nested("N", "bad.canvas")], [edge("e1", "A", "N", "Enter")])
    (tmp_path / "bad.canvas").write_bytes(b'{"nodes": [42], "edges": []}')
    navigator = make_navigator(tmp_path)
    navigator.start("root.canvas")
    scene = navigator.choose(0)
    assert scene.status is NavigatorStatus.FAILED
    assert isinstance(scene.error, GraphFormatError)
    assert scene.node.id == "A"
    assert scene.depth == 0


@pytest.fixture
def timed_door(write_canvas):
    marker = format_timing_comment(TimingRecord(60000.0, 3))
    return write_canvas(
        "door.canvas",
        [text("A", f"A\n{marker}"), text("B"), text("C")],
        [edge("e1", "A", "B", "Go"), edge("e2", "B", "C", "On")],
    )


def timed_navigator(tmp_path: Path, clock) -> GraphNavigator:
    store = FileGraphStore(tmp_path)
    tracker = TimingTracker(NodeTimingStore(store), clock=clock, print_func=lambda _msg: None)
    return GraphNavigator(store, Settings(start_text=""), tracker=tracker, print_func=lambda _msg: None)


def test_session_record_carries_the_running_timer(tmp_path: Path, timed_door, clock) -> None:
    navigator = timed_navigator(tmp_path, clock)
    started = clock()
    navigator.start("door.canvas")
    record = navigator.record()
    assert record.timer_start_ms == started
    assert record.timer_duration_ms == 60000.0

    clock.advance(2000)
    navigator.choose(0)
    record = navigator.record()
    assert record.current_node == "B"
    assert record.timer_start_ms == started + 2000
    assert record.timer_duration_ms == 0.0


def test_restore_continues_the_recorded_timer(tmp_path: Path, timed_door, clock) -> None:
    owner = timed_navigator(tmp_path, clock)
    owner.start("door.canvas")
    clock.advance(10000)
    record = owner.record()

    mirror = timed_navigator(tmp_path, clock)
    scene = mirror.restore(record, start_timer=False)
    assert mirror.tracker.timer is None
    assert scene.timer.mode == "countdown"
    assert scene.timer.text == "00:50"

    mirror.ensure_timer()
    assert mirror.tracker.timer.started_at_ms == record.timer_start_ms
    assert mirror.scene().timer.text == "00:50"

    resumed = timed_navigator(tmp_path, clock)
    assert resumed.restore(record).timer.text == "00:50"


def test_back_restarts_the_recorded_timer(tmp_path: Path, timed_door, clock) -> None:
    navigator = timed_navigator(tmp_path, clock)
    navigator.start("door.canvas")
    clock.advance(1000)
    navigator.choose(0)
    clock.advance(3000)
    navigator.back()
    record = navigator.record()
    assert record.current_node == "A"
    assert record.timer_start_ms == clock()
    assert record.timer_duration_ms == pytest.approx(55500.0)


def test_untimed_session_records_no_timer(tmp_path: Path, key_door) -> None:
    navigator = make_navigator(tmp_path)
    navigator.start("door.canvas")
    record = navigator.record()
    assert record.timer_start_ms is None
    assert record.timer_duration_ms == 0.0
    assert navigator.scene().timer is None
