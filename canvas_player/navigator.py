"""Graph navigation state machine.

The navigator owns one :class:`Session` at a time and answers every action
with a :class:`Scene`, a plain description of what the reader should see
next. Load failures (missing graphs, missing nodes, unresolvable start
nodes) are reported through ``Scene.error`` instead of being raised, so a
presenter can offer a restart without guarding each call.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Union

from .graph import (
    Edge,
    Graph,
    GraphLoadError,
    GraphNotFoundError,
    Node,
    NodeNotFoundError,
    StartNodeNotFoundError,
    find_start_node,
)
from .logic import check_conditions, get_missing_variables, parse_label, update_state
from .resume import restore_stack, validate_resume
from .session import Session, SessionRecord, StackFrame
from .settings import Settings
from .timing import NodeTimer, TimerDisplay, TimingOutcome, now_ms
from .timing_storage import strip_timing_comment


class NavigatorStatus(str, Enum):
    IDLE = "idle"
    NAVIGATING = "navigating"
    AWAITING_INPUT = "awaiting_input"
    RETURN_AVAILABLE = "return_available"
    END_OF_PATH = "end_of_path"
    STOPPED = "stopped"
    FAILED = "failed"


class NavigationError(Exception):
    """Raised when an action is not available in the navigator's current state."""


@dataclass(frozen=True)
class Choice:
    index: int
    text: str
    edge: Edge
    target: Node

    @property
    def enters_sub_graph(self) -> bool:
        return self.target.is_sub_graph


@dataclass(frozen=True)
class Scene:
    status: NavigatorStatus
    graph_id: Optional[str] = None
    node: Optional[Node] = None
    choices: List[Choice] = field(default_factory=list)
    missing_variables: List[str] = field(default_factory=list)
    state: Dict[str, bool] = field(default_factory=dict)
    depth: int = 0
    can_go_back: bool = False
    timer: Optional[TimerDisplay] = None
    outcome: Optional[TimingOutcome] = None
    error: Optional[GraphLoadError] = None
    notice: Optional[str] = None
    read_only: bool = False

    @property
    def text(self) -> str:
        if self.node is None:
            return ""
        if self.node.kind == "file":
            return self.node.file or ""
        return strip_timing_comment(self.node.text or "")[0]


class Presenter(Protocol):
    def render_choices(self, scene: Scene) -> None: ...

    def render_missing_variable_prompt(self, scene: Scene) -> None: ...

    def render_timer(self, display: TimerDisplay) -> None: ...


def render_scene(presenter: Presenter, scene: Scene) -> None:
    """Hand a scene to the presenter capability that matches its status."""
    if scene.timer is not None:
        presenter.render_timer(scene.timer)
    if scene.status is NavigatorStatus.AWAITING_INPUT:
        presenter.render_missing_variable_prompt(scene)
    else:
        presenter.render_choices(scene)


class GraphNavigator:
    """Step through a graph, diving into nested graphs on a frame stack.

    ``tracker`` is an optional :class:`~canvas_player.timing.TimingTracker`;
    ``resume_store`` an optional :class:`~canvas_player.resume.ResumeStore`
    that receives a snapshot on :meth:`stop`.
    """

    def __init__(
        self,
        store,
        settings: Optional[Settings] = None,
        *,
        tracker=None,
        resume_store=None,
        print_func: Callable[[str], None] = print,
    ) -> None:
        self.store = store
        self.settings = settings or Settings()
        self.tracker = tracker
        self.resume_store = resume_store
        self.print = print_func
        self.session: Optional[Session] = None
        self.status = NavigatorStatus.IDLE
        self.last_outcome: Optional[TimingOutcome] = None

    # ---------- Session lifecycle ----------
    def start(self, root_graph: str) -> Scene:
        self._abort_timer()
        try:
            graph = self.store.load_graph(root_graph)
            node = self._start_node(graph)
        except GraphLoadError as exc:
            return self._fail(exc, drop_session=True)
        self.session = Session(root_graph=root_graph, graph=graph, current_node=node)
        self._start_timer()
        return self.scene()

    def play_from_node(self, graph_id: str, node_id: str, *, root_graph: Optional[str] = None) -> Scene:
        self._abort_timer()
        try:
            graph = self.store.load_graph(graph_id)
            node = graph.require_node(node_id)
        except GraphLoadError as exc:
            return self._fail(exc, drop_session=True)
        if node.kind not in ("text", "file"):
            return self._fail(NodeNotFoundError(f"Node {node_id} is not playable"), drop_session=True)
        self.session = Session(root_graph=root_graph or graph_id, graph=graph, current_node=node)
        self._start_timer()
        return self.scene()

    def restore(self, record: SessionRecord, *, start_timer: bool = True) -> Scene:
        """Rebuild a live session from its id-only form."""
        try:
            graph = self.store.load_graph(record.current_graph)
            node = graph.require_node(record.current_node)
            stack = restore_stack(self.store, record.stack)
        except GraphLoadError as exc:
            return self._fail(exc, drop_session=True)
        self._abort_timer()
        self.session = Session(
            root_graph=record.root_graph,
            graph=graph,
            current_node=node,
            state=dict(record.state),
            stack=stack,
            history=[node_id for node_id in record.history if graph.get_node(node_id) is not None],
            timer_start_ms=record.timer_start_ms,
            timer_duration_ms=record.timer_duration_ms,
        )
        if start_timer:
            self._start_timer(started_at_ms=record.timer_start_ms, duration_ms=record.timer_duration_ms)
        return self.scene()

    def resume(self, root_graph: str) -> Scene:
        record = self.resume_store.get(root_graph) if self.resume_store is not None else None
        if record is None:
            return self.start(root_graph)

        problem = validate_resume(self.store, record)
        if problem is None:
            scene = self.restore(record)
            if scene.error is None:
                return scene
            problem = str(scene.error)

        notice = f"Saved position is no longer valid ({problem}); starting from the beginning."
        self.print(f"[Resume] {notice}")
        self.resume_store.clear(root_graph)
        return replace(self.start(root_graph), notice=notice)

    def stop(self) -> Scene:
        session = self.session
        if session is not None and self.resume_store is not None:
            try:
                self.resume_store.save(SessionRecord.from_session(session))
            except OSError as exc:
                print(f"[Resume] Failed to save resume snapshot: {exc}", file=sys.stderr)
        self._abort_timer()
        self.session = None
        self.status = NavigatorStatus.STOPPED
        return Scene(NavigatorStatus.STOPPED)

    def discard(self) -> Scene:
        """Drop the session without writing a resume snapshot."""
        self._abort_timer()
        self.session = None
        self.status = NavigatorStatus.STOPPED
        return Scene(NavigatorStatus.STOPPED)

    def ensure_timer(self) -> None:
        """Start timing the current node unless a timer is already running.

        A timer recorded on the session (mirrored from another device) keeps
        its original start time.
        """
        session = self.session
        if session is None or (self.tracker is not None and self.tracker.display() is not None):
            return
        self._start_timer(started_at_ms=session.timer_start_ms, duration_ms=session.timer_duration_ms)

    def record(self) -> Optional[SessionRecord]:
        if self.session is None:
            return None
        return SessionRecord.from_session(self.session)

    # ---------- Stepping ----------
    def scene(self) -> Scene:
        session = self.session
        if session is None:
            status = NavigatorStatus.STOPPED if self.status is NavigatorStatus.STOPPED else NavigatorStatus.IDLE
            return Scene(status)

        node = session.current_node
        parsed = [(edge, parse_label(edge.label)) for edge in session.graph.outgoing(node.id)]

        missing: List[str] = []
        for _, label in parsed:
            for name in get_missing_variables(label, session.state):
                if name not in missing:
                    missing.append(name)
        if missing:
            return self._scene(NavigatorStatus.AWAITING_INPUT, missing_variables=missing)

        choices: List[Choice] = []
        for edge, label in parsed:
            if not check_conditions(label, session.state):
                continue
            target = session.graph.get_node(edge.to_node)
            if target is None:
                continue
            choices.append(Choice(len(choices), label.display_text, edge, target))

        if choices:
            return self._scene(NavigatorStatus.NAVIGATING, choices=choices)
        if session.stack:
            return self._scene(NavigatorStatus.RETURN_AVAILABLE)
        return self._scene(NavigatorStatus.END_OF_PATH)

    def set_variable(self, name: str, value: bool) -> Scene:
        session = self._require_session()
        session.state[str(name)] = bool(value)
        return self.scene()

    def continue_(self) -> Scene:
        """Default every still-missing variable to False and step again."""
        scene = self.scene()
        if scene.status is NavigatorStatus.AWAITING_INPUT:
            for name in scene.missing_variables:
                self.session.state.setdefault(name, False)
        return self.scene()

    # ---------- Actions ----------
    def choose(self, choice: Union[Choice, int]) -> Scene:
        session = self._require_session()
        scene = self.scene()
        if scene.status is not NavigatorStatus.NAVIGATING:
            raise NavigationError(f"No choices available while {scene.status.value}.")
        selected = self._match_choice(scene.choices, choice)

        self.last_outcome = self._finish_timer()
        state_before = dict(session.state)
        update_state(parse_label(selected.edge.label), session.state)
        session.history.append(session.current_node.id)

        if selected.enters_sub_graph:
            return self._dive(selected.target, state_before)

        session.current_node = selected.target
        self._start_timer()
        return self._with_outcome(self.scene())

    def back(self) -> Scene:
        session = self._require_session()
        if not session.history:
            raise NavigationError("Nothing to go back to.")
        self._abort_timer()
        previous_id = session.history.pop()
        previous = session.graph.get_node(previous_id)
        if previous is None:
            return self._fail(NodeNotFoundError(f"Node {previous_id} not found in {session.current_graph}"))
        session.current_node = previous
        self._start_timer()
        return self.scene()

    def return_to_parent(self) -> Scene:
        session = self._require_session()
        if not session.stack:
            return self.stop()

        frame = session.stack[-1]
        try:
            graph = frame.graph or self.store.load_graph(frame.origin_graph)
            node = graph.require_node(frame.origin_node)
        except GraphLoadError as exc:
            return self._fail(exc)

        self.last_outcome = self._finish_timer()
        session.stack.pop()
        session.graph = graph
        session.current_node = node
        session.state = dict(frame.saved_state)
        session.history.clear()
        self._start_timer()
        return self._with_outcome(self.scene())

    def end_path(self) -> Scene:
        scene = self.scene()
        if scene.status is not NavigatorStatus.END_OF_PATH:
            raise NavigationError(f"Path has not ended (status {scene.status.value}).")
        outcome = self._finish_timer()
        self.last_outcome = outcome
        return replace(self.stop(), outcome=outcome)

    # ---------- Internal helpers ----------
    def _start_node(self, graph: Graph) -> Node:
        node = find_start_node(graph, self.settings.start_text)
        if node is None:
            raise StartNodeNotFoundError(f"No start node found in {graph.graph_id}")
        return node

    def _dive(self, target: Node, state_before: Dict[str, bool]) -> Scene:
        session = self.session
        parent_history = list(session.history[:-1])
        frame = StackFrame(session.current_graph, target.id, dict(session.state), session.graph)
        session.stack.append(frame)
        try:
            graph_id = self.store.resolve_ref(target.graph_ref, session.current_graph)
            if graph_id is None:
                raise GraphNotFoundError(f"Nested canvas not found: {target.graph_ref}")
            graph = self.store.load_graph(graph_id)
            start = self._start_node(graph)
        except GraphLoadError as exc:
            session.stack.pop()
            session.state = state_before
            session.history = parent_history
            self.print(f"[!] Could not enter {target.graph_ref}: {exc}")
            self._start_timer()
            return self._fail(exc)

        session.graph = graph
        session.current_node = start
        session.state = {}
        session.history = []
        self._start_timer()
        return self._with_outcome(self.scene())

    def _match_choice(self, choices: List[Choice], choice: Union[Choice, int]) -> Choice:
        if isinstance(choice, Choice):
            for candidate in choices:
                if candidate.edge.id == choice.edge.id:
                    return candidate
            raise NavigationError(f"Choice {choice.edge.id} is not available.")
        if not 0 <= choice < len(choices):
            raise NavigationError(f"Pick a choice between 0 and {len(choices) - 1}.")
        return choices[choice]

    def _require_session(self) -> Session:
        if self.session is None:
            raise NavigationError("No active session.")
        return self.session

    def _scene(self, status: NavigatorStatus, **kwargs) -> Scene:
        session = self.session
        self.status = status
        display = self.tracker.display() if self.tracker is not None else None
        if display is None and session.timer_start_ms is not None:
            clock = self.tracker.clock if self.tracker is not None else now_ms
            mirrored = NodeTimer(session.timer_duration_ms, clock=clock, started_at_ms=session.timer_start_ms)
            display = mirrored.display()
        return Scene(
            status,
            graph_id=session.current_graph,
            node=session.current_node,
            state=dict(session.state),
            depth=len(session.stack),
            can_go_back=bool(session.history),
            timer=display,
            **kwargs,
        )

    def _fail(self, error: GraphLoadError, *, drop_session: bool = False) -> Scene:
        if drop_session:
            self._abort_timer()
            self.session = None
        if self.session is None:
            self.status = NavigatorStatus.FAILED
            return Scene(NavigatorStatus.FAILED, error=error)
        scene = self.scene()
        self.status = NavigatorStatus.FAILED
        return replace(scene, status=NavigatorStatus.FAILED, error=error)

    def _with_outcome(self, scene: Scene) -> Scene:
        return replace(scene, outcome=self.last_outcome)

    def _timing_active(self) -> bool:
        return self.tracker is not None and self.settings.enable_timeboxing

    def _start_timer(self, *, started_at_ms: Optional[float] = None, duration_ms: Optional[float] = None) -> None:
        session = self.session
        if not self._timing_active() or session is None:
            return
        if started_at_ms is None:
            duration_ms = None
        timer = self.tracker.start(
            session.graph, session.current_node, started_at_ms=started_at_ms, duration_ms=duration_ms
        )
        if timer is not None:
            session.timer_start_ms = timer.started_at_ms
            session.timer_duration_ms = timer.duration_ms

    def _clear_timer_fields(self) -> None:
        if self.session is not None:
            self.session.timer_start_ms = None
            self.session.timer_duration_ms = 0.0

    def _finish_timer(self) -> Optional[TimingOutcome]:
        if not self._timing_active() or self.session is None:
            return None
        try:
            outcome = self.tracker.finish(self.session.graph, self.session.current_node)
        except (GraphLoadError, OSError) as exc:
            self.print(f"[Timing] Failed to record timing: {exc}")
            return None
        finally:
            self._clear_timer_fields()
        if outcome is not None and outcome.message:
            self.print(f"[Timing] {outcome.message}")
        return outcome

    def _abort_timer(self) -> None:
        if self.tracker is not None:
            self.tracker.abort()
        self._clear_timer_fields()
