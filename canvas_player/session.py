"""Active playback session and its serialized forms."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .graph import Graph, Node
from .logic import VariableState


@dataclass
class StackFrame:
    """Parent position captured when diving into a nested graph."""

    origin_graph: str
    origin_node: str
    saved_state: VariableState
    graph: Optional[Graph] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"graph": self.origin_graph, "node": self.origin_node, "state": dict(self.saved_state)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StackFrame":
        return cls(
            origin_graph=str(data["graph"]),
            origin_node=str(data["node"]),
            saved_state=normalize_state(data.get("state")),
        )


@dataclass
class Session:
    root_graph: str
    graph: Graph
    current_node: Node
    state: VariableState = field(default_factory=dict)
    stack: List[StackFrame] = field(default_factory=list)
    history: List[str] = field(default_factory=list)
    timer_start_ms: Optional[float] = None
    timer_duration_ms: float = 0.0

    @property
    def current_graph(self) -> str:
        return self.graph.graph_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_graph": self.root_graph,
            "current_graph": self.current_graph,
            "current_node": self.current_node.id,
            "state": dict(self.state),
            "stack": [frame.to_dict() for frame in self.stack],
            "history": list(self.history),
            "timer_start_ms": self.timer_start_ms,
            "timer_duration_ms": self.timer_duration_ms,
        }


def normalize_state(raw: Any) -> VariableState:
    if not isinstance(raw, Mapping):
        return {}
    return {str(key): bool(value) for key, value in raw.items()}


@dataclass
class SessionRecord:
    """Graph-free view of a session, as stored in snapshots and resume files."""

    root_graph: str
    current_graph: str
    current_node: str
    state: VariableState = field(default_factory=dict)
    stack: List[StackFrame] = field(default_factory=list)
    history: List[str] = field(default_factory=list)
    timer_start_ms: Optional[float] = None
    timer_duration_ms: float = 0.0

    @classmethod
    def from_session(cls, session: Session) -> "SessionRecord":
        return cls.from_dict(session.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionRecord":
        stack_raw = data.get("stack") or []
        history_raw = data.get("history") or []
        duration = data.get("timer_duration_ms", 0.0)
        try:
            duration = float(duration)
        except (TypeError, ValueError):
            duration = 0.0
        started = data.get("timer_start_ms")
        return cls(
            root_graph=str(data["root_graph"]),
            current_graph=str(data.get("current_graph") or data["root_graph"]),
            current_node=str(data["current_node"]),
            state=normalize_state(data.get("state")),
            stack=[StackFrame.from_dict(entry) for entry in stack_raw if isinstance(entry, Mapping)],
            history=[str(entry) for entry in history_raw if isinstance(entry, str)],
            timer_start_ms=float(started) if isinstance(started, (int, float)) else None,
            timer_duration_ms=duration,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_graph": self.root_graph,
            "current_graph": self.current_graph,
            "current_node": self.current_node,
            "state": dict(self.state),
            "stack": [frame.to_dict() for frame in self.stack],
            "history": list(self.history),
            "timer_start_ms": self.timer_start_ms,
            "timer_duration_ms": self.timer_duration_ms,
        }

    def copy(self) -> "SessionRecord":
        return copy.deepcopy(self)
