"""Per-node timing statistics and the node timer."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .rewards import calculate_points, points_message

MAX_HISTORY = 5
SMOOTHING_ALPHA = 0.7
CLAMP_MIN_RATIO = 0.5
CLAMP_MAX_RATIO = 1.75

Clock = Callable[[], float]


def now_ms() -> float:
    return time.time() * 1000.0


class TimerStateError(Exception):
    """Raised when a timer is finished or aborted more than once."""


@dataclass
class TimingRecord:
    avg_ms: float
    samples: int
    history_ms: List[float] = field(default_factory=list)

    def to_marker(self) -> Dict[str, float]:
        """Persisted form: only the average and sample count survive."""
        return {"avgMs": self.avg_ms, "samples": self.samples}


def to_robust(record: TimingRecord) -> TimingRecord:
    """Give a persisted record without history a one-sample window."""
    if record.history_ms:
        return record
    history = [record.avg_ms] if record.samples > 0 else []
    return TimingRecord(record.avg_ms, record.samples, history)


def update_robust_average(existing: Optional[TimingRecord], elapsed_ms: float) -> TimingRecord:
    """Fold a completion time into a record.

    Samples are clamped to [0.5, 1.75] x the current average before they enter
    the five-sample window, the window's centre is a trimmed mean once it holds
    three or more samples, and the result is smoothed 70/30 against the old
    average.
    """
    if existing is None:
        return TimingRecord(elapsed_ms, 1, [elapsed_ms])

    if existing.avg_ms > 0:
        clamped = max(
            existing.avg_ms * CLAMP_MIN_RATIO,
            min(existing.avg_ms * CLAMP_MAX_RATIO, elapsed_ms),
        )
    else:
        clamped = elapsed_ms

    history = list(existing.history_ms) + [clamped]
    if len(history) > MAX_HISTORY:
        history = history[-MAX_HISTORY:]

    if len(history) < 3:
        center = sum(history) / len(history)
    else:
        trimmed = sorted(history)[1:-1]
        center = sum(trimmed) / len(trimmed)

    new_avg = SMOOTHING_ALPHA * existing.avg_ms + (1 - SMOOTHING_ALPHA) * center
    return TimingRecord(new_avg, existing.samples + 1, history)


def format_remaining_time(remaining_ms: float) -> str:
    total_seconds = int(abs(remaining_ms) // 1000)
    minutes, seconds = divmod(total_seconds, 60)
    sign = "-" if remaining_ms < 0 else ""
    return f"{sign}{minutes:02d}:{seconds:02d}"


@dataclass(frozen=True)
class TimerDisplay:
    mode: str
    value_ms: float
    text: str
    overrun: bool


class NodeTimer:
    """One timed visit to one node.

    A timer counts down from the learned average when one exists and counts up
    otherwise (the calibration run). Exactly one of :meth:`finish` or
    :meth:`abort` ends it.
    """

    COUNT_DOWN = "countdown"
    COUNT_UP = "countup"

    def __init__(
        self,
        duration_ms: float = 0.0,
        *,
        clock: Clock = now_ms,
        started_at_ms: Optional[float] = None,
    ) -> None:
        self.clock = clock
        self.duration_ms = max(float(duration_ms), 0.0)
        self.mode = self.COUNT_DOWN if self.duration_ms > 0 else self.COUNT_UP
        self.started_at_ms = clock() if started_at_ms is None else float(started_at_ms)
        self.outcome: Optional[str] = None

    @property
    def running(self) -> bool:
        return self.outcome is None

    def elapsed_ms(self) -> float:
        return max(self.clock() - self.started_at_ms, 0.0)

    def remaining_ms(self) -> float:
        return self.duration_ms - self.elapsed_ms()

    def display(self) -> TimerDisplay:
        if self.mode == self.COUNT_DOWN:
            remaining = self.remaining_ms()
            return TimerDisplay(self.mode, remaining, format_remaining_time(remaining), remaining < 0)
        elapsed = self.elapsed_ms()
        return TimerDisplay(self.mode, elapsed, format_remaining_time(elapsed), False)

    def finish(self) -> float:
        if self.outcome is not None:
            raise TimerStateError(f"Timer already {self.outcome}.")
        self.outcome = "finished"
        return self.elapsed_ms()

    def abort(self) -> None:
        if self.outcome is not None:
            raise TimerStateError(f"Timer already {self.outcome}.")
        self.outcome = "aborted"


@dataclass(frozen=True)
class TimingOutcome:
    node_id: str
    elapsed_ms: float
    record: TimingRecord
    points: int
    message: Optional[str] = None


class TimingTracker:
    """Starts, finishes and aborts node timers and learns their averages.

    ``timing_store`` must offer ``load(graph, node)`` and
    ``save(graph, node, record)``; ``ledger`` (optional) receives earned points.
    Rolling history windows are kept in memory only, keyed by (graph, node).
    """

    def __init__(
        self,
        timing_store,
        *,
        ledger=None,
        enabled: bool = True,
        clock: Clock = now_ms,
        print_func: Callable[[str], None] = print,
    ) -> None:
        self.timing_store = timing_store
        self.ledger = ledger
        self.enabled = enabled
        self.clock = clock
        self.print = print_func
        self.timer: Optional[NodeTimer] = None
        self._timer_key: Optional[Tuple[str, str]] = None
        self._history: Dict[Tuple[str, str], List[float]] = {}

    def _lookup(self, graph, node) -> Optional[TimingRecord]:
        record = self.timing_store.load(graph, node)
        if record is None:
            return None
        history = self._history.get((graph.graph_id, node.id))
        if history:
            return TimingRecord(record.avg_ms, record.samples, list(history))
        return to_robust(record)

    def start(
        self,
        graph,
        node,
        *,
        started_at_ms: Optional[float] = None,
        duration_ms: Optional[float] = None,
    ) -> Optional[NodeTimer]:
        """Time ``node``; pass ``started_at_ms``/``duration_ms`` to pick up a timer started elsewhere."""
        if not self.enabled:
            return None
        if self.timer is not None and self.timer.running:
            self.abort()
        if duration_ms is None:
            record = self._lookup(graph, node)
            duration_ms = record.avg_ms if record is not None and record.avg_ms > 0 else 0.0
        self.timer = NodeTimer(duration_ms, clock=self.clock, started_at_ms=started_at_ms)
        self._timer_key = (graph.graph_id, node.id)
        return self.timer

    def finish(self, graph, node) -> Optional[TimingOutcome]:
        timer = self.timer
        if timer is None or not timer.running:
            return None
        if self._timer_key != (graph.graph_id, node.id):
            self.print(f"[Timing] Timer belongs to {self._timer_key}, not {node.id}; discarding.")
            self.abort()
            return None
        elapsed = timer.finish()
        self.timer = None
        self._timer_key = None

        existing = self._lookup(graph, node)
        updated = update_robust_average(existing, elapsed)
        self._history[(graph.graph_id, node.id)] = list(updated.history_ms)
        self.timing_store.save(graph, node, updated)

        points = 0
        message = None
        if existing is not None and existing.avg_ms > 0:
            points = calculate_points(elapsed, existing.avg_ms)
            message = points_message(points, elapsed / existing.avg_ms)
            if points > 0 and self.ledger is not None:
                self.ledger.earn(points, metadata={"nodeId": node.id, "graph": graph.graph_id})
        return TimingOutcome(node.id, elapsed, updated, points, message)

    def abort(self) -> None:
        if self.timer is not None and self.timer.running:
            self.timer.abort()
        self.timer = None
        self._timer_key = None

    def display(self) -> Optional[TimerDisplay]:
        if self.timer is None or not self.timer.running:
            return None
        return self.timer.display()
