"""Player configuration, persisted as JSON next to the package."""

from __future__ import annotations

import json
import sys
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping

from .storage import write_json_atomic

SETTINGS_PATH = Path(__file__).resolve().parent.parent / "settings.json"

DEFAULT_COMPLEXITY_WEIGHTS: Dict[str, float] = {
    "node_count": 4.0,
    "edge_count": 3.1,
    "cyclomatic_complexity": 1.5,
    "branching_factor": 1.0,
    "logic_density": 2.0,
    "variable_count": 3.5,
    "content_volume": 0.10,
}

# (minimum, maximum) for every numeric field.
NUMERIC_BOUNDS: Dict[str, tuple] = {
    "lease_window_seconds": (1.0, 3600.0),
    "write_debounce_ms": (0.0, 10000.0),
    "poll_interval_seconds": (0.1, 600.0),
    "missing_grace_ms": (0.0, 60000.0),
    "timer_tick_seconds": (0.1, 60.0),
}

_TRUE_WORDS = frozenset({"true", "1", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "0", "no", "off"})


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        return default
    if value is None:
        return default
    return bool(value)


def _coerce_float(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _merge_weights(raw: Any) -> Dict[str, float]:
    weights = dict(DEFAULT_COMPLEXITY_WEIGHTS)
    if not isinstance(raw, Mapping):
        return weights
    for key, value in raw.items():
        if key in weights:
            weights[key] = _coerce_float(value, weights[key])
    return weights


@dataclass
class Settings:
    """Start marker, timeboxing and multi-device timing knobs."""

    start_text: str = "canvas-start"
    enable_timeboxing: bool = True
    show_complexity_score: bool = True
    complexity_weights: Dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_COMPLEXITY_WEIGHTS)
    )
    lease_window_seconds: float = 60.0
    write_debounce_ms: float = 300.0
    poll_interval_seconds: float = 2.0
    missing_grace_ms: float = 1000.0
    timer_tick_seconds: float = 1.0

    def clamp(self) -> "Settings":
        self.start_text = str(self.start_text or "").strip()
        self.enable_timeboxing = bool(self.enable_timeboxing)
        self.show_complexity_score = bool(self.show_complexity_score)
        self.complexity_weights = _merge_weights(self.complexity_weights)
        for name, (low, high) in NUMERIC_BOUNDS.items():
            value = float(getattr(self, name))
            setattr(self, name, max(low, min(high, value)))
        return self

    def copy(self) -> "Settings":
        return Settings.from_dict(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "Settings":
        if not isinstance(data, Mapping):
            return cls()
        defaults = cls()
        values: Dict[str, Any] = {}
        for item in fields(cls):
            default = getattr(defaults, item.name)
            raw = data.get(item.name, default)
            if item.name == "start_text":
                values[item.name] = raw if isinstance(raw, str) else default
            elif item.name == "complexity_weights":
                values[item.name] = _merge_weights(raw)
            elif isinstance(default, bool):
                values[item.name] = _coerce_bool(raw, default)
            else:
                values[item.name] = _coerce_float(raw, default)
        return cls(**values).clamp()


def load_settings(path: Path | str = SETTINGS_PATH) -> Settings:
    """Read settings; a missing or unreadable file yields defaults."""
    path = Path(path)
    if not path.exists():
        return Settings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        print(f"[Settings] Ignoring unreadable settings file: {exc}", file=sys.stderr)
        return Settings()
    return Settings.from_dict(data)


def save_settings(settings: Settings, path: Path | str = SETTINGS_PATH) -> Settings:
    sanitized = settings.copy()
    try:
        write_json_atomic(path, sanitized.to_dict())
    except OSError as exc:
        print(f"[Settings] Failed to save settings: {exc}", file=sys.stderr)
    return sanitized
