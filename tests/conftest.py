import json
from pathlib import Path

import pytest


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def write_canvas(tmp_path: Path):
    def _write(name: str, nodes, edges=()) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"nodes": list(nodes), "edges": list(edges)}), encoding="utf-8")
        return path

    return _write
