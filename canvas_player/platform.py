"""Platform helpers for desktop vs web builds."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Optional

IS_WEB = sys.platform == "emscripten"
DATA_DIR_ENV = "CANVAS_PLAYER_HOME"


def get_local_storage() -> Optional[Any]:
    if not IS_WEB:
        return None
    try:
        from js import localStorage  # type: ignore
    except Exception:
        return None
    return localStorage


def default_data_dir() -> Path:
    """Per-machine directory for state that must not sync between devices."""
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return Path(override)
    return Path.home() / ".canvas_player"
