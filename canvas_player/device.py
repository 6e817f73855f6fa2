"""Stable per-device identity used for session ownership."""

from __future__ import annotations

import secrets
import sys
import time
from pathlib import Path
from typing import Optional

from .platform import IS_WEB, default_data_dir, get_local_storage

DEVICE_ID_FILENAME = "device_id"
_WEB_STORAGE_KEY = "canvas-player-device-id"


def generate_device_id() -> str:
    return f"device-{int(time.time() * 1000)}-{secrets.token_hex(6)}"


def get_or_create_device_id(base_dir: Optional[Path | str] = None) -> str:
    """Return this machine's device id, creating it on first use.

    The id is kept in local, non-synced storage: ``localStorage`` in web
    builds, otherwise a file under the per-machine data directory.
    """
    local_storage = get_local_storage() if IS_WEB else None
    if local_storage is not None:
        existing = local_storage.getItem(_WEB_STORAGE_KEY)
        if existing:
            return str(existing)
        device_id = generate_device_id()
        local_storage.setItem(_WEB_STORAGE_KEY, device_id)
        return device_id

    path = Path(base_dir) if base_dir is not None else default_data_dir()
    id_path = path / DEVICE_ID_FILENAME
    try:
        existing = id_path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        existing = ""
    except OSError as exc:
        print(f"[Device] Failed to read device id: {exc}", file=sys.stderr)
        existing = ""
    if existing:
        return existing

    device_id = generate_device_id()
    try:
        path.mkdir(parents=True, exist_ok=True)
        id_path.write_text(device_id + "\n", encoding="utf-8")
    except OSError as exc:
        print(f"[Device] Failed to persist device id: {exc}", file=sys.stderr)
    return device_id
