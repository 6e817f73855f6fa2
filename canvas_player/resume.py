"""Single-device "continue where I left off" snapshots."""

from __future__ import annotations

import json
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .graph import GraphLoadError, NodeNotFoundError
from .migrations import ResumeMigrationError, migrate_resume_payload
from .session import SessionRecord, StackFrame
from .storage import write_json_atomic


class ResumeError(Exception):
    """Base class for resume file failures."""


class ResumeCorruptError(ResumeError):
    """Raised when a resume file cannot be parsed or validated."""


class ResumeStore:
    """Resume snapshots keyed by root graph, kept in one JSON file with a backup.

    Only graph ids, node ids and variable states are stored; graphs are
    reloaded on resume.
    """

    SCHEMA_VERSION = 1
    FILENAME = "resume.json"

    def __init__(
        self,
        path: Path | str,
        *,
        print_func: Callable[[str], None] = print,
    ) -> None:
        path = Path(path)
        self.path = path / self.FILENAME if path.suffix != ".json" else path
        self.backup_path = self.path.with_suffix(self.path.suffix + ".bak")
        self.print = print_func

    # ---------- Public API ----------
    def save(self, record: SessionRecord) -> None:
        sessions = self._load_sessions()
        entry = record.to_dict()
        # Live-only fields do not belong in a resume snapshot.
        for key in ("history", "timer_start_ms", "timer_duration_ms"):
            entry.pop(key, None)
        sessions[record.root_graph] = entry
        self._write(sessions)

    def get(self, root_graph: str) -> Optional[SessionRecord]:
        entry = self._load_sessions().get(root_graph)
        if not isinstance(entry, dict):
            return None
        try:
            return SessionRecord.from_dict(entry)
        except (KeyError, TypeError, ValueError) as exc:
            self.print(f"[Resume] Ignoring malformed snapshot for '{root_graph}': {exc}")
            return None

    def clear(self, root_graph: str) -> None:
        sessions = self._load_sessions()
        if root_graph not in sessions:
            return
        del sessions[root_graph]
        self._write(sessions)

    def list_roots(self) -> List[str]:
        return sorted(self._load_sessions())

    # ---------- Internal helpers ----------
    def _load_sessions(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            payload = self._read_payload(self.path)
        except (ResumeCorruptError, ResumeMigrationError) as err:
            self.print(f"[!] Resume file is unusable: {err}")
            if not self.backup_path.exists():
                return {}
            try:
                payload = self._read_payload(self.backup_path)
            except (ResumeError, ResumeMigrationError) as backup_err:
                self.print(f"[!] Resume backup also failed: {backup_err}")
                return {}
            self.print("[Restore] Resume backup applied.")
        except ResumeError as err:
            self.print(f"[!] Failed to load resume file: {err}")
            return {}
        sessions = payload.get("sessions")
        return dict(sessions) if isinstance(sessions, dict) else {}

    def _read_payload(self, path: Path) -> Dict:
        try:
            with open(path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except FileNotFoundError as exc:
            raise ResumeError("Resume file missing.") from exc
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ResumeCorruptError(f"Invalid JSON: {exc}") from exc
        payload = migrate_resume_payload(payload, self.SCHEMA_VERSION)
        self._validate_payload(payload)
        return payload

    def _validate_payload(self, payload: Dict) -> None:
        if not isinstance(payload, dict):
            raise ResumeCorruptError("Payload was not an object.")
        version = payload.get("version")
        if version != self.SCHEMA_VERSION:
            raise ResumeCorruptError(f"Unsupported schema version: {version!r}")
        if not isinstance(payload.get("sessions"), dict):
            raise ResumeCorruptError("Sessions block missing.")

    def _write(self, sessions: Dict[str, dict]) -> None:
        payload = {
            "version": self.SCHEMA_VERSION,
            "metadata": {
                "schema": "resume_v1",
                "version": self.SCHEMA_VERSION,
                "saved_at": datetime.now(timezone.utc).isoformat(),
            },
            "sessions": sessions,
        }
        if self.path.exists():
            self.backup_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self.path, self.backup_path)
        write_json_atomic(self.path, payload)


def validate_resume(store, record: SessionRecord) -> Optional[str]:
    """Return ``None`` when every referenced graph and node exists, else a message."""
    try:
        store.load_graph(record.root_graph)
        current = store.load_graph(record.current_graph)
        current.require_node(record.current_node)
        for frame in record.stack:
            graph = store.load_graph(frame.origin_graph)
            if graph.get_node(frame.origin_node) is None:
                return f"Stack frame node {frame.origin_node} not found in {frame.origin_graph}"
    except GraphLoadError as exc:
        return str(exc)
    return None


def restore_stack(store, frames: List[StackFrame]) -> List[StackFrame]:
    restored: List[StackFrame] = []
    for frame in frames:
        graph = store.load_graph(frame.origin_graph)
        if graph.get_node(frame.origin_node) is None:
            raise NodeNotFoundError(f"Stack frame node not found: {frame.origin_node}")
        restored.append(StackFrame(frame.origin_graph, frame.origin_node, dict(frame.saved_state), graph))
    return restored
