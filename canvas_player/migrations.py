"""Resume file migration registry."""

from __future__ import annotations

import copy
from typing import Callable, Dict


class ResumeMigrationError(Exception):
    """Raised when a resume file cannot be migrated to the latest schema."""


Migration = Callable[[Dict], Dict]


def _migrate_frame_v0(frame: Dict) -> Dict:
    return {
        "graph": frame.get("filePath") or frame.get("graph"),
        "node": frame.get("currentNodeId") or frame.get("node"),
        "state": frame.get("state") if isinstance(frame.get("state"), dict) else {},
    }


def _migrate_v0_to_v1(payload: Dict) -> Dict:
    # Version 0 files were plugin data blobs: either bare settings, or
    # `{settings, resumeSessions}` with camelCase session entries.
    legacy_sessions = payload.get("resumeSessions")
    if legacy_sessions is None:
        legacy_sessions = {}
    if not isinstance(legacy_sessions, dict):
        raise ResumeMigrationError("Legacy resumeSessions block was not an object.")

    sessions = {}
    for root, entry in legacy_sessions.items():
        if not isinstance(entry, dict):
            continue
        root_graph = entry.get("rootFilePath") or root
        current_node = entry.get("currentNodeId")
        if not isinstance(current_node, str):
            continue
        stack = entry.get("stack") if isinstance(entry.get("stack"), list) else []
        sessions[root_graph] = {
            "root_graph": root_graph,
            "current_graph": entry.get("currentFilePath") or root_graph,
            "current_node": current_node,
            "state": entry.get("currentSessionState")
            if isinstance(entry.get("currentSessionState"), dict)
            else {},
            "stack": [_migrate_frame_v0(frame) for frame in stack if isinstance(frame, dict)],
        }

    return {
        "version": 1,
        "metadata": {"schema": "resume_v1", "version": 1, "saved_at": None},
        "sessions": sessions,
    }


MIGRATIONS: Dict[int, Migration] = {
    0: _migrate_v0_to_v1,
}


def schema_version(payload: Dict) -> int:
    """Version 0 files carry no `version` key at all."""
    version = payload.get("version") or 0
    if isinstance(version, bool) or not isinstance(version, int):
        raise ResumeMigrationError(f"Resume version is not an integer: {version!r}")
    return version


def migrate_resume_payload(payload: Dict, target_version: int) -> Dict:
    """Step ``payload`` up through :data:`MIGRATIONS` to ``target_version``.

    The input is never modified. Each step must raise the version.
    """
    if not isinstance(payload, dict):
        raise ResumeMigrationError("Resume payload was not an object.")
    start = schema_version(payload)
    if start > target_version:
        raise ResumeMigrationError(f"Resume schema {start} is newer than supported {target_version}.")

    migrated = copy.deepcopy(payload)
    version = start
    while version != target_version:
        step = MIGRATIONS.get(version)
        if step is None:
            raise ResumeMigrationError(f"No migration registered from resume schema {version}.")
        migrated = step(migrated)
        next_version = schema_version(migrated)
        if next_version <= version:
            raise ResumeMigrationError(f"Migration from schema {version} did not advance the version.")
        version = next_version
    return migrated
