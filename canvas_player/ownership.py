"""Advisory single-writer ownership over the shared session snapshot.

Every installation that shares storage reads and writes one snapshot file.
A device may mutate the session when the snapshot is absent, unowned, stale
or its own; a fresh snapshot owned by another device makes this device a
read-only mirror until it takes over. The lease is cooperative and racy
inside one freshness window; there is no compare-and-swap underneath.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .session import SessionRecord
from .settings import Settings
from .storage import write_json_atomic
from .timing import now_ms

SNAPSHOT_FILENAME = "session-snapshot.json"


class SnapshotReadError(Exception):
    """Raised when the shared snapshot exists but cannot be read or parsed."""


@dataclass
class SessionSnapshot:
    session: SessionRecord
    owner_device_id: Optional[str]
    updated_at_ms: float
    updated_by_device_id: Optional[str] = None
    version: int = 0

    @property
    def change_key(self) -> Tuple[int, float]:
        # Versions only grow between stops; device clocks may disagree.
        return (self.version, self.updated_at_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "ownerDeviceId": self.owner_device_id,
            "updatedAtMs": self.updated_at_ms,
            "updatedByDeviceId": self.updated_by_device_id,
            "session": self.session.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionSnapshot":
        owner = data.get("ownerDeviceId")
        updated_by = data.get("updatedByDeviceId")
        return cls(
            session=SessionRecord.from_dict(data["session"]),
            owner_device_id=owner if isinstance(owner, str) and owner else None,
            updated_at_ms=float(data.get("updatedAtMs") or 0),
            updated_by_device_id=updated_by if isinstance(updated_by, str) else None,
            version=int(data.get("version") or 0),
        )


class FileSnapshotStore:
    """The shared snapshot as one JSON file, replaced atomically on write."""

    def __init__(self, path: Path | str) -> None:
        path = Path(path)
        self.path = path / SNAPSHOT_FILENAME if path.suffix != ".json" else path

    def read(self) -> Optional[SessionSnapshot]:
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise SnapshotReadError(f"Failed to read session snapshot: {exc}") from exc
        try:
            return SessionSnapshot.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise SnapshotReadError(f"Malformed session snapshot: {exc}") from exc

    def write(self, snapshot: SessionSnapshot) -> None:
        write_json_atomic(self.path, snapshot.to_dict())

    def delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class LeaseStatus(str, Enum):
    ABSENT = "absent"
    UNOWNED = "unowned"
    OWNED_BY_SELF = "owned_by_self"
    OWNED_BY_OTHER = "owned_by_other"
    STALE = "stale"
    READ_ERROR = "read_error"


@dataclass(frozen=True)
class LeaseCheck:
    status: LeaseStatus
    snapshot: Optional[SessionSnapshot] = None

    @property
    def permitted(self) -> bool:
        return self.status is not LeaseStatus.OWNED_BY_OTHER

    @property
    def owner(self) -> Optional[str]:
        return self.snapshot.owner_device_id if self.snapshot is not None else None


@dataclass(frozen=True)
class CommitResult:
    ok: bool
    status: LeaseStatus
    written: bool = False
    reason: Optional[str] = None


async def _maybe_await(value) -> None:
    if inspect.isawaitable(value):
        await value


class SessionOwnershipCoordinator:
    """Gate session writes on the lease and mirror remote changes.

    ``on_remote_update(snapshot)`` fires when another device's newer snapshot
    is observed; ``on_remote_stop()`` fires once a mirrored session has been
    missing for longer than the grace interval. Both may be coroutines.
    """

    def __init__(
        self,
        store,
        device_id: str,
        settings: Optional[Settings] = None,
        *,
        clock: Callable[[], float] = now_ms,
        print_func: Callable[[str], None] = print,
        on_remote_update: Optional[Callable[[SessionSnapshot], Any]] = None,
        on_remote_stop: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.store = store
        self.device_id = device_id
        self.settings = settings or Settings()
        self.clock = clock
        self.print = print_func
        self.on_remote_update = on_remote_update
        self.on_remote_stop = on_remote_stop
        self._pending: Optional[SessionRecord] = None
        self._pending_task: Optional[asyncio.Task] = None
        self._last_applied: Optional[Tuple[int, float]] = None
        self._mirroring = False
        self._changed: Optional[asyncio.Event] = None

    # ---------- Lease ----------
    @property
    def lease_window_ms(self) -> float:
        return self.settings.lease_window_seconds * 1000.0

    def check_lease(self) -> LeaseCheck:
        try:
            snapshot = self.store.read()
        except SnapshotReadError as exc:
            self.print(f"[Lease] {exc}; continuing without a lease.")
            return LeaseCheck(LeaseStatus.READ_ERROR)
        if snapshot is None:
            return LeaseCheck(LeaseStatus.ABSENT)
        owner = snapshot.owner_device_id
        if not owner:
            return LeaseCheck(LeaseStatus.UNOWNED, snapshot)
        if owner == self.device_id:
            return LeaseCheck(LeaseStatus.OWNED_BY_SELF, snapshot)
        if self.clock() - snapshot.updated_at_ms > self.lease_window_ms:
            return LeaseCheck(LeaseStatus.STALE, snapshot)
        return LeaseCheck(LeaseStatus.OWNED_BY_OTHER, snapshot)

    def can_mutate(self) -> bool:
        return self.check_lease().permitted

    # ---------- Writes ----------
    async def commit(self, record: SessionRecord, *, immediate: bool = False) -> CommitResult:
        """Queue ``record`` as the shared snapshot, debounced unless ``immediate``."""
        check = self.check_lease()
        if not check.permitted:
            return CommitResult(False, check.status, reason=f"owned by {check.owner}")

        self._pending = record.copy()
        self._cancel_pending_task()
        if immediate or self.settings.write_debounce_ms <= 0:
            return self._flush_pending(check)
        self._pending_task = asyncio.create_task(self._debounced_write())
        return CommitResult(True, check.status)

    async def flush(self) -> Optional[CommitResult]:
        self._cancel_pending_task()
        if self._pending is None:
            return None
        return self._flush_pending()

    async def take_over(self, record: Optional[SessionRecord] = None) -> CommitResult:
        """Claim ownership unconditionally; the last writer wins."""
        self._cancel_pending_task()
        self._pending = None
        check = self.check_lease()
        if record is None:
            if check.snapshot is None:
                return CommitResult(False, check.status, reason="nothing to take over")
            record = check.snapshot.session
        result = self._write(record, check)
        if result.ok:
            self.print(f"[Lease] Took over session {record.root_graph}.")
        return result

    async def stop(self) -> CommitResult:
        self._cancel_pending_task()
        self._pending = None
        check = self.check_lease()
        if not check.permitted:
            return CommitResult(False, check.status, reason=f"owned by {check.owner}")
        try:
            self.store.delete()
        except OSError as exc:
            print(f"[Lease] Failed to remove session snapshot: {exc}", file=sys.stderr)
            return CommitResult(False, check.status, reason=str(exc))
        self._last_applied = None
        self._mirroring = False
        return CommitResult(True, check.status, written=True)

    async def _debounced_write(self) -> None:
        await asyncio.sleep(self.settings.write_debounce_ms / 1000.0)
        self._pending_task = None
        self._flush_pending()

    def _flush_pending(self, check: Optional[LeaseCheck] = None) -> CommitResult:
        record, self._pending = self._pending, None
        if check is None:
            check = self.check_lease()
        if record is None:
            return CommitResult(False, check.status, reason="nothing pending")
        if not check.permitted:
            self.print(f"[Lease] Dropping pending write; session now owned by {check.owner}.")
            return CommitResult(False, check.status, reason=f"owned by {check.owner}")
        return self._write(record, check)

    def _write(self, record: SessionRecord, check: LeaseCheck) -> CommitResult:
        previous_version = check.snapshot.version if check.snapshot is not None else 0
        snapshot = SessionSnapshot(
            session=record.copy(),
            owner_device_id=self.device_id,
            updated_at_ms=self.clock(),
            updated_by_device_id=self.device_id,
            version=previous_version + 1,
        )
        try:
            self.store.write(snapshot)
        except OSError as exc:
            print(f"[Lease] Failed to write session snapshot: {exc}", file=sys.stderr)
            return CommitResult(False, check.status, reason=str(exc))
        self._last_applied = snapshot.change_key
        self._mirroring = False
        return CommitResult(True, check.status, written=True)

    def _cancel_pending_task(self) -> None:
        if self._pending_task is not None and not self._pending_task.done():
            self._pending_task.cancel()
        self._pending_task = None

    # ---------- Watcher ----------
    def notify_storage_changed(self) -> None:
        if self._changed is not None:
            self._changed.set()

    async def poll_once(self) -> Optional[str]:
        """Check the snapshot once; return ``"updated"``, ``"stopped"`` or ``None``."""
        snapshot = self._read_quietly()
        if snapshot is None and self._mirroring:
            await asyncio.sleep(self.settings.missing_grace_ms / 1000.0)
            snapshot = self._read_quietly()
            if snapshot is None:
                self._mirroring = False
                self._last_applied = None
                self.print("[Lease] Session was stopped on another device.")
                if self.on_remote_stop is not None:
                    await _maybe_await(self.on_remote_stop())
                return "stopped"
        if snapshot is None:
            # A recreated snapshot starts again at version 1.
            self._last_applied = None
            return None
        if snapshot.owner_device_id == self.device_id:
            self._last_applied = snapshot.change_key
            return None
        if self._last_applied is not None and snapshot.change_key <= self._last_applied:
            return None
        self._last_applied = snapshot.change_key
        self._mirroring = True
        if self.on_remote_update is not None:
            await _maybe_await(self.on_remote_update(snapshot))
        return "updated"

    async def watch(self) -> None:
        """Poll until cancelled, waking early on :meth:`notify_storage_changed`."""
        self._changed = asyncio.Event()
        try:
            while True:
                await self.poll_once()
                try:
                    await asyncio.wait_for(self._changed.wait(), timeout=self.settings.poll_interval_seconds)
                except asyncio.TimeoutError:
                    pass
                self._changed.clear()
        finally:
            self._changed = None

    def _read_quietly(self) -> Optional[SessionSnapshot]:
        try:
            return self.store.read()
        except SnapshotReadError as exc:
            self.print(f"[Lease] {exc}")
            return None
