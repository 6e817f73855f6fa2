"""Serialised, lease-aware front door to the navigator."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Callable, Optional

from .navigator import GraphNavigator, NavigatorStatus, Scene
from .ownership import CommitResult, LeaseStatus, SessionOwnershipCoordinator, SessionSnapshot


class SessionController:
    """Run one navigation action at a time and publish the result.

    Each action checks the lease, mutates the navigator, then commits the
    new session to the shared snapshot before the next action may start.
    A device that finds the session owned elsewhere becomes read-only and
    mirrors remote updates until :meth:`take_over`.
    """

    def __init__(
        self,
        navigator: GraphNavigator,
        coordinator: Optional[SessionOwnershipCoordinator] = None,
        *,
        on_scene: Optional[Callable[[Scene], None]] = None,
        print_func: Callable[[str], None] = print,
    ) -> None:
        self.navigator = navigator
        self.coordinator = coordinator
        self.on_scene = on_scene
        self.print = print_func
        self.read_only = False
        self.last_commit: Optional[CommitResult] = None
        self._lock = asyncio.Lock()
        if coordinator is not None:
            if coordinator.on_remote_update is None:
                coordinator.on_remote_update = self.apply_remote
            if coordinator.on_remote_stop is None:
                coordinator.on_remote_stop = self.clear_remote

    # ---------- Actions ----------
    async def start(self, root_graph: str) -> Scene:
        return await self._run(self.navigator.start, root_graph)

    async def resume(self, root_graph: str) -> Scene:
        return await self._run(self.navigator.resume, root_graph)

    async def play_from_node(self, graph_id: str, node_id: str) -> Scene:
        return await self._run(self.navigator.play_from_node, graph_id, node_id)

    async def set_variable(self, name: str, value: bool) -> Scene:
        return await self._run(self.navigator.set_variable, name, value)

    async def continue_(self) -> Scene:
        return await self._run(self.navigator.continue_)

    async def choose(self, choice) -> Scene:
        return await self._run(self.navigator.choose, choice)

    async def back(self) -> Scene:
        return await self._run(self.navigator.back)

    async def return_to_parent(self) -> Scene:
        return await self._run(self.navigator.return_to_parent)

    async def end_path(self) -> Scene:
        return await self._run(self.navigator.end_path)

    async def stop(self) -> Scene:
        return await self._run(self.navigator.stop)

    async def take_over(self) -> Scene:
        async with self._lock:
            if self.coordinator is None:
                return self._publish(self.navigator.scene())
            result = await self.coordinator.take_over(self.navigator.record())
            self.last_commit = result
            if not result.ok:
                return self._publish(replace(self.navigator.scene(), notice=result.reason, read_only=self.read_only))
            self.read_only = False
            if self.navigator.session is None:
                snapshot = self.coordinator.check_lease().snapshot
                if snapshot is not None:
                    return self._publish(self.navigator.restore(snapshot.session))
            self.navigator.ensure_timer()
            return self._publish(self.navigator.scene())

    async def flush(self) -> None:
        if self.coordinator is not None:
            await self.coordinator.flush()

    # ---------- Mirroring ----------
    async def apply_remote(self, snapshot: SessionSnapshot) -> Scene:
        async with self._lock:
            self.read_only = True
            scene = self.navigator.restore(snapshot.session, start_timer=False)
            return self._publish(replace(scene, read_only=True))

    async def clear_remote(self) -> Scene:
        async with self._lock:
            self.read_only = False
            scene = self.navigator.discard()
            return self._publish(replace(scene, notice="Session was stopped on another device."))

    # ---------- Internal helpers ----------
    async def _run(self, action, *args) -> Scene:
        async with self._lock:
            if self.coordinator is not None:
                check = self.coordinator.check_lease()
                if not check.permitted:
                    self.read_only = True
                    notice = f"Session is open on {check.owner}; take over to continue here."
                    return self._publish(replace(self.navigator.scene(), read_only=True, notice=notice))
                self.read_only = False
            scene = action(*args)
            await self._persist(scene)
            return self._publish(scene)

    async def _persist(self, scene: Scene) -> None:
        if self.coordinator is None or (scene.status is NavigatorStatus.FAILED and self.navigator.session is None):
            return
        if self.navigator.session is None:
            self.last_commit = await self.coordinator.stop()
            return
        self.last_commit = await self.coordinator.commit(self.navigator.record())
        if not self.last_commit.ok and self.last_commit.status is LeaseStatus.OWNED_BY_OTHER:
            self.read_only = True

    def _publish(self, scene: Scene) -> Scene:
        if self.on_scene is not None:
            self.on_scene(scene)
        return scene
