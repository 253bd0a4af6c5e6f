"""In-memory registry of running Slidev previews."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

from slidev_runtime.errors import InvalidArgument, SpawnFailure
from slidev_runtime.ports import PortAllocator
from slidev_runtime.supervisor import ProcessSupervisor, SlidevInstance
from slidev_runtime.validation import require_existing_path, require_positive_int, require_text

logger = logging.getLogger(__name__)


@dataclass
class PreviewStart:
    port: int
    already_running: bool


@dataclass
class InstanceInfo:
    slide_id: int
    port: int
    pid: Optional[int]
    started_at: float


class InstanceRegistry:
    def __init__(self, ports: PortAllocator, supervisor: ProcessSupervisor) -> None:
        """
        Track at most one live preview per slide id.

        `_state_lock` guards the id -> instance map together with the port
        reservations; every insertion and removal happens under it, including
        removals triggered by a process exiting on its own. `_slide_locks`
        serialize start/stop calls for one slide id so two concurrent starts
        cannot both spawn, while different slides never wait on each other.
        A slide lock exists only while some call holds or awaits it.

        Parameters:
            ports (PortAllocator): Allocator owning the reserved port set.
            supervisor (ProcessSupervisor): Spawns and stops preview processes.
        """
        self._ports = ports
        self._supervisor = supervisor
        self._instances: Dict[int, SlidevInstance] = {}
        self._state_lock = asyncio.Lock()
        self._slide_locks: Dict[int, asyncio.Lock] = {}
        self._slide_users: Dict[int, int] = {}
        self._closed = False

    @asynccontextmanager
    async def _slide_lock(self, slide_id: int) -> AsyncIterator[None]:
        lock = self._slide_locks.setdefault(slide_id, asyncio.Lock())
        self._slide_users[slide_id] = self._slide_users.get(slide_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._slide_users[slide_id] -= 1
            if not self._slide_users[slide_id]:
                del self._slide_users[slide_id]
                del self._slide_locks[slide_id]

    async def start_preview(
        self,
        slide_id: int,
        slides_path: str | Path,
        port: Optional[int] = None,
        remote: bool = True,
    ) -> PreviewStart:
        """
        Ensure a preview is running for `slide_id` and return its port.

        A live registered instance is reused without spawning. A registered
        instance whose process has died is evicted first and then replaced.

        Parameters:
            slide_id (int): Positive slide identifier.
            slides_path (str | Path): Existing Markdown entry file.
            port (Optional[int]): Preferred port, used when it is free.
            remote (bool): Whether the preview accepts remote connections.

        Returns:
            PreviewStart: The preview port and whether it was already running.

        Raises:
            InvalidArgument: If the slide id or path is invalid.
            ResourceExhausted: If no port is free.
            SpawnFailure: If the preview does not become ready.
        """
        require_positive_int(slide_id, "slideId")
        if isinstance(slides_path, str):
            require_text(slides_path, "slidesPath")
        path = require_existing_path(slides_path, "slidesPath")
        if not path.is_file():
            raise InvalidArgument(f"slidesPath is not a file: {slides_path}")

        async with self._slide_lock(slide_id):
            if self._closed:
                raise SpawnFailure("preview service is shutting down")
            existing = self._instances.get(slide_id)
            if existing is not None:
                if self._supervisor.is_alive(existing):
                    return PreviewStart(port=existing.port, already_running=True)
                logger.info("Evicting dead preview for slide %s on port %d", slide_id, existing.port)
                await self._remove(existing)
                await self._supervisor.terminate(existing)

            allocated = await self._ports.allocate(port)
            try:
                instance = await self._supervisor.spawn(
                    slide_id, path, allocated, remote=remote, on_exit=self._handle_exit
                )
            except BaseException:
                self._ports.release(allocated)
                raise

            async with self._state_lock:
                closed = self._closed
                exited = instance.exited
                if closed or exited:
                    self._ports.release(allocated)
                else:
                    self._instances[slide_id] = instance

            if exited:
                # died between readiness and registration; the exit handler found nothing to remove
                raise SpawnFailure(f"Slidev exited right after starting on port {allocated}")
            if closed:
                logger.info("Shutdown began while slide %s was starting; stopping it", slide_id)
                await self._supervisor.terminate(instance)
                raise SpawnFailure("preview service is shutting down")

        logger.info("Preview for slide %s running on port %d (pid %s)", slide_id, instance.port, instance.pid)
        return PreviewStart(port=instance.port, already_running=False)

    async def stop_preview(self, slide_id: int) -> bool:
        """Stop the preview for `slide_id`; stopping a slide with no preview also succeeds."""
        async with self._slide_lock(slide_id):
            async with self._state_lock:
                instance = self._instances.pop(slide_id, None)
                if instance is not None:
                    self._ports.release(instance.port)
            if instance is not None:
                logger.info("Stopping preview for slide %s on port %d", slide_id, instance.port)
                await self._supervisor.terminate(instance)
        return True

    def list_instances(self) -> List[InstanceInfo]:
        return [
            InstanceInfo(
                slide_id=instance.slide_id,
                port=instance.port,
                pid=instance.pid,
                started_at=instance.started_at,
            )
            for instance in list(self._instances.values())
        ]

    def get(self, slide_id: int) -> Optional[SlidevInstance]:
        return self._instances.get(slide_id)

    async def shutdown_all(self) -> None:
        """
        Terminate every preview and clear all state, continuing past individual failures.

        The registry refuses new starts afterwards; a start still spawning when
        this runs stops its own process instead of registering it.
        """
        async with self._state_lock:
            self._closed = True
            instances = list(self._instances.values())
            self._instances.clear()
            self._ports.reset()

        for instance in instances:
            try:
                await self._supervisor.terminate(instance)
            except Exception:
                logger.exception("Failed to terminate preview for slide %s", instance.slide_id)
        logger.info("Stopped %d preview(s)", len(instances))

    async def _remove(self, instance: SlidevInstance) -> bool:
        async with self._state_lock:
            # only the registered object may be removed, so a stale notification is a no-op
            if self._instances.get(instance.slide_id) is not instance:
                return False
            del self._instances[instance.slide_id]
            self._ports.release(instance.port)
            return True

    async def _handle_exit(self, instance: SlidevInstance) -> None:
        if await self._remove(instance):
            logger.info("Preview for slide %s exited; released port %d", instance.slide_id, instance.port)
