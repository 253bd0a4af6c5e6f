"""Supervision of long-running `slidev` preview servers."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from slidev_runtime.binary import SlidevCommand, resolve_slidev_command
from slidev_runtime.config import Settings
from slidev_runtime.errors import SpawnFailure

logger = logging.getLogger(__name__)

# Printed by npx/slidev when the CLI has to be installed first.
INSTALL_PROMPT = "do you want to install it now"
READY_TIMEOUT = 30.0
READY_POLL_INTERVAL = 0.25
TERMINATE_WAIT = 5.0
READY_HOST = "localhost"

ExitCallback = Callable[["SlidevInstance"], Awaitable[None]]


@dataclass
class SlidevInstance:
    slide_id: int
    port: int
    process: asyncio.subprocess.Process
    started_at: float = field(default_factory=time.time)
    exited: bool = False
    on_exit: Optional[ExitCallback] = field(default=None, repr=False)
    tasks: List[asyncio.Task] = field(default_factory=list, repr=False)

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid

    def detach(self) -> None:
        """Drop the exit observer so a later exit notifies nobody."""
        self.on_exit = None


async def _port_accepting(host: str, port: int, timeout: float = 1.0) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


def _kill(process: asyncio.subprocess.Process) -> None:
    # Children run in their own session, so the group id is the child's pid.
    # npx spawns node underneath; killing the group takes both down.
    if hasattr(os, "killpg"):
        os.killpg(process.pid, signal.SIGKILL)
    else:
        process.kill()


class ProcessSupervisor:
    def __init__(
        self,
        settings: Settings,
        command: Optional[SlidevCommand] = None,
        ready_timeout: float = READY_TIMEOUT,
    ) -> None:
        """
        Create a supervisor for Slidev preview processes.

        Parameters:
            settings (Settings): Used to resolve the Slidev executable on every spawn.
            command (Optional[SlidevCommand]): Fixed command to run instead of resolving one.
            ready_timeout (float): Seconds to wait for the preview port to accept connections.
        """
        self._settings = settings
        self._command = command
        self._ready_timeout = ready_timeout

    def command(self) -> SlidevCommand:
        return self._command or resolve_slidev_command(self._settings)

    async def spawn(
        self,
        slide_id: int,
        slides_path: str | Path,
        port: int,
        remote: bool = True,
        on_exit: Optional[ExitCallback] = None,
    ) -> SlidevInstance:
        """
        Launch a Slidev dev server for one deck and wait until it serves on `port`.

        The child runs from the deck's directory with all three standard streams
        piped. Output is logged, the CLI's install prompt is answered, and an
        exit watcher calls `on_exit` unless the instance was detached first.

        Parameters:
            slide_id (int): Slide the preview belongs to.
            slides_path (str | Path): Markdown entry file of the deck.
            port (int): Port reserved for the preview.
            remote (bool): Pass `--remote` so the server accepts non-local clients.
            on_exit (Optional[ExitCallback]): Awaited once when the process exits on its own.

        Returns:
            SlidevInstance: The running, ready instance.

        Raises:
            SpawnFailure: If the process cannot be launched, exits early, or is not
                accepting connections before the readiness timeout.
        """
        slides_path = Path(slides_path)
        args = [str(slides_path), "--port", str(port)]
        if remote:
            args.append("--remote")
        argv = self.command().argv(*args)

        logger.info("Starting Slidev preview for slide %s on port %d: %s", slide_id, port, argv)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(slides_path.parent),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            logger.error("Could not launch Slidev for slide %s: %s", slide_id, exc)
            raise SpawnFailure(f"Slidev failed to start on port {port}") from exc

        instance = SlidevInstance(slide_id=slide_id, port=port, process=process, on_exit=on_exit)
        instance.tasks = [
            asyncio.create_task(self._pump_stdout(instance)),
            asyncio.create_task(self._pump_stderr(instance)),
            asyncio.create_task(self._watch_exit(instance)),
        ]

        if not await self._wait_until_ready(instance):
            await self.terminate(instance)
            raise SpawnFailure(f"Slidev failed to start on port {port}")

        instance.started_at = time.time()
        return instance

    async def _wait_until_ready(self, instance: SlidevInstance) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._ready_timeout
        while loop.time() < deadline:
            if instance.process.returncode is not None:
                logger.warning(
                    "Slidev for slide %s exited with code %s before becoming ready",
                    instance.slide_id,
                    instance.process.returncode,
                )
                return False
            if await _port_accepting(READY_HOST, instance.port):
                return True
            await asyncio.sleep(READY_POLL_INTERVAL)
        logger.warning(
            "Slidev for slide %s not ready on port %d after %.0fs",
            instance.slide_id,
            instance.port,
            self._ready_timeout,
        )
        return False

    async def _pump_stdout(self, instance: SlidevInstance) -> None:
        stream = instance.process.stdout
        if stream is None:
            return
        # keep the end of the previous chunk so a prompt split across reads still matches
        carry = ""
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            text = chunk.decode(errors="ignore")
            logger.debug("slidev[%s] stdout: %s", instance.slide_id, text.rstrip())
            window = carry + text
            if INSTALL_PROMPT in window:
                await self._confirm_install(instance)
                carry = ""
            else:
                carry = window[-(len(INSTALL_PROMPT) - 1):]

    async def _pump_stderr(self, instance: SlidevInstance) -> None:
        stream = instance.process.stderr
        if stream is None:
            return
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            logger.warning("slidev[%s] stderr: %s", instance.slide_id, chunk.decode(errors="ignore").rstrip())

    async def _confirm_install(self, instance: SlidevInstance) -> None:
        stdin = instance.process.stdin
        if stdin is None or stdin.is_closing():
            return
        logger.info("Confirming Slidev install prompt for slide %s", instance.slide_id)
        stdin.write(b"y\n")
        try:
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.warning("Could not answer install prompt for slide %s: %s", instance.slide_id, exc)

    async def _watch_exit(self, instance: SlidevInstance) -> None:
        code = await instance.process.wait()
        instance.exited = True
        logger.info("Slidev process for slide %s exited (code=%s)", instance.slide_id, code)
        callback = instance.on_exit
        instance.on_exit = None
        if callback is None:
            return
        try:
            await callback(instance)
        except Exception:
            logger.exception("Exit handler failed for slide %s", instance.slide_id)

    async def terminate(self, instance: SlidevInstance) -> None:
        """
        Stop a preview process; best effort.

        The exit observer is removed before the kill so the registry is not
        notified about an exit it initiated. Kill and reap failures are logged,
        never raised.
        """
        instance.detach()
        process = instance.process
        if process.returncode is None:
            try:
                _kill(process)
            except ProcessLookupError:
                pass
            except OSError as exc:
                logger.warning(
                    "Failed to kill Slidev process %s for slide %s: %s", process.pid, instance.slide_id, exc
                )
                return
        try:
            await asyncio.wait_for(process.wait(), timeout=TERMINATE_WAIT)
        except asyncio.TimeoutError:
            logger.warning("Slidev process %s for slide %s did not exit after kill", process.pid, instance.slide_id)

    @staticmethod
    def is_alive(instance: SlidevInstance) -> bool:
        """Signal-0 probe of the child's pid; any failure to signal means not alive."""
        pid = instance.process.pid
        if not pid or instance.process.returncode is not None:
            return False
        try:
            os.kill(pid, 0)
        except OSError:
            return False
        return True
