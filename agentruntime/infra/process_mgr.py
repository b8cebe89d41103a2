"""Background process manager: detached servers and watchers started by agents."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from collections import deque
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_OUTPUT_LINES = 200


@dataclass
class ManagedProcess:
    pid: int
    command: str
    cwd: str
    started_at: float = field(default_factory=time.monotonic)
    output: deque[str] = field(default_factory=lambda: deque(maxlen=_OUTPUT_LINES))
    process: asyncio.subprocess.Process | None = None
    reader: asyncio.Task | None = None

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    @property
    def recent_output(self) -> str:
        return "\n".join(self.output)


@dataclass(frozen=True)
class StartResult:
    pid: int = 0
    initial_output: str = ""
    error: str | None = None


@dataclass(frozen=True)
class ProcessStatus:
    pid: int
    running: bool
    command: str = ""
    uptime: float = 0.0
    output: str = ""


@dataclass(frozen=True)
class PortStatus:
    port: int
    in_use: bool
    pid: int | None = None


def is_pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class ProcessManager:
    """Starts, tracks and stops background processes for agent sessions."""

    def __init__(self, stop_grace_seconds: float = 3.0) -> None:
        self._processes: dict[int, ManagedProcess] = {}
        self._stop_grace = stop_grace_seconds

    async def start_process(
        self,
        command: str,
        cwd: str | None = None,
        wait_for: str | None = None,
        timeout: float = 5.0,
    ) -> StartResult:
        """Start ``command`` detached and optionally wait for a startup string."""
        workdir = cwd if cwd and os.path.isdir(cwd) else os.getcwd()
        try:
            proc = await asyncio.create_subprocess_exec(
                "bash",
                "-c",
                command,
                cwd=workdir,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            return StartResult(error=f"Failed to start process: {e}")

        managed = ManagedProcess(pid=proc.pid, command=command, cwd=workdir, process=proc)
        startup = asyncio.Event()
        managed.reader = asyncio.create_task(self._pump(managed, wait_for, startup))
        self._processes[proc.pid] = managed
        logger.info("Started background process %d: %s", proc.pid, command)

        try:
            await asyncio.wait_for(startup.wait(), timeout=timeout)
        except TimeoutError:
            if wait_for:
                logger.debug("Startup text %r not seen within %.1fs", wait_for, timeout)

        if proc.returncode is not None and proc.returncode != 0:
            return StartResult(
                pid=proc.pid,
                initial_output=managed.recent_output,
                error=(
                    f"Process exited immediately with code {proc.returncode}"
                    + (f":\n{managed.recent_output[:1500]}" if managed.output else "")
                ),
            )
        return StartResult(pid=proc.pid, initial_output=managed.recent_output)

    async def _pump(
        self,
        managed: ManagedProcess,
        wait_for: str | None,
        startup: asyncio.Event,
    ) -> None:
        proc = managed.process
        assert proc is not None and proc.stdout is not None
        while True:
            line = await proc.stdout.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip("\n")
            managed.output.append(text)
            if wait_for and wait_for in text:
                startup.set()
        await proc.wait()
        startup.set()

    def check_process(self, pid: int) -> ProcessStatus:
        managed = self._processes.get(pid)
        if managed is None:
            return ProcessStatus(pid=pid, running=is_pid_alive(pid))
        running = managed.process is not None and managed.process.returncode is None
        return ProcessStatus(
            pid=pid,
            running=running,
            command=managed.command,
            uptime=managed.uptime,
            output="\n".join(list(managed.output)[-20:]),
        )

    async def check_port(self, port: int, host: str = "127.0.0.1") -> PortStatus:
        """A port is in use if something accepts a TCP connection on it."""
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=1.0)
        except (OSError, TimeoutError):
            return PortStatus(port=port, in_use=False)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        owner = next(
            (
                p.pid for p in self._processes.values()
                if p.process is not None and p.process.returncode is None
                and str(port) in p.command
            ),
            None,
        )
        return PortStatus(port=port, in_use=True, pid=owner)

    def list_processes(self) -> list[ProcessStatus]:
        return [self.check_process(pid) for pid in sorted(self._processes)]

    async def stop_process(self, pid: int) -> bool:
        """SIGTERM the process group, then SIGKILL after the grace period."""
        managed = self._processes.pop(pid, None)
        if managed is None or managed.process is None or managed.process.returncode is not None:
            return False
        try:
            os.killpg(pid, signal.SIGTERM)
        except ProcessLookupError:
            return False
        try:
            await asyncio.wait_for(managed.process.wait(), timeout=self._stop_grace)
        except TimeoutError:
            try:
                os.killpg(pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            await managed.process.wait()
        if managed.reader is not None:
            managed.reader.cancel()
        logger.info("Stopped background process %d", pid)
        return True

    async def stop_all(self) -> int:
        stopped = 0
        for pid in list(self._processes):
            if await self.stop_process(pid):
                stopped += 1
        self._processes.clear()
        return stopped
