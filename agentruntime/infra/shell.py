"""Shell executor: runs agent commands with a persistent cwd and environment."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_CWD_MARKER = "__AGENTRUNTIME_CWD__"
_ENV_MARKER = "__AGENTRUNTIME_ENV__"


@dataclass(frozen=True)
class CommandOutput:
    success: bool
    output: str
    exit_code: int
    cwd: str = ""
    timed_out: bool = False


class ShellExecutor:
    """Runs each command in a fresh ``bash -c`` but carries state forward.

    After the command finishes, a trailer prints the working directory and
    the exported environment; both are parsed back out of the output and
    applied to the next command, so ``cd``, ``export`` and ``source``
    persist across calls.
    """

    def __init__(
        self,
        cwd: str | None = None,
        default_timeout: float = 300.0,
        shell: str = "bash",
    ) -> None:
        self.cwd = os.path.abspath(os.path.expanduser(cwd or os.getcwd()))
        self.env: dict[str, str] = dict(os.environ)
        self.default_timeout = default_timeout
        self._shell = shell
        self.last_exit_code: int | None = None

    @property
    def shell(self) -> str:
        return self._shell

    def _script(self, command: str) -> str:
        return (
            f"{command}\n"
            "__agentruntime_rc=$?\n"
            f"printf '\\n{_CWD_MARKER}\\n'\n"
            "pwd\n"
            f"printf '{_ENV_MARKER}\\n'\n"
            "env -0\n"
            "exit $__agentruntime_rc\n"
        )

    async def execute(self, command: str, timeout: float | None = None) -> CommandOutput:
        timeout = self.default_timeout if timeout is None else timeout
        logger.debug("Executing in %s: %s", self.cwd, command)

        proc = await asyncio.create_subprocess_exec(
            self._shell,
            "-c",
            self._script(command),
            cwd=self.cwd if os.path.isdir(self.cwd) else None,
            env=self.env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )
        try:
            raw, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            self._kill_group(proc)
            await proc.wait()
            logger.warning("Command timed out after %.0fs: %s", timeout, command)
            self.last_exit_code = -1
            return CommandOutput(
                success=False,
                output=f"Command timed out after {timeout:.0f}s",
                exit_code=-1,
                cwd=self.cwd,
                timed_out=True,
            )
        except asyncio.CancelledError:
            self._kill_group(proc)
            raise

        text = raw.decode("utf-8", errors="replace")
        output = self._absorb_trailer(text)
        exit_code = proc.returncode if proc.returncode is not None else -1
        self.last_exit_code = exit_code
        return CommandOutput(
            success=exit_code == 0,
            output=output.strip(),
            exit_code=exit_code,
            cwd=self.cwd,
        )

    def _absorb_trailer(self, text: str) -> str:
        """Strip the cwd/env trailer from ``text`` and apply it."""
        marker = f"\n{_CWD_MARKER}\n"
        index = text.rfind(marker)
        if index == -1:
            return text
        output, trailer = text[:index], text[index + len(marker):]
        cwd_part, _, env_part = trailer.partition(f"{_ENV_MARKER}\n")
        new_cwd = cwd_part.strip()
        if new_cwd and os.path.isdir(new_cwd):
            self.cwd = new_cwd
        if env_part:
            env = {}
            for item in env_part.split("\0"):
                key, sep, value = item.partition("=")
                if sep and key and not key.startswith("__agentruntime"):
                    env[key] = value
            env.pop("PWD", None)
            env.pop("OLDPWD", None)
            env.pop("SHLVL", None)
            env.pop("_", None)
            if env:
                self.env = env
        return output

    @staticmethod
    def _kill_group(proc: asyncio.subprocess.Process) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
