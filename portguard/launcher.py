"""
Child process launcher.

Starts the managed command with the supervisor's own stdin, stdout and
stderr so its console output appears exactly as if it were run directly.
"""

import asyncio
import logging
import os
import shlex
import signal
from typing import Optional

from .errors import SpawnError

logger = logging.getLogger(__name__)

# Windows children only accept SIGTERM, CTRL_C_EVENT and CTRL_BREAK_EVENT
WINDOWS = os.name == "nt"


def platform_signal(sig: int) -> int:
    """Translate a POSIX signal to what the platform can deliver to a child."""
    if WINDOWS and sig == signal.SIGINT:
        return signal.CTRL_C_EVENT
    return sig


def exit_code_from_returncode(returncode: Optional[int]) -> int:
    """
    Map a child's return code to the supervisor's exit code.

    A negative return code means the child was killed by a signal and
    reported no exit code of its own; that is treated like a clean exit.
    """
    if returncode is None or returncode < 0:
        return 0
    return returncode


class ChildProcess:
    """Handle to the launched child."""

    def __init__(self, process: asyncio.subprocess.Process, command: list[str]):
        self._process = process
        self.command = command

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    def is_running(self) -> bool:
        return self._process.returncode is None

    def send_signal(self, sig: int) -> bool:
        """Deliver ``sig`` to the child. Returns False if it has already exited."""
        if not self.is_running():
            return False
        try:
            self._process.send_signal(platform_signal(sig))
        except ProcessLookupError:
            return False
        except ValueError as e:
            logger.warning(f"Cannot deliver signal {sig} to child {self.pid}: {e}")
            return False
        return True

    def terminate(self, sig: int = signal.SIGTERM) -> bool:
        return self.send_signal(sig)

    def kill(self) -> bool:
        if not self.is_running():
            return False
        try:
            self._process.kill()
        except ProcessLookupError:
            return False
        return True

    async def wait(self) -> int:
        """Wait for the child to exit and return the supervisor exit code for it."""
        returncode = await self._process.wait()
        return exit_code_from_returncode(returncode)


class ProcessLauncher:
    """Spawns the managed child with inherited standard streams."""

    def __init__(
        self,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
        shell: bool = False,
    ):
        self.env = env
        self.cwd = cwd
        self.shell = shell

    async def launch(self, command: str, args: Optional[list[str]] = None) -> ChildProcess:
        """Start ``command`` with ``args``. Raises SpawnError if it cannot be started."""
        argv = [command, *(args or [])]
        env = os.environ.copy() if self.env is None else self.env

        try:
            if self.shell:
                process = await asyncio.create_subprocess_shell(
                    shlex.join(argv), env=env, cwd=self.cwd
                )
            else:
                process = await asyncio.create_subprocess_exec(*argv, env=env, cwd=self.cwd)
        except OSError as e:
            raise SpawnError(argv, e) from e

        logger.info(f"Started {shlex.join(argv)} with PID {process.pid}")
        return ChildProcess(process, argv)
