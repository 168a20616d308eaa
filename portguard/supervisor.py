"""
The port-bound supervisor.

Runs the three phases in order: reclaim the port, launch the child, then
relay signals while waiting for the child to exit. The child's exit code
becomes the supervisor's; a child that cannot be started yields 1.
"""

import asyncio
import logging
import shlex
from enum import Enum
from typing import Optional

from .config import Config
from .discovery import PortProcessDiscovery, select_discovery
from .errors import DiscoveryError, SpawnError
from .launcher import ChildProcess, ProcessLauncher
from .reclaimer import PortReclaimer, ReclaimResult
from .signals import SignalForwarder

logger = logging.getLogger(__name__)

SPAWN_FAILURE_EXIT_CODE = 1


class SupervisorState(Enum):
    INIT = "init"
    LAUNCHING = "launching"
    RUNNING = "running"
    TERMINATED = "terminated"


class Supervisor:
    """Reclaims ``config.port``, then launches and supervises one child."""

    def __init__(
        self,
        config: Config,
        command: str,
        args: Optional[list[str]] = None,
        discovery: Optional[PortProcessDiscovery] = None,
        reclaimer: Optional[PortReclaimer] = None,
        launcher: Optional[ProcessLauncher] = None,
        reclaim: bool = True,
    ):
        self.config = config
        self.command = command
        self.args = list(args or [])
        self._discovery = discovery
        self._reclaimer = reclaimer
        self._discovery_unavailable = False
        self.launcher = launcher or ProcessLauncher()
        self.reclaim_enabled = reclaim

        self.state = SupervisorState.INIT
        self.exit_code: Optional[int] = None
        self.reclaim_result: Optional[ReclaimResult] = None
        self.child: Optional[ChildProcess] = None
        self.forwarder: Optional[SignalForwarder] = None

    @property
    def reclaimer(self) -> Optional[PortReclaimer]:
        """The reclaimer, built lazily so the discovery probe runs only when needed."""
        if self._reclaimer is None and not self._discovery_unavailable:
            discovery = self._discovery
            if discovery is None:
                try:
                    discovery = select_discovery(self.config.discovery_timeout)
                except DiscoveryError as e:
                    logger.warning(f"Cannot check port {self.config.port}: {e}")
                    self._discovery_unavailable = True
                    return None
            self._reclaimer = PortReclaimer(
                discovery,
                settle_delay=self.config.settle_delay,
                kill_timeout=self.config.kill_timeout,
            )
        return self._reclaimer

    async def run(self) -> int:
        """Drive the supervisor to a terminal state and return its exit code."""
        if self.state is not SupervisorState.INIT:
            raise RuntimeError(f"supervisor already {self.state.value}")

        if self.reclaim_enabled:
            reclaimer = self.reclaimer
            if reclaimer is not None:
                self.reclaim_result = await reclaimer.reclaim(self.config.port)

        self.state = SupervisorState.LAUNCHING
        logger.info(f"Starting {shlex.join([self.command, *self.args])}...")
        # Signals received during launch are held until the child exists
        self.forwarder = SignalForwarder(shutdown_timeout=self.config.shutdown_timeout)
        with self.forwarder:
            try:
                self.child = await self.launcher.launch(self.command, self.args)
            except SpawnError as e:
                logger.error(f"Failed to start {self.command}: {e.cause}")
                return self._terminate(SPAWN_FAILURE_EXIT_CODE)

            self.state = SupervisorState.RUNNING
            self.forwarder.attach(self.child)
            code = await self.child.wait()

        logger.info(f"Child {self.child.pid} exited with code {self.child.returncode}")
        return self._terminate(code)

    def _terminate(self, code: int) -> int:
        self.state = SupervisorState.TERMINATED
        self.exit_code = code
        return code


def run_supervisor(
    config: Config,
    command: str,
    args: Optional[list[str]] = None,
    shell: bool = False,
    reclaim: bool = True,
) -> int:
    """Run a supervisor to completion on a fresh event loop."""
    supervisor = Supervisor(
        config,
        command,
        args,
        launcher=ProcessLauncher(shell=shell),
        reclaim=reclaim,
    )
    return asyncio.run(supervisor.run())
