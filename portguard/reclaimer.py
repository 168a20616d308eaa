"""
Port reclamation.

Discovers the processes bound to the target port and hard-kills them so the
managed child can bind it. Best effort throughout: a missing diagnostic tool
means "assume free", and a PID that survives its kill is only a warning.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import psutil

from .discovery import PortProcessDiscovery
from .errors import DiscoveryError, ReclaimWarning

logger = logging.getLogger(__name__)


@dataclass
class ReclaimResult:
    """Outcome of one reclamation pass."""

    port: int
    pids: frozenset = frozenset()
    killed: set[int] = field(default_factory=set)
    warnings: list[ReclaimWarning] = field(default_factory=list)

    @property
    def was_free(self) -> bool:
        return not self.pids

    @property
    def ok(self) -> bool:
        return not self.warnings


def kill_process(pid: int, timeout: float) -> None:
    """
    Hard-kill a process and wait for it to exit.

    Raises psutil.NoSuchProcess if it is already gone, psutil.AccessDenied
    if we may not signal it, and psutil.TimeoutExpired if it outlives the
    timeout.
    """
    proc = psutil.Process(pid)
    proc.kill()
    proc.wait(timeout=timeout)


class PortReclaimer:
    """Frees a TCP port by terminating its current owners."""

    def __init__(
        self,
        discovery: PortProcessDiscovery,
        settle_delay: float = 2.0,
        kill_timeout: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.discovery = discovery
        self.settle_delay = settle_delay
        self.kill_timeout = kill_timeout
        self._sleep = sleep

    async def reclaim(self, port: int) -> ReclaimResult:
        """Kill every process bound to ``port``. Never raises for discovery or kill failures."""
        logger.info(f"Checking for existing processes on port {port}...")

        try:
            pids = await asyncio.to_thread(self.discovery.find_pids, port)
        except DiscoveryError as e:
            logger.warning(f"Error checking port {port}: {e}; assuming it is free")
            pids = set()
        except Exception as e:
            logger.warning(
                f"Error checking port {port}: {type(e).__name__}: {e}; assuming it is free"
            )
            pids = set()

        result = ReclaimResult(port=port, pids=frozenset(pids))
        if result.was_free:
            logger.info(f"Port {port} is free")
            return result

        logger.info(
            f"Found existing process(es) on port {port}: {', '.join(str(p) for p in sorted(pids))}"
        )
        logger.info("Killing existing process(es)...")

        for pid in sorted(pids):
            warning = await self._kill(pid)
            if warning:
                logger.warning(str(warning))
                result.warnings.append(warning)
            else:
                result.killed.add(pid)

        # Give the OS time to release the socket
        await self._sleep(self.settle_delay)
        logger.info(f"Port {port} cleared")
        return result

    async def _kill(self, pid: int) -> ReclaimWarning | None:
        try:
            await asyncio.to_thread(kill_process, pid, self.kill_timeout)
        except psutil.NoSuchProcess:
            logger.debug(f"Process {pid} already exited")
        except psutil.AccessDenied:
            return ReclaimWarning(pid, "access denied")
        except psutil.TimeoutExpired:
            return ReclaimWarning(pid, f"still running after {self.kill_timeout}s")
        except OSError as e:
            return ReclaimWarning(pid, str(e))
        return None
