"""
Port ownership discovery.

Finds the processes holding a TCP socket on a given port. Three backends
answer the same question: the ``lsof`` utility, the Windows ``netstat -ano``
connection table, and psutil's connection listing. ``select_discovery``
probes them in that order and returns the first one the host supports.
"""

import logging
import os
import shutil
import subprocess
from typing import Iterable, Optional, Protocol, runtime_checkable

import psutil

from .errors import DiscoveryError

logger = logging.getLogger(__name__)

DEFAULT_DISCOVERY_TIMEOUT = 10.0


@runtime_checkable
class PortProcessDiscovery(Protocol):
    """Capability: list the PIDs bound to a TCP port."""

    name: str

    def available(self) -> bool:
        ...

    def find_pids(self, port: int) -> set[int]:
        ...


def _parse_pid(value: str) -> Optional[int]:
    value = value.strip()
    if not value or value == "0" or not value.isdigit():
        return None
    return int(value)


def _without_self(pids: Iterable[int]) -> set[int]:
    own = os.getpid()
    return {pid for pid in pids if pid != own}


class _CommandDiscovery:
    """Shared plumbing for backends that shell out to a diagnostic tool."""

    name = ""
    executable = ""

    def __init__(self, timeout: float = DEFAULT_DISCOVERY_TIMEOUT):
        self.timeout = timeout

    def available(self) -> bool:
        return shutil.which(self.executable) is not None

    def _run(self, args: list[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                [self.executable, *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise DiscoveryError(f"{self.executable} timed out after {self.timeout}s") from None
        except OSError as e:
            raise DiscoveryError(f"{self.executable} could not be run: {e}") from e


class LsofDiscovery(_CommandDiscovery):
    """
    Look up port owners with ``lsof -F pn``.

    lsof's ``-iTCP:<port>`` filter also matches sockets whose *remote* end is
    on the port, so each name field is checked and only sockets whose local
    address is on the port count.
    """

    name = "lsof"
    executable = "lsof"

    def find_pids(self, port: int) -> set[int]:
        result = self._run(["-nP", f"-iTCP:{port}", "-Fpn"])
        # lsof exits 1 when nothing matches
        if result.returncode != 0 and not result.stdout.strip():
            return set()
        return _without_self(parse_lsof_fields(result.stdout, port))


def parse_lsof_fields(output: str, port: int) -> set[int]:
    """
    Extract PIDs from ``lsof -F pn`` output whose socket is local to ``port``.

    Each process starts with a ``p<pid>`` line followed by ``f<fd>`` and
    ``n<name>`` lines; connected sockets are named ``local->remote``.
    """
    suffix = f":{port}"
    pids = set()
    pid = None
    for line in output.splitlines():
        if not line:
            continue
        field_id, value = line[0], line[1:]
        if field_id == "p":
            pid = _parse_pid(value)
        elif field_id == "n" and pid is not None:
            local = value.split("->", 1)[0]
            if local.endswith(suffix):
                pids.add(pid)
    return pids


class NetstatDiscovery(_CommandDiscovery):
    """
    Look up port owners in the ``netstat -ano`` connection table.

    Rows look like ``TCP  0.0.0.0:8787  0.0.0.0:0  LISTENING  1234``; the
    owning PID is the last column. Only the Windows netstat reports PIDs
    in that position, so the backend is unavailable elsewhere.
    """

    name = "netstat"
    executable = "netstat"

    def available(self) -> bool:
        return os.name == "nt" and super().available()

    def find_pids(self, port: int) -> set[int]:
        result = self._run(["-ano"])
        if result.returncode != 0:
            return set()
        return _without_self(parse_netstat_table(result.stdout, port))


def parse_netstat_table(output: str, port: int) -> set[int]:
    """Extract owning PIDs of TCP rows whose local address is on ``port``."""
    suffix = f":{port}"
    pids = set()
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 4 or not parts[0].upper().startswith("TCP"):
            continue
        if not parts[1].endswith(suffix):
            continue
        pid = _parse_pid(parts[-1])
        if pid is not None:
            pids.add(pid)
    return pids


class PsutilDiscovery:
    """Look up port owners through ``psutil.net_connections``."""

    name = "psutil"

    def __init__(self, timeout: float = DEFAULT_DISCOVERY_TIMEOUT):
        self.timeout = timeout

    def available(self) -> bool:
        return True

    def find_pids(self, port: int) -> set[int]:
        try:
            connections = psutil.net_connections(kind="tcp")
        except psutil.AccessDenied as e:
            raise DiscoveryError(f"not permitted to list connections: {e}") from e

        pids = {
            conn.pid
            for conn in connections
            if conn.pid and conn.laddr and conn.laddr.port == port
        }
        return _without_self(pids)


def default_backends(timeout: float = DEFAULT_DISCOVERY_TIMEOUT) -> list[PortProcessDiscovery]:
    """Backends in probe order."""
    return [LsofDiscovery(timeout), NetstatDiscovery(timeout), PsutilDiscovery(timeout)]


def select_discovery(
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    candidates: Optional[Iterable[PortProcessDiscovery]] = None,
) -> PortProcessDiscovery:
    """Return the first backend whose capability probe succeeds."""
    backends = list(candidates) if candidates is not None else default_backends(timeout)
    for backend in backends:
        if backend.available():
            logger.debug(f"Using {backend.name} for port discovery")
            return backend
    raise DiscoveryError("no port discovery backend is available")
