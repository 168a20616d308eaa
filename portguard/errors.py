"""Exceptions raised by portguard components."""

from dataclasses import dataclass


class PortGuardError(Exception):
    """Base class for portguard errors."""


class ConfigError(PortGuardError):
    """Invalid configuration value."""


class DiscoveryError(PortGuardError):
    """A port discovery backend could not answer the query."""


class SpawnError(PortGuardError):
    """The managed child process could not be started."""

    def __init__(self, command: list[str], cause: OSError):
        self.command = command
        self.cause = cause
        super().__init__(f"{command[0] if command else '<empty>'}: {cause}")


@dataclass(frozen=True)
class ReclaimWarning:
    """Non-fatal failure to terminate one process during reclamation."""

    pid: int
    reason: str

    def __str__(self) -> str:
        return f"Failed to kill process {self.pid}: {self.reason}"
