"""Shared fixtures for portguard tests."""

import os
import sys

import pytest

ENV_VARS = (
    "PORTGUARD_PORT",
    "PORTGUARD_SETTLE_DELAY",
    "PORTGUARD_DISCOVERY_TIMEOUT",
    "PORTGUARD_KILL_TIMEOUT",
    "PORTGUARD_SHUTDOWN_TIMEOUT",
    "PORTGUARD_LOG_LEVEL",
    "PORTGUARD_LOG_FILE",
    "LOG_MAX_BYTES",
    "LOG_BACKUP_COUNT",
)

posix_only = pytest.mark.skipif(os.name != "posix", reason="POSIX signals required")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep a developer's environment or .env file out of the tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def python_cmd():
    """Build (command, args) running a Python snippet in a child interpreter."""

    def build(source: str) -> tuple[str, list[str]]:
        return sys.executable, ["-c", source]

    return build


class FakeDiscovery:
    """Discovery double returning a fixed PID set or raising."""

    name = "fake"

    def __init__(self, pids=(), error=None, is_available=True):
        self.pids = set(pids)
        self.error = error
        self.is_available = is_available
        self.calls = []

    def available(self) -> bool:
        return self.is_available

    def find_pids(self, port: int) -> set[int]:
        self.calls.append(port)
        if self.error:
            raise self.error
        return set(self.pids)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records the delays requested."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
