"""
Tests for portguard/reclaimer.py.

Covers:
- free port: no kills, no settle delay, idempotent
- discovery failure treated as free
- hard kill of every owner followed by one settle delay
- per-PID failures recorded as warnings without aborting
- a real listener being evicted from its port (Linux)
"""

import logging
import socket
import subprocess
import sys
import time

import psutil
import pytest

from portguard.discovery import PsutilDiscovery
from portguard.errors import DiscoveryError, ReclaimWarning
from portguard.reclaimer import PortReclaimer, ReclaimResult
from tests.conftest import FakeDiscovery


@pytest.fixture
def killed(monkeypatch):
    """Replace kill_process; map a PID to an exception to make it fail."""
    calls = []
    failures = {}

    def fake_kill(pid, timeout):
        calls.append((pid, timeout))
        if pid in failures:
            raise failures[pid]

    monkeypatch.setattr("portguard.reclaimer.kill_process", fake_kill)
    fake_kill.calls = calls
    fake_kill.failures = failures
    return fake_kill


@pytest.mark.unit
class TestReclaimResult:
    def test_was_free_without_pids(self):
        assert ReclaimResult(port=1).was_free

    def test_ok_without_warnings(self):
        result = ReclaimResult(port=1, pids=frozenset({5}), killed={5})
        assert result.ok
        assert not result.was_free

    def test_not_ok_with_warnings(self):
        result = ReclaimResult(port=1, warnings=[ReclaimWarning(5, "nope")])
        assert not result.ok


@pytest.mark.unit
class TestReclaimFreePort:
    @pytest.mark.asyncio
    async def test_returns_immediately(self, recording_sleep, killed):
        reclaimer = PortReclaimer(FakeDiscovery(), settle_delay=2.0, sleep=recording_sleep)

        result = await reclaimer.reclaim(8787)

        assert result.was_free
        assert result.pids == frozenset()
        assert recording_sleep.delays == []
        assert killed.calls == []

    @pytest.mark.asyncio
    async def test_idempotent(self, recording_sleep, killed):
        discovery = FakeDiscovery()
        reclaimer = PortReclaimer(discovery, sleep=recording_sleep)

        first = await reclaimer.reclaim(8787)
        second = await reclaimer.reclaim(8787)

        assert first == second
        assert discovery.calls == [8787, 8787]
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_discovery_failure_assumes_free(self, recording_sleep, killed, caplog):
        discovery = FakeDiscovery(error=DiscoveryError("lsof could not be run"))
        reclaimer = PortReclaimer(discovery, sleep=recording_sleep)

        result = await reclaimer.reclaim(8787)

        assert result.was_free
        assert result.ok
        assert recording_sleep.delays == []
        assert "assuming it is free" in caplog.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            PermissionError("/proc/net/tcp"),
            FileNotFoundError("/proc/net/tcp6"),
            UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte"),
            psutil.AccessDenied(),
        ],
    )
    async def test_unexpected_discovery_error_assumes_free(
        self, recording_sleep, killed, caplog, error
    ):
        reclaimer = PortReclaimer(FakeDiscovery(error=error), sleep=recording_sleep)

        result = await reclaimer.reclaim(8787)

        assert result.was_free
        assert killed.calls == []
        assert recording_sleep.delays == []
        assert type(error).__name__ in caplog.text


@pytest.mark.unit
class TestReclaimOccupiedPort:
    @pytest.mark.asyncio
    async def test_kills_every_owner_then_settles_once(self, recording_sleep, killed):
        reclaimer = PortReclaimer(
            FakeDiscovery({30, 10, 20}), settle_delay=1.5, kill_timeout=3.0, sleep=recording_sleep
        )

        result = await reclaimer.reclaim(8787)

        assert killed.calls == [(10, 3.0), (20, 3.0), (30, 3.0)]
        assert result.killed == {10, 20, 30}
        assert result.pids == frozenset({10, 20, 30})
        assert result.ok
        assert recording_sleep.delays == [1.5]

    @pytest.mark.asyncio
    async def test_partial_failure_continues(self, recording_sleep, killed):
        killed.failures[20] = psutil.AccessDenied(pid=20)
        reclaimer = PortReclaimer(FakeDiscovery({10, 20, 30}), sleep=recording_sleep)

        result = await reclaimer.reclaim(8787)

        assert [pid for pid, _ in killed.calls] == [10, 20, 30]
        assert result.killed == {10, 30}
        assert result.warnings == [ReclaimWarning(20, "access denied")]
        assert recording_sleep.delays == [2.0]

    @pytest.mark.asyncio
    async def test_survivor_is_a_warning(self, recording_sleep, killed):
        killed.failures[10] = psutil.TimeoutExpired(5.0, pid=10)
        reclaimer = PortReclaimer(FakeDiscovery({10}), kill_timeout=5.0, sleep=recording_sleep)

        result = await reclaimer.reclaim(8787)

        assert len(result.warnings) == 1
        assert result.warnings[0].pid == 10
        assert "still running" in result.warnings[0].reason

    @pytest.mark.asyncio
    async def test_already_gone_is_not_a_warning(self, recording_sleep, killed):
        killed.failures[10] = psutil.NoSuchProcess(10)
        reclaimer = PortReclaimer(FakeDiscovery({10}), sleep=recording_sleep)

        result = await reclaimer.reclaim(8787)

        assert result.ok
        assert result.killed == {10}

    @pytest.mark.asyncio
    async def test_logs_each_failure(self, recording_sleep, killed, caplog):
        caplog.set_level(logging.INFO)
        killed.failures[20] = OSError("operation not permitted")
        reclaimer = PortReclaimer(FakeDiscovery({20}), sleep=recording_sleep)

        await reclaimer.reclaim(8787)

        assert "Failed to kill process 20: operation not permitted" in caplog.text
        assert "Port 8787 cleared" in caplog.text


LISTENER = """
import socket, sys, time
s = socket.socket()
s.bind(("127.0.0.1", 0))
s.listen()
print(s.getsockname()[1], flush=True)
time.sleep(60)
"""


@pytest.mark.integration
@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="psutil connection lookup")
class TestReclaimRealListener:
    @pytest.mark.asyncio
    async def test_evicts_listener(self):
        child = subprocess.Popen(
            [sys.executable, "-c", LISTENER], stdout=subprocess.PIPE, text=True
        )
        try:
            port = int(child.stdout.readline())
            reclaimer = PortReclaimer(PsutilDiscovery(), settle_delay=0.1)

            result = await reclaimer.reclaim(port)

            assert child.pid in result.pids
            assert result.killed == {child.pid}
            deadline = time.monotonic() + 5
            while child.poll() is None and time.monotonic() < deadline:
                time.sleep(0.05)
            assert child.poll() is not None

            with socket.socket() as s:
                s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                s.bind(("127.0.0.1", port))

            again = await reclaimer.reclaim(port)
            assert again.was_free
        finally:
            if child.poll() is None:
                child.kill()
            child.stdout.close()
