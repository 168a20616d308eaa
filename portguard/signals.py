"""
Signal relay from the supervisor to its child.

SIGINT and SIGTERM received by the supervisor are forwarded unchanged to
the child. The supervisor never exits on its own account; it keeps waiting
for the child, whose exit code then becomes the supervisor's.
"""

import asyncio
import logging
import signal
from typing import Optional

from .launcher import ChildProcess

logger = logging.getLogger(__name__)

FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SignalForwarder:
    """
    Owns the supervisor's SIGINT/SIGTERM subscriptions.

    Handlers can be installed before the child exists; signals received
    until ``attach()`` are held and delivered as soon as the child starts.
    """

    def __init__(
        self,
        child: Optional[ChildProcess] = None,
        shutdown_timeout: Optional[float] = None,
        signals: tuple = FORWARDED_SIGNALS,
    ):
        self.child = child
        self.shutdown_timeout = shutdown_timeout
        self.signals = signals
        self.relayed: list[int] = []
        self._pending: list[int] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_handlers: list[int] = []
        self._previous: dict[int, object] = {}
        self._escalation: Optional[asyncio.TimerHandle] = None

    @property
    def installed(self) -> bool:
        return bool(self._loop_handlers or self._previous)

    def install(self) -> None:
        """Register handlers on the running loop."""
        if self.installed:
            return
        self._loop = asyncio.get_running_loop()
        for sig in self.signals:
            try:
                self._loop.add_signal_handler(sig, self.forward, sig)
                self._loop_handlers.append(sig)
            except (NotImplementedError, RuntimeError):
                # No loop signal support (Windows): fall back to a plain handler
                self._previous[sig] = signal.signal(sig, self._threadsafe_handler)

    def remove(self) -> None:
        """Drop handlers and any pending kill escalation."""
        for sig in self._loop_handlers:
            self._loop.remove_signal_handler(sig)
        self._loop_handlers.clear()
        for sig, previous in self._previous.items():
            signal.signal(sig, previous)
        self._previous.clear()
        if self._escalation is not None:
            self._escalation.cancel()
            self._escalation = None

    def __enter__(self) -> "SignalForwarder":
        self.install()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.remove()

    def _threadsafe_handler(self, signum, frame) -> None:
        self._loop.call_soon_threadsafe(self.forward, signum)

    def forward(self, sig: int) -> None:
        """Relay ``sig`` to the child. Safe to call repeatedly."""
        logger.info(f"Received {signal.Signals(sig).name}, shutting down...")
        self.relayed.append(sig)
        if self.child is None:
            self._pending.append(sig)
            return
        self._deliver(sig)

    def attach(self, child: ChildProcess) -> None:
        """Start relaying to ``child``, delivering any signals held so far."""
        self.child = child
        pending, self._pending = self._pending, []
        for sig in pending:
            self._deliver(sig)

    def _deliver(self, sig: int) -> None:
        if not self.child.send_signal(sig):
            logger.debug(f"Child {self.child.pid} already exited, nothing to relay")
            return
        self._arm_escalation()

    def _arm_escalation(self) -> None:
        if self.shutdown_timeout is None or self._escalation is not None:
            return
        loop = self._loop or asyncio.get_running_loop()
        self._escalation = loop.call_later(self.shutdown_timeout, self._escalate)

    def _escalate(self) -> None:
        if self.child.kill():
            logger.warning(
                f"Child {self.child.pid} still running {self.shutdown_timeout}s after "
                f"shutdown signal, killing it"
            )
