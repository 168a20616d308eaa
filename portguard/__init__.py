"""
PortGuard - a port-bound process supervisor.

Reclaims a TCP port from whatever process holds it, launches a managed
child process with inherited stdio, relays SIGINT/SIGTERM to it and exits
with the child's exit code.
"""

__version__ = "0.1.0"
