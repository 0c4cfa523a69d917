"""
Connectivity Tracking

Process-wide view of whether the network is up and whether the remote
reasoning service answered recently. Updated by platform online/offline
signals, by ConnectionManager call outcomes and by an optional periodic
re-check loop; read as an immutable snapshot before every send.
"""

import asyncio
import socket
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple
from urllib.parse import urlparse

from language_peer.logger import get_logger

logger = get_logger("language_peer.connectivity")

DEFAULT_COOLDOWN_S = 5.0
DEFAULT_RECHECK_INTERVAL_S = 30.0


@dataclass(frozen=True)
class ConnectivityState:
    """Snapshot of connectivity at one instant."""
    network_online: bool = True
    remote_service_reachable: bool = True
    last_remote_failure: Optional[float] = None


def probe_network(host: str = "8.8.8.8", port: int = 53, timeout: float = 0.5) -> bool:
    """Lightweight TCP probe used by the re-check loop."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def reachability_target(url: str) -> Tuple[str, int]:
    """(host, port) to dial when checking that a service URL is reachable."""
    parsed = urlparse(url)
    if not parsed.hostname:
        raise ValueError(f"No host in URL: {url!r}")
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    return parsed.hostname, port


class ConnectivityMonitor:
    """
    Owns the mutable connectivity state.

    Args:
        cooldown_s: how long the remote service is skipped after a failure
        clock: monotonic clock, injectable for tests
        network_probe: blocking reachability check used by recheck()
        remote_probe: async health check of the remote service, optional
    """

    def __init__(
        self,
        cooldown_s: float = DEFAULT_COOLDOWN_S,
        clock: Callable[[], float] = time.monotonic,
        network_probe: Optional[Callable[[], bool]] = probe_network,
        remote_probe: Optional[Callable[[], Awaitable[bool]]] = None,
        recheck_interval_s: float = DEFAULT_RECHECK_INTERVAL_S,
    ):
        self.cooldown_s = cooldown_s
        self.clock = clock
        self.network_probe = network_probe
        self.remote_probe = remote_probe
        self.recheck_interval_s = recheck_interval_s
        self._state = ConnectivityState()
        self._recheck_task: Optional[asyncio.Task] = None
        self.running = False

    def snapshot(self) -> ConnectivityState:
        return self._state

    # -- Update contract -------------------------------------------------

    def set_network_online(self, online: bool) -> None:
        """Platform online/offline signal."""
        if online != self._state.network_online:
            logger.info(f"Network status changed: {'ONLINE' if online else 'OFFLINE'}")
        self._state = ConnectivityState(
            network_online=online,
            remote_service_reachable=self._state.remote_service_reachable,
            last_remote_failure=self._state.last_remote_failure,
        )

    def record_remote_success(self) -> None:
        if not self._state.remote_service_reachable:
            logger.success("Remote reasoning service reachable again")
        self._state = ConnectivityState(
            network_online=True,
            remote_service_reachable=True,
            last_remote_failure=None,
        )

    def record_remote_failure(self) -> None:
        self._state = ConnectivityState(
            network_online=self._state.network_online,
            remote_service_reachable=False,
            last_remote_failure=self.clock(),
        )

    # -- Queries -----------------------------------------------------------

    def in_cooldown(self) -> bool:
        """True while a recent remote failure should suppress remote attempts."""
        failed_at = self._state.last_remote_failure
        if failed_at is None:
            return False
        return (self.clock() - failed_at) < self.cooldown_s

    def should_attempt_remote(self) -> bool:
        return self._state.network_online and not self.in_cooldown()

    # -- Periodic re-check -------------------------------------------------

    async def recheck(self) -> ConnectivityState:
        """Probe network (and remote health if configured) once."""
        if self.network_probe is not None:
            online = await asyncio.to_thread(self.network_probe)
            self.set_network_online(online)

        if self.remote_probe is not None and self._state.network_online and not self.in_cooldown():
            if await self.remote_probe():
                self.record_remote_success()
            else:
                self.record_remote_failure()
        return self._state

    async def start(self) -> None:
        """Start the periodic re-check loop."""
        if self.running:
            logger.warning("Re-check loop already running")
            return
        self.running = True
        self._recheck_task = asyncio.create_task(self._recheck_loop())
        logger.info(f"Connectivity re-check started (interval: {self.recheck_interval_s}s)")

    async def stop(self) -> None:
        """Stop the periodic re-check loop."""
        self.running = False
        if self._recheck_task:
            self._recheck_task.cancel()
            try:
                await self._recheck_task
            except asyncio.CancelledError:
                pass
            self._recheck_task = None
        logger.info("Connectivity re-check stopped")

    async def _recheck_loop(self) -> None:
        while self.running:
            try:
                await self.recheck()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Connectivity re-check failed", error=e)
            await asyncio.sleep(self.recheck_interval_s)


_monitor: Optional[ConnectivityMonitor] = None


def get_connectivity_monitor() -> ConnectivityMonitor:
    """Get or create the process-wide monitor."""
    global _monitor
    if _monitor is None:
        _monitor = ConnectivityMonitor()
    return _monitor


def set_connectivity_monitor(monitor: Optional[ConnectivityMonitor]) -> None:
    """Replace the process-wide monitor (None resets to lazy default)."""
    global _monitor
    _monitor = monitor
