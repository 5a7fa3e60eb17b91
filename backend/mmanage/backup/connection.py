"""
Cassandra connection lifecycle for the backup subsystem.

What:  Owns the driver ``Cluster``/``Session`` pair and the connectivity flag.
How:   ``connect()`` opens a session in a worker thread (the driver call
       blocks) and retries forever with a constant delay through tenacity.
       After the session exists, the driver reconnects hosts by itself; a
       host-state listener mirrors those events into our flag.

State Machine:
    DISCONNECTED ──connect()──▶ CONNECTING ──success──▶ CONNECTED
                                  │   ▲                    │
                                  └───┘ failure,           │ all hosts down
                                   wait retry_delay        ▼
                 CONNECTED ◀──── any host up ──────── DISCONNECTED

    Every entry into CONNECTED notifies the registered listeners once.

Driver callbacks run on driver threads; they are marshalled onto the event
loop with ``call_soon_threadsafe`` so state only changes on the loop.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Set

from cassandra.policies import HostStateListener
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_never,
    wait_fixed,
)

from mmanage.config import Settings

logger = logging.getLogger(__name__)

ClusterFactory = Callable[[], Any]
SleepFunc = Callable[[float], Awaitable[None]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def build_cluster(settings: Settings) -> Any:
    """
    Create a driver ``Cluster`` from settings without connecting it.

    The driver module is imported here rather than at module level because
    importing ``cassandra.cluster`` selects an I/O reactor, which only matters
    once a real connection is wanted.
    """
    from cassandra.auth import PlainTextAuthProvider
    from cassandra.cluster import EXEC_PROFILE_DEFAULT, Cluster, ExecutionProfile
    from cassandra.policies import DCAwareRoundRobinPolicy

    profile = ExecutionProfile(
        load_balancing_policy=DCAwareRoundRobinPolicy(local_dc=settings.cassandra_local_dc),
        request_timeout=settings.cassandra_read_timeout,
    )
    auth_provider = None
    if settings.cassandra_username:
        auth_provider = PlainTextAuthProvider(
            username=settings.cassandra_username,
            password=settings.cassandra_password,
        )

    return Cluster(
        contact_points=settings.cassandra_contact_points_list,
        port=settings.cassandra_port,
        execution_profiles={EXEC_PROFILE_DEFAULT: profile},
        auth_provider=auth_provider,
        connect_timeout=settings.cassandra_connect_timeout,
        control_connection_timeout=settings.cassandra_connect_timeout,
    )


class _HostListener(HostStateListener):
    """Forwards driver host events to the connection manager."""

    def __init__(self, manager: "ConnectionManager"):
        self._manager = manager

    def on_up(self, host):
        self._manager._on_host_event(host)

    def on_down(self, host):
        self._manager._on_host_event(host)

    def on_add(self, host):
        self._manager._on_host_event(host)

    def on_remove(self, host):
        self._manager._on_host_event(host)


class ConnectionManager:
    """
    Connects to the backup keyspace and reports whether writes can be issued.

    Args:
        keyspace:        Keyspace the session is bound to.
        cluster_factory: Returns a fresh, unconnected ``Cluster``. A new one is
                         built per attempt since a failed cluster is shut down.
        retry_delay:     Seconds between connection attempts.
        sleep:           Coroutine used to wait between attempts (tests pass a
                         simulated clock).
    """

    def __init__(
        self,
        keyspace: str,
        cluster_factory: ClusterFactory,
        retry_delay: float = 30.0,
        sleep: Optional[SleepFunc] = None,
    ):
        self.keyspace = keyspace
        self.retry_delay = retry_delay
        self._cluster_factory = cluster_factory
        self._sleep = sleep or asyncio.sleep

        self._state = ConnectionState.DISCONNECTED
        self._cluster: Any = None
        self.session: Any = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._listeners: List[Callable[[], None]] = []
        self._late_shutdowns: Set[asyncio.Task] = set()
        self.attempts = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cluster_factory: Optional[ClusterFactory] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> "ConnectionManager":
        return cls(
            keyspace=settings.cassandra_keyspace,
            cluster_factory=cluster_factory or (lambda: build_cluster(settings)),
            retry_delay=settings.backup_reconnect_delay,
            sleep=sleep,
        )

    # ── State ─────────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def add_connected_listener(self, callback: Callable[[], None]) -> None:
        """Register ``callback`` to run on every transition into CONNECTED."""
        self._listeners.append(callback)

    @property
    def keyspace_metadata(self) -> Any:
        """Driver metadata for the bound keyspace, or None when unavailable."""
        if self._cluster is None:
            return None
        metadata = getattr(self._cluster, "metadata", None)
        keyspaces = getattr(metadata, "keyspaces", None) or {}
        return keyspaces.get(self.keyspace)

    # ── Connect / close ───────────────────────────────────────────────────

    async def connect(self) -> None:
        """
        Open the session, retrying every ``retry_delay`` seconds until it works.

        No-op when already connected or while another call is in flight
        (including its wait between attempts). Failures are logged, never
        raised; only cancellation ends the loop early.
        """
        if self._state is not ConnectionState.DISCONNECTED or self._cluster is not None:
            return

        self._state = ConnectionState.CONNECTING
        self._loop = asyncio.get_running_loop()
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(Exception),
                stop=stop_never,
                wait=wait_fixed(self.retry_delay),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                sleep=self._sleep,
            ):
                with attempt:
                    await self._open_session()
        except asyncio.CancelledError:
            self._state = ConnectionState.DISCONNECTED
            raise

        logger.info(
            "Backup store connected (keyspace=%s, attempts=%d)", self.keyspace, self.attempts
        )
        self._set_connected()

    async def _open_session(self) -> None:
        self.attempts += 1
        cluster = self._cluster_factory()
        # Shielded so a cancelled attempt can still see the thread finish
        connecting = self._loop.run_in_executor(None, cluster.connect, self.keyspace)
        try:
            session = await asyncio.shield(connecting)
        except asyncio.CancelledError:
            connecting.add_done_callback(lambda _: self._discard_late_cluster(cluster, connecting))
            raise
        except Exception:
            await self._shutdown_cluster(cluster)
            raise

        cluster.register_listener(_HostListener(self))
        self._cluster = cluster
        self.session = session

    def _discard_late_cluster(self, cluster: Any, connecting: asyncio.Future) -> None:
        """Shut down a cluster whose connect returned after its attempt was cancelled."""
        if not connecting.cancelled():
            # Marks a late connect failure as retrieved
            connecting.exception()
        logger.debug("Shutting down cluster from a cancelled connect attempt")
        task = self._loop.create_task(self._shutdown_cluster(cluster))
        self._late_shutdowns.add(task)
        task.add_done_callback(self._late_shutdowns.discard)

    async def close(self) -> None:
        """Shut the driver down. Safe to call in any state."""
        cluster = self._cluster
        self._cluster = None
        self.session = None
        self._state = ConnectionState.DISCONNECTED
        if cluster is not None:
            await self._shutdown_cluster(cluster)
            logger.info("Backup store connection closed")

    async def _shutdown_cluster(self, cluster: Any) -> None:
        loop = self._loop or asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, cluster.shutdown)
        except Exception as e:
            logger.debug("Ignoring error while shutting down cluster: %s", e)

    # ── Host events ───────────────────────────────────────────────────────

    def _on_host_event(self, host: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._refresh_state)

    def _refresh_state(self) -> None:
        """Recompute connectivity from the driver's view of host liveness."""
        if self._cluster is None or self._state is ConnectionState.CONNECTING:
            return

        any_up = any(getattr(h, "is_up", False) for h in self._cluster.metadata.all_hosts())
        if any_up and self._state is ConnectionState.DISCONNECTED:
            logger.info("Backup store reachable again")
            self._set_connected()
        elif not any_up and self._state is ConnectionState.CONNECTED:
            logger.warning("Backup store connection lost; buffering records")
            self._state = ConnectionState.DISCONNECTED

    def _set_connected(self) -> None:
        self._state = ConnectionState.CONNECTED
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                logger.exception("Connected listener failed")
