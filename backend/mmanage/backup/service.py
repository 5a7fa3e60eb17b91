"""
Backup replication service.

What:  Mirrors newly created primary-store records into Cassandra without
       blocking the request that created them.
Who:   Built once in the FastAPI lifespan, stored on ``app.state`` and handed
       to services through a dependency.
When:  ``backup()`` is called right after a successful primary-store write.

Pipeline:
    backup(table, record)                        (sync, never raises)
        │ sanitize
        ├── connected ──▶ background task ──▶ BackupWriter.write
        │                 (failures logged in the done-callback)
        └── otherwise ──▶ BackupQueue.offer      (full → dropped)

    on connect / reconnect:
        drain task ──▶ pop oldest ──▶ await write ──▶ … until empty or offline

Delivery is at-most-once and best-effort. Nothing here ever changes an
HTTP response.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Mapping, Optional, Set

from mmanage.backup.connection import ClusterFactory, ConnectionManager, SleepFunc
from mmanage.backup.queue import BackupQueue, QueuedItem
from mmanage.backup.registry import BackupTableRegistry
from mmanage.backup.sanitizer import sanitize
from mmanage.backup.writer import BackupWriter
from mmanage.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class BackupStats:
    """Counters since process start."""

    sent: int = 0
    queued: int = 0
    dropped: int = 0
    failed: int = 0


@dataclass
class BackupStatus:
    """Point-in-time view used by the health endpoint."""

    state: str
    queue_depth: int
    queue_capacity: int
    sent: int
    queued: int
    dropped: int
    failed: int

    def as_dict(self) -> dict:
        return asdict(self)


class BackupService:
    """
    Dispatcher and queue drainer in front of a ``BackupWriter``.

    Args:
        connection:       Owns the Cassandra session and connectivity flag.
        writer:           Executes one insert per record.
        queue:            Buffer used while disconnected.
        registry:         Allow-listed tables, validated in ``start()``.
        strict_ordering:  While buffered records exist, new ones join the
                          queue instead of overtaking it. When that queue is
                          full and the store is connected, the record is
                          sent directly rather than dropped.
        shutdown_timeout: Seconds ``stop()`` waits for pending writes.
        enabled:          When False, ``backup()`` is a no-op.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        writer: BackupWriter,
        queue: BackupQueue,
        registry: Optional[BackupTableRegistry] = None,
        strict_ordering: bool = True,
        shutdown_timeout: float = 5.0,
        enabled: bool = True,
    ):
        self._connection = connection
        self._writer = writer
        self._queue = queue
        self._registry = registry or BackupTableRegistry()
        self.strict_ordering = strict_ordering
        self.shutdown_timeout = shutdown_timeout
        self.enabled = enabled

        self.stats = BackupStats()
        self._draining = False
        self._tasks: Set[asyncio.Task] = set()
        self._connect_task: Optional[asyncio.Task] = None

        self._connection.add_connected_listener(self._on_connected)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: Optional[BackupTableRegistry] = None,
        cluster_factory: Optional[ClusterFactory] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> "BackupService":
        registry = registry or BackupTableRegistry()
        connection = ConnectionManager.from_settings(
            settings, cluster_factory=cluster_factory, sleep=sleep
        )
        return cls(
            connection=connection,
            writer=BackupWriter(connection, registry, ttl_seconds=settings.backup_ttl_seconds),
            queue=BackupQueue(
                capacity=settings.backup_queue_capacity,
                overflow=settings.backup_queue_overflow,
            ),
            registry=registry,
            strict_ordering=settings.backup_strict_ordering,
            shutdown_timeout=settings.backup_shutdown_timeout,
            enabled=settings.backup_enabled,
        )

    # ── Public interface ──────────────────────────────────────────────────

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def queue(self) -> BackupQueue:
        return self._queue

    def is_connected(self) -> bool:
        return self._connection.is_connected()

    def backup(self, table: str, record: Mapping[str, Any]) -> None:
        """
        Replicate ``record`` into ``table`` in the background.

        Returns before any network I/O happens and never raises. The record
        is either handed to a write task, buffered, or dropped.
        """
        if not self.enabled:
            return
        try:
            safe = sanitize(record)
            connected = self._connection.is_connected()
            if connected and (not self._must_queue() or self._queue.is_full()):
                self._spawn(self._send(table, safe), name=f"backup:{table}")
                return
            self._enqueue(QueuedItem(table, safe))
            if connected:
                self._start_drain()
        except Exception:
            logger.exception("Backup dispatch failed for %s; record dropped", table)

    async def start(self) -> None:
        """Validate the table registry and begin connecting in the background."""
        if not self.enabled:
            logger.info("Backup replication disabled")
            return

        self._registry.validate()
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(
                self._connection.connect(), name="backup-connect"
            )
            self._connect_task.add_done_callback(self._on_connect_done)
        logger.info(
            "Backup replication started (tables=%s, queue_capacity=%d)",
            ", ".join(self._registry.tables),
            self._queue.capacity,
        )

    async def stop(self) -> None:
        """
        Flush what can be flushed within ``shutdown_timeout`` and disconnect.

        Buffered records left after the timeout are discarded with a warning.
        """
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            await asyncio.gather(self._connect_task, return_exceptions=True)

        if self._connection.is_connected() and len(self._queue):
            self._start_drain()

        finished = await self.join(timeout=self.shutdown_timeout)
        if not finished:
            logger.warning("Backup writes still pending at shutdown; cancelling")
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if len(self._queue):
            logger.warning("Discarding %d buffered backup records at shutdown", len(self._queue))

        await self._connection.close()

    async def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until no write or drain task is running.

        Returns False if ``timeout`` elapsed first.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(set(self._tasks), timeout=remaining)
        return True

    def status(self) -> BackupStatus:
        if not self.enabled:
            state = "disabled"
        else:
            state = self._connection.state.value
        return BackupStatus(
            state=state,
            queue_depth=len(self._queue),
            queue_capacity=self._queue.capacity,
            **asdict(self.stats),
        )

    # ── Dispatch ──────────────────────────────────────────────────────────

    def _must_queue(self) -> bool:
        return self.strict_ordering and (self._draining or len(self._queue) > 0)

    def _enqueue(self, item: QueuedItem) -> None:
        before = self._queue.dropped
        stored = self._queue.offer(item)
        self.stats.dropped += self._queue.dropped - before
        if stored:
            self.stats.queued += 1

    async def _send(self, table: str, record: dict) -> None:
        await self._writer.write(table, record)
        self.stats.sent += 1

    def _spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        """Run ``coro`` as a tracked background task whose failure is only logged."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.stats.failed += 1
            logger.error("Backup task %s failed: %s", task.get_name(), exc)

    # ── Drain ─────────────────────────────────────────────────────────────

    def _on_connected(self) -> None:
        self._check_schema()
        self._start_drain()

    def _check_schema(self) -> None:
        try:
            self._registry.check_against_metadata(self._connection.keyspace_metadata)
        except Exception as e:
            logger.warning("Backup schema check skipped: %s", e)

    def _start_drain(self) -> None:
        if self._draining or not len(self._queue):
            return
        self._draining = True
        self._spawn(self._drain(), name="backup-drain")

    async def _drain(self) -> int:
        """
        Write buffered records one at a time, oldest first.

        Stops when the queue is empty or the connection drops. A failed item
        is logged and not retried.
        """
        written = 0
        failed = 0
        try:
            while len(self._queue) and self._connection.is_connected():
                item = self._queue.pop()
                try:
                    await self._writer.write(item.table, item.record)
                except Exception as e:
                    failed += 1
                    self.stats.failed += 1
                    logger.warning("Dropping buffered backup for %s: %s", item.table, e)
                else:
                    written += 1
                    self.stats.sent += 1
        finally:
            self._draining = False

        logger.info(
            "Backup queue drain finished: written=%d failed=%d remaining=%d",
            written,
            failed,
            len(self._queue),
        )
        return written

    def _on_connect_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Backup connection loop stopped: %s", exc)
