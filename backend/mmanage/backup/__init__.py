"""
Asynchronous backup replication into Cassandra.

    service     BackupService: dispatcher, queue drainer, lifecycle
    connection  ConnectionManager: driver session, retry loop, host events
    writer      BackupWriter: one prepared INSERT ... USING TTL per record
    queue       BackupQueue: bounded FIFO used while disconnected
    registry    BackupTableRegistry: allow-listed tables and columns
    sanitizer   sanitize(): JSON-safe copy of a record plus backup_timestamp
"""

from mmanage.backup.connection import ConnectionManager, ConnectionState
from mmanage.backup.queue import BackupQueue, QueuedItem
from mmanage.backup.registry import DEFAULT_BACKUP_TABLES, BackupTableRegistry
from mmanage.backup.sanitizer import BACKUP_TIMESTAMP_FIELD, sanitize
from mmanage.backup.service import BackupService, BackupStatus
from mmanage.backup.writer import BackupWriter, build_insert

__all__ = [
    "BACKUP_TIMESTAMP_FIELD",
    "DEFAULT_BACKUP_TABLES",
    "BackupQueue",
    "BackupService",
    "BackupStatus",
    "BackupTableRegistry",
    "BackupWriter",
    "ConnectionManager",
    "ConnectionState",
    "QueuedItem",
    "build_insert",
    "sanitize",
]
