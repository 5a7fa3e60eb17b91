"""
Backup write executor.

Issues one parameterized INSERT per record:

    INSERT INTO backup_users (id, email, backup_timestamp)
    VALUES (?, ?, ?) USING TTL ?

Table and column names come from the ``BackupTableRegistry`` (validated
identifiers), values are always bound. Prepared statements are cached per
(table, columns) for the lifetime of a session.

Errors are not handled here: every failure surfaces as ``BackupWriteError``
for the caller to log.
"""

import asyncio
import logging
from typing import Any, Dict, Sequence, Tuple

from mmanage.backup.connection import ConnectionManager
from mmanage.backup.registry import BackupTableRegistry
from mmanage.exceptions import BackupError, BackupWriteError

logger = logging.getLogger(__name__)

ONE_YEAR_SECONDS = 31_536_000


def build_insert(table: str, columns: Sequence[str]) -> str:
    """INSERT with one positional placeholder per column plus the TTL."""
    column_list = ", ".join(columns)
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table} ({column_list}) VALUES ({placeholders}) USING TTL ?"


def _as_asyncio_future(response_future: Any, loop: asyncio.AbstractEventLoop) -> asyncio.Future:
    """Adapt a driver ``ResponseFuture`` (callbacks on driver threads) to asyncio."""
    aio_future = loop.create_future()

    def _resolve(result: Any) -> None:
        if not aio_future.done():
            aio_future.set_result(result)

    def _reject(exc: BaseException) -> None:
        if not aio_future.done():
            aio_future.set_exception(exc)

    response_future.add_callbacks(
        callback=lambda result: loop.call_soon_threadsafe(_resolve, result),
        errback=lambda exc: loop.call_soon_threadsafe(_reject, exc),
    )
    return aio_future


class BackupWriter:
    """Writes sanitized records to their backup table with a server-side TTL."""

    def __init__(
        self,
        connection: ConnectionManager,
        registry: BackupTableRegistry,
        ttl_seconds: int = ONE_YEAR_SECONDS,
    ):
        self._connection = connection
        self._registry = registry
        self.ttl_seconds = ttl_seconds
        self._prepared: Dict[Tuple[str, Tuple[str, ...]], Any] = {}
        self._prepared_for: Any = None

    async def write(self, table: str, record: Dict[str, Any]) -> None:
        """
        Insert ``record`` into ``table``.

        Raises:
            UnknownBackupTableError: ``table`` is not in the registry.
            BackupWriteError: no session, nothing to write, or the driver failed.
        """
        columns = self._registry.columns_for(table, record)
        if not columns:
            raise BackupWriteError(message="Record has no registered columns", table=table)

        session = self._connection.session
        if session is None:
            raise BackupWriteError(message="Backup store session is not open", table=table)

        loop = asyncio.get_running_loop()
        try:
            statement = await self._prepare(session, table, tuple(columns), loop)
            values = [record[column] for column in columns]
            values.append(self.ttl_seconds)
            await _as_asyncio_future(session.execute_async(statement, values), loop)
        except BackupError:
            raise
        except Exception as e:
            raise BackupWriteError(
                message=f"Insert into {table} failed: {e}",
                table=table,
                context={"error_type": type(e).__name__},
            ) from e

        logger.debug("Backed up record into %s (%d columns)", table, len(columns))

    async def _prepare(
        self,
        session: Any,
        table: str,
        columns: Tuple[str, ...],
        loop: asyncio.AbstractEventLoop,
    ) -> Any:
        # Statements prepared on a previous session are not reusable
        if self._prepared_for is not session:
            self._prepared.clear()
            self._prepared_for = session

        key = (table, columns)
        statement = self._prepared.get(key)
        if statement is None:
            query = build_insert(table, columns)
            statement = await loop.run_in_executor(None, session.prepare, query)
            self._prepared[key] = statement
        return statement
