"""
Allow-list of backup tables and their columns.

Inserts are built only from names declared here, never from whatever keys
a record happens to carry. The registry is validated once at startup and,
when the driver has loaded keyspace metadata, compared with the live schema.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from mmanage.backup.sanitizer import BACKUP_TIMESTAMP_FIELD
from mmanage.exceptions import BackupConfigurationError, UnknownBackupTableError

logger = logging.getLogger(__name__)

# Unquoted CQL identifiers are case-insensitive; only the lowercase form is accepted
_IDENTIFIER = re.compile(r"^[a-z][a-z0-9_]{0,47}$")

DEFAULT_BACKUP_TABLES: Dict[str, Tuple[str, ...]] = {
    "backup_users": ("id", "email", "name", "created_at", BACKUP_TIMESTAMP_FIELD),
}


class BackupTableRegistry:
    """Maps each backup table to the ordered tuple of columns it accepts."""

    def __init__(self, tables: Mapping[str, Iterable[str]] = DEFAULT_BACKUP_TABLES):
        self._tables: Dict[str, Tuple[str, ...]] = {
            name: tuple(columns) for name, columns in tables.items()
        }

    @property
    def tables(self) -> Dict[str, Tuple[str, ...]]:
        return dict(self._tables)

    def __contains__(self, table: object) -> bool:
        return table in self._tables

    def validate(self) -> None:
        """
        Check every table and column name.

        Raises:
            BackupConfigurationError: listing all offending names at once.
        """
        problems: List[str] = []
        for table, columns in self._tables.items():
            if not _IDENTIFIER.match(table):
                problems.append(f"invalid table name {table!r}")
            if not columns:
                problems.append(f"table {table!r} declares no columns")
            for column in columns:
                if not _IDENTIFIER.match(column):
                    problems.append(f"invalid column name {column!r} in {table!r}")
            if len(set(columns)) != len(columns):
                problems.append(f"duplicate columns in {table!r}")

        if problems:
            raise BackupConfigurationError(
                message="Invalid backup table configuration: " + "; ".join(problems),
                context={"problems": problems},
            )

    def check_against_metadata(self, keyspace_metadata: Any) -> List[str]:
        """
        Compare the registry with Cassandra keyspace metadata.

        Mismatches are logged and returned; they do not stop the service
        since a missing table only costs the writes aimed at it.
        """
        if keyspace_metadata is None:
            return []

        live_tables = getattr(keyspace_metadata, "tables", {}) or {}
        problems: List[str] = []
        for table, columns in self._tables.items():
            live = live_tables.get(table)
            if live is None:
                problems.append(f"table {table!r} does not exist in the keyspace")
                continue
            missing = [c for c in columns if c not in live.columns]
            if missing:
                problems.append(f"table {table!r} lacks columns {missing}")

        for problem in problems:
            logger.warning("Backup schema check: %s", problem)
        return problems

    def columns_for(self, table: str, record: Mapping[str, Any]) -> List[str]:
        """
        Columns of ``table`` present in ``record``, in registry order.

        Raises:
            UnknownBackupTableError: ``table`` is not registered.
        """
        try:
            allowed = self._tables[table]
        except KeyError:
            raise UnknownBackupTableError(table) from None

        ignored = set(record) - set(allowed)
        if ignored:
            logger.debug("Ignoring non-registered fields for %s: %s", table, sorted(ignored))
        return [column for column in allowed if column in record]
