"""
Bounded in-memory buffer for records that could not be sent yet.

Holds ``QueuedItem`` pairs while the backup store is unreachable. Contents
are not persisted: a process restart loses them.

Overflow strategies:
    drop_newest  the incoming item is discarded (default)
    drop_oldest  the head is evicted to make room (ring buffer)

Only the event loop touches the queue, so no lock is taken.
"""

import logging
from collections import deque
from typing import Any, Deque, Dict, List, Literal, NamedTuple, Optional

logger = logging.getLogger(__name__)

OverflowStrategy = Literal["drop_newest", "drop_oldest"]


class QueuedItem(NamedTuple):
    """A sanitized record waiting for its target table."""

    table: str
    record: Dict[str, Any]


class BackupQueue:
    """FIFO with a hard capacity; insertion order is drain order."""

    def __init__(self, capacity: int = 1000, overflow: OverflowStrategy = "drop_newest"):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if overflow not in ("drop_newest", "drop_oldest"):
            raise ValueError(f"unknown overflow strategy {overflow!r}")

        self._capacity = capacity
        self._overflow = overflow
        self._items: Deque[QueuedItem] = deque()
        self._dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def dropped(self) -> int:
        """Items discarded because the queue was full."""
        return self._dropped

    def __len__(self) -> int:
        return len(self._items)

    def is_full(self) -> bool:
        return len(self._items) >= self._capacity

    def offer(self, item: QueuedItem) -> bool:
        """
        Append ``item`` unless the overflow policy rejects it.

        Returns True when ``item`` was stored. With ``drop_oldest`` the new
        item is always stored and the head is discarded instead.
        """
        if len(self._items) < self._capacity:
            self._items.append(item)
            return True

        self._dropped += 1
        if self._overflow == "drop_oldest":
            evicted = self._items.popleft()
            self._items.append(item)
            logger.debug("Backup queue full, evicted oldest record for %s", evicted.table)
            return True

        logger.debug("Backup queue full, discarded record for %s", item.table)
        return False

    def pop(self) -> Optional[QueuedItem]:
        """Remove and return the oldest item, or None when empty."""
        if not self._items:
            return None
        return self._items.popleft()

    def snapshot(self) -> List[QueuedItem]:
        """Current contents, oldest first. A copy; mutating it has no effect."""
        return list(self._items)
