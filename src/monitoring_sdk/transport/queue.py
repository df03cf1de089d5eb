"""Priority-ordered delivery queue with pluggable persistence.

Items are kept sorted by priority (lower first); items with equal priority
keep their insertion order. Every mutation is followed by a write of the whole
queue to the configured :class:`~monitoring_sdk.transport.storage.Storage`, so
the queue can be restored after a restart. Storage failures are logged and
never propagate.
"""

from __future__ import annotations

import bisect
import json
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from monitoring_sdk.logging import get_logger
from monitoring_sdk.transport.errors import InvalidPayloadError, QueueDestroyedError
from monitoring_sdk.transport.models import Logger, QueueItem, now_ms
from monitoring_sdk.transport.storage import MemoryStorage, Storage

_log = get_logger("monitoring_sdk.transport.queue")

DEFAULT_STORAGE_KEY = "queue_data"


def serialize_items(items: Iterable[QueueItem]) -> str:
    """Serialise queue items to the persisted JSON form."""
    return json.dumps([item.to_dict() for item in items])


def check_payload(payload: Any) -> None:
    """Reject payloads that cannot be persisted as JSON.

    JSON has no tuples and only string object keys, so a tuple is restored as
    a list and an ``int`` key as a string. Anything ``json`` cannot encode at
    all (``datetime``, ``set``, arbitrary objects) is refused.

    Raises:
        InvalidPayloadError: If ``payload`` is not JSON-serialisable.
    """
    try:
        json.dumps(payload)
    except (TypeError, ValueError) as e:
        raise InvalidPayloadError(f"Payload is not JSON-serialisable: {e}") from e


def deserialize_items(raw: str) -> list[QueueItem]:
    """Parse the persisted JSON form back into queue items."""
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError("persisted queue must be a JSON list")
    return [QueueItem.from_dict(entry) for entry in data]


class DeliveryQueue:
    """In-memory priority queue mirrored to a key-value store.

    Args:
        storage: Persistence backend. Defaults to :class:`MemoryStorage`.
        max_size: Maximum number of items; the lowest-precedence item is
            evicted when exceeded.
        max_age: Seconds after which :meth:`cleanup` drops an item.
        default_priority: Priority used when ``enqueue`` gets none.
        storage_key: Key under which the queue is persisted.
        persistent: When ``False`` the queue never touches storage.
        logger: Logger with ``debug/info/warning/error`` methods.
    """

    def __init__(
        self,
        storage: Storage | None = None,
        *,
        max_size: int = 1000,
        max_age: float = 86400.0,
        default_priority: int = 0,
        storage_key: str = DEFAULT_STORAGE_KEY,
        persistent: bool = True,
        logger: Logger | None = None,
    ) -> None:
        self._storage: Storage = storage if storage is not None else MemoryStorage()
        self._items: list[QueueItem] = []
        self._destroyed = False
        self.max_size = max_size
        self.max_age = max_age
        self.default_priority = default_priority
        self.storage_key = storage_key
        self.persistent = persistent
        self.log: Logger = logger if logger is not None else _log

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return any(item.id == item_id for item in self._items)

    @property
    def is_empty(self) -> bool:
        return not self._items

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self.max_size

    def peek(self) -> QueueItem | None:
        """Return a copy of the next item without removing it."""
        return replace(self._items[0]) if self._items else None

    def get(self, item_id: str) -> QueueItem | None:
        """Return a copy of the item with ``item_id``."""
        for item in self._items:
            if item.id == item_id:
                return replace(item)
        return None

    def get_by_priority(self, priority: int) -> list[QueueItem]:
        return [replace(item) for item in self._items if item.priority == priority]

    def get_older_than(self, age_seconds: float) -> list[QueueItem]:
        cutoff = now_ms() - int(age_seconds * 1000)
        return [replace(item) for item in self._items if item.created_at < cutoff]

    def get_high_retry_items(self, min_retry_count: int) -> list[QueueItem]:
        return [replace(item) for item in self._items if item.retry_count >= min_retry_count]

    def export(self) -> list[QueueItem]:
        """Return copies of all items in delivery order."""
        return [replace(item) for item in self._items]

    def get_stats(self) -> dict[str, Any]:
        """Return size, age and priority statistics."""
        if not self._items:
            return {
                "size": 0,
                "oldest_timestamp": None,
                "newest_timestamp": None,
                "priority_distribution": {},
                "average_age_ms": 0.0,
            }

        now = now_ms()
        timestamps = [item.created_at for item in self._items]
        distribution: dict[int, int] = {}
        for item in self._items:
            distribution[item.priority] = distribution.get(item.priority, 0) + 1

        return {
            "size": len(self._items),
            "oldest_timestamp": min(timestamps),
            "newest_timestamp": max(timestamps),
            "priority_distribution": distribution,
            "average_age_ms": sum(now - ts for ts in timestamps) / len(timestamps),
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def enqueue(self, payload: Any, priority: int | None = None) -> QueueItem:
        """Create an item for ``payload``, insert it in priority order and persist.

        Raises:
            QueueDestroyedError: If the queue has been destroyed.
            InvalidPayloadError: If ``payload`` is not JSON-serialisable.
        """
        self._ensure_alive()
        check_payload(payload)
        item = QueueItem(
            payload=payload,
            priority=self.default_priority if priority is None else priority,
        )
        self._insert(item)
        self._enforce_size_limit()
        await self.persist()
        self.log.debug(
            "queue_item_enqueued",
            item_id=item.id,
            priority=item.priority,
            queue_size=len(self._items),
        )
        return item

    async def enqueue_batch(
        self, entries: Iterable[tuple[Any, int | None]]
    ) -> list[QueueItem]:
        """Insert several ``(payload, priority)`` pairs with a single persist.

        Nothing is inserted if any payload is rejected.
        """
        self._ensure_alive()
        pending = list(entries)
        for payload, _ in pending:
            check_payload(payload)
        if not pending:
            return []

        created = [
            QueueItem(
                payload=payload,
                priority=self.default_priority if priority is None else priority,
            )
            for payload, priority in pending
        ]
        for item in created:
            self._insert(item)

        self._enforce_size_limit()
        await self.persist()
        self.log.debug("queue_batch_enqueued", count=len(created), queue_size=len(self._items))
        return created

    async def reinsert(self, items: Iterable[QueueItem]) -> None:
        """Put existing items back in their priority positions."""
        self._ensure_alive()
        for item in items:
            self._insert(item)
        self._enforce_size_limit()
        await self.persist()

    async def take(self, item_id: str) -> QueueItem | None:
        """Remove and return the item with ``item_id``."""
        for index, item in enumerate(self._items):
            if item.id == item_id:
                del self._items[index]
                await self.persist()
                return item
        return None

    async def dequeue(self) -> QueueItem | None:
        """Remove and return the highest-precedence item."""
        if self._destroyed or not self._items:
            return None
        item = self._items.pop(0)
        await self.persist()
        self.log.debug("queue_item_dequeued", item_id=item.id, queue_size=len(self._items))
        return item

    async def dequeue_batch(self, count: int) -> list[QueueItem]:
        """Remove and return up to ``count`` items in delivery order."""
        if self._destroyed or count <= 0 or not self._items:
            return []

        taken = self._items[:count]
        del self._items[:count]
        await self.persist()
        self.log.debug("queue_batch_dequeued", count=len(taken), queue_size=len(self._items))
        return taken

    def peek_batch(self, count: int, *, exclude: Iterable[str] = ()) -> list[QueueItem]:
        """Return copies of up to ``count`` items in delivery order, leaving them queued.

        Items whose id is in ``exclude`` are skipped.
        """
        excluded = set(exclude)
        batch: list[QueueItem] = []
        for item in self._items:
            if len(batch) >= count:
                break
            if item.id not in excluded:
                batch.append(replace(item))
        return batch

    async def remove_many(self, item_ids: Iterable[str]) -> int:
        """Remove every item in ``item_ids`` with a single persist."""
        doomed = set(item_ids)
        before = len(self._items)
        self._items = [item for item in self._items if item.id not in doomed]
        removed = before - len(self._items)
        if removed:
            await self.persist()
        return removed

    async def remove(self, item_id: str) -> bool:
        """Remove the item with ``item_id``; returns whether it existed."""
        if await self.take(item_id) is None:
            return False
        self.log.debug("queue_item_removed", item_id=item_id, queue_size=len(self._items))
        return True

    async def update_priority(self, item_id: str, priority: int) -> bool:
        """Move an item to a new priority position."""
        for index, item in enumerate(self._items):
            if item.id == item_id:
                del self._items[index]
                item.priority = priority
                self._insert(item)
                await self.persist()
                self.log.debug("queue_item_priority_updated", item_id=item_id, priority=priority)
                return True
        return False

    async def increment_retry(self, item_id: str) -> bool:
        for item in self._items:
            if item.id == item_id:
                item.retry_count += 1
                await self.persist()
                self.log.debug(
                    "queue_item_retry_incremented",
                    item_id=item_id,
                    retry_count=item.retry_count,
                )
                return True
        return False

    async def increment_retries(self, item_ids: Iterable[str]) -> int:
        """Bump the retry count of every item in ``item_ids`` with a single persist."""
        wanted = set(item_ids)
        bumped = 0
        for item in self._items:
            if item.id in wanted:
                item.retry_count += 1
                bumped += 1
        if bumped:
            await self.persist()
        return bumped

    async def cleanup(self) -> int:
        """Drop items older than ``max_age``; returns how many were removed."""
        cutoff = now_ms() - int(self.max_age * 1000)
        before = len(self._items)
        self._items = [item for item in self._items if item.created_at >= cutoff]
        removed = before - len(self._items)

        if removed:
            await self.persist()
            self.log.info("queue_expired_items_removed", removed=removed, remaining=len(self._items))
        return removed

    async def import_items(self, items: Iterable[QueueItem]) -> None:
        """Replace the queue contents with copies of ``items``."""
        self._ensure_alive()
        imported = [replace(item) for item in items]
        self._items = sorted(imported, key=lambda i: i.priority)
        del self._items[self.max_size :]
        await self.persist()
        self.log.debug("queue_imported", imported=len(imported), queue_size=len(self._items))

    async def clear(self, *, remove_persisted: bool = False) -> None:
        """Empty the queue.

        Args:
            remove_persisted: Delete the stored key instead of writing an
                empty list.
        """
        self._items = []
        if remove_persisted:
            await self.remove_persisted()
        else:
            await self.persist()
        self.log.debug("queue_cleared")

    def destroy(self) -> None:
        """Drop all in-memory items and refuse further enqueues."""
        self._items = []
        self._destroyed = True
        self.log.debug("queue_destroyed")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """Restore persisted items, merging with any already in memory.

        Returns:
            Number of items restored from storage.
        """
        if not self.persistent:
            return 0

        try:
            raw = await self._storage.get_item(self.storage_key)
            if not raw:
                return 0
            restored = deserialize_items(raw)
        except Exception:
            self.log.exception("queue_load_failed", key=self.storage_key)
            return 0

        known = {item.id for item in self._items}
        fresh = [item for item in restored if item.id not in known]
        # Stable sort keeps the persisted order within a priority
        self._items = sorted(fresh + self._items, key=lambda i: i.priority)
        self.log.debug("queue_loaded", restored=len(fresh), queue_size=len(self._items))
        return len(fresh)

    async def persist(self) -> None:
        """Write the whole queue to storage."""
        if not self.persistent or self._destroyed:
            return
        try:
            await self._storage.set_item(self.storage_key, serialize_items(self._items))
        except Exception:
            self.log.exception("queue_persist_failed", key=self.storage_key)

    async def remove_persisted(self) -> None:
        """Delete the persisted queue from storage."""
        if not self.persistent:
            return
        try:
            await self._storage.remove_item(self.storage_key)
        except Exception:
            self.log.exception("queue_storage_clear_failed", key=self.storage_key)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_alive(self) -> None:
        if self._destroyed:
            raise QueueDestroyedError()

    def _insert(self, item: QueueItem) -> None:
        # After any equal priorities, so ties keep insertion order
        index = bisect.bisect_right(self._items, item.priority, key=lambda i: i.priority)
        self._items.insert(index, item)

    def _enforce_size_limit(self) -> None:
        while len(self._items) > self.max_size:
            evicted = self._items.pop()
            self.log.warning(
                "queue_item_evicted",
                item_id=evicted.id,
                priority=evicted.priority,
                max_size=self.max_size,
            )
