"""
Row-level change feed and merged live views.

The store publishes an event after every committed write. Consumers call
``ChangeFeed.subscribe(table, **filters)`` from a running event loop and get a
``Subscription``: an async iterator of ``ChangeEvent`` that ends once the
subscription is closed. Publishing is thread-safe, so synchronous request
handlers running in a worker thread can feed asyncio consumers.

``LiveView`` keeps a local copy of rows and merges events into it by identity.
Merges are idempotent: the initial fetch and the first streamed events may
overlap.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)

INSERT = "insert"
UPDATE = "update"
DELETE = "delete"

_CLOSED = object()


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: str
    new: Optional[dict] = None
    old: Optional[dict] = None

    @property
    def row(self) -> dict:
        return self.new if self.new is not None else (self.old or {})

    @property
    def identity(self) -> Any:
        return self.row.get("id")

    def to_dict(self) -> dict:
        return {"table": self.table, "type": self.type, "new": self.new, "old": self.old}


class Subscription:
    def __init__(self, feed: "ChangeFeed", table: str, filters: dict, loop: asyncio.AbstractEventLoop):
        self.table = table
        self.filters = filters
        self._feed = feed
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        row = event.row
        return all(row.get(column) == value for column, value in self.filters.items())

    def _deliver(self, item) -> None:
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # the consumer's loop is gone; nobody will ever read this queue
            logger.warning("Dropping subscription on %s: event loop closed", self.table)
            self._closed = True
            self._feed._remove(self)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._feed._remove(self)
        self._deliver(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.close()


class ChangeFeed:
    def __init__(self):
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, table: str, **filters) -> Subscription:
        subscription = Subscription(self, table, filters, asyncio.get_running_loop())
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug("Subscribed to %s %s", table, filters)
        return subscription

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(event)]
        for subscription in targets:
            subscription._deliver(event)

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)


class LiveView:
    """Local list of rows kept in sync with a change feed."""

    def __init__(self, rows: Iterable[dict] = (), key: str = "id"):
        self.key = key
        self._rows: list[dict] = []
        for row in rows:
            if self._index(row[key]) is None:
                self._rows.append(row)

    @property
    def rows(self) -> list[dict]:
        return list(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def _index(self, identity) -> Optional[int]:
        for i, row in enumerate(self._rows):
            if row.get(self.key) == identity:
                return i
        return None

    def apply(self, event: ChangeEvent) -> bool:
        """Merge one event; returns whether the view changed."""
        identity = event.row.get(self.key)
        index = self._index(identity)
        if event.type == INSERT:
            if index is not None:
                return False
            self._rows.append(event.new)
            return True
        if event.type == UPDATE:
            if index is None:
                # update raced ahead of the initial fetch
                self._rows.append(event.new)
            elif self._rows[index] == event.new:
                return False
            else:
                self._rows[index] = event.new
            return True
        if event.type == DELETE:
            if index is None:
                return False
            del self._rows[index]
            return True
        logger.warning("Ignoring unknown change type %r on %s", event.type, event.table)
        return False
