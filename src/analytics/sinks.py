"""
Persistence sinks for the count aggregator.

- DatabaseSink: writes straight into the local SQLite store and pushes
  events to connected WebSocket clients.
- HttpSink: posts to a remote backend's REST API.
- FallbackSink: wraps either one, mirrors everything into an OfflineStore
  and queues writes while the backend is unreachable.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional, Protocol

import httpx

from models.count_event import CountLogEntry, EntryExitEvent, Location


class CountSink(Protocol):
    async def save_count(self, entry: CountLogEntry) -> None:
        ...

    async def save_entry_exit(self, event: EntryExitEvent) -> None:
        ...

    async def get_location(self, location_id: str) -> Optional[Location]:
        ...


class OfflineStore:
    """
    Small JSON key-value file for offline mirroring and UI preferences.

    Writes go to a temp file and are renamed into place so a crash never
    leaves a truncated store.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, ValueError) as e:
            logging.warning(f"Offline store {self.path} unreadable, starting empty: {e}")
            return {}

    def _flush(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp = f"{self.path}.tmp"
        with open(tmp, "w") as f:
            json.dump(self._data, f)
        os.replace(tmp, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()

    def prepend(self, key: str, item: Any, limit: int) -> None:
        """Insert at the front of a list value, keeping at most `limit` items."""
        with self._lock:
            items = list(self._data.get(key) or [])
            items.insert(0, item)
            self._data[key] = items[:limit]
            self._flush()

    def append(self, key: str, item: Any, limit: Optional[int] = None) -> int:
        """
        Append to a list value. With `limit`, the oldest items are dropped
        to make room; returns how many were dropped.
        """
        return self.extend(key, [item], limit)

    def extend(self, key: str, new_items: List[Any], limit: Optional[int] = None, front: bool = False) -> int:
        with self._lock:
            items = list(self._data.get(key) or [])
            items = list(new_items) + items if front else items + list(new_items)
            dropped = 0
            if limit is not None and len(items) > limit:
                dropped = len(items) - limit
                items = items[dropped:]
            self._data[key] = items
            self._flush()
            return dropped

    def pop_all(self, key: str) -> List[Any]:
        with self._lock:
            items = list(self._data.pop(key, None) or [])
            if items:
                self._flush()
            return items


class DatabaseSink:
    """Writes into the in-process Database and broadcasts the resulting events."""

    def __init__(self, db, events=None):
        self.db = db
        self.events = events

    async def save_count(self, entry: CountLogEntry) -> None:
        row = await asyncio.to_thread(
            self.db.add_count, entry.location_id, entry.count, entry.status.value, entry.message, entry.timestamp
        )
        if self.events is not None:
            await self.events.broadcast("count_updated", row)

    async def save_entry_exit(self, event: EntryExitEvent) -> None:
        row = await asyncio.to_thread(
            self.db.add_entry_exit,
            event.location_id,
            event.type.value,
            event.count,
            event.current_occupancy,
            event.timestamp,
        )
        if self.events is not None:
            await self.events.broadcast("entry_exit_recorded", row)

    async def get_location(self, location_id: str) -> Optional[Location]:
        return await asyncio.to_thread(self.db.get_location, location_id)


class HttpSink:
    """
    Posts counts to a remote backend.

    Each request is retried `retries` times with a fixed delay before the
    error propagates to the caller.
    """

    def __init__(
        self,
        base_url: str,
        retries: int = 2,
        retry_delay_s: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.retries = retries
        self.retry_delay_s = retry_delay_s
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        last_error: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                # 4xx is our fault; retrying will not help
                if e.response.status_code < 500:
                    raise
                last_error = e
            except httpx.TransportError as e:
                last_error = e
            if attempt < self.retries:
                logging.debug(f"{method} {url} failed ({last_error}); retrying in {self.retry_delay_s}s")
                await asyncio.sleep(self.retry_delay_s)
        assert last_error is not None
        raise last_error

    async def save_count(self, entry: CountLogEntry) -> None:
        await self._request(
            "POST",
            f"/api/counts/{entry.location_id}",
            json={
                "count": entry.count,
                "status": entry.status.value,
                "message": entry.message,
                "timestamp": entry.timestamp,
            },
        )

    async def save_entry_exit(self, event: EntryExitEvent) -> None:
        await self._request(
            "POST",
            f"/api/counts/{event.location_id}/entry-exit",
            json={
                "type": event.type.value,
                "count": event.count,
                "current_occupancy": event.current_occupancy,
                "timestamp": event.timestamp,
            },
        )

    async def get_location(self, location_id: str) -> Optional[Location]:
        try:
            response = await self._request("GET", f"/api/locations/{location_id}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise
        return Location.from_dict(response.json())

    async def aclose(self) -> None:
        await self._client.aclose()


class FallbackSink:
    """
    Mirrors every write into the OfflineStore and queues what the backend
    could not accept. The queue is flushed, oldest first, on the next
    successful write. It holds at most `max_entries` writes; the oldest are
    dropped once it is full.

    Store writes rewrite a JSON file, so they run in a worker thread to keep
    the frame pump's loop free.
    """

    LOGS_KEY = "count_logs"
    ENTRY_EXIT_KEY = "entry_exit"
    LOCATIONS_KEY = "locations"
    PENDING_KEY = "pending"

    def __init__(self, primary: CountSink, store: OfflineStore, max_entries: int = 1000):
        self.primary = primary
        self.store = store
        self.max_entries = max_entries
        self.online = True
        self.dropped = 0

    @property
    def pending_count(self) -> int:
        return len(self.store.get(self.PENDING_KEY) or [])

    async def save_count(self, entry: CountLogEntry) -> None:
        await asyncio.to_thread(self.store.prepend, self.LOGS_KEY, entry.to_dict(), self.max_entries)
        await self._write({"kind": "count", "data": entry.to_dict()})

    async def save_entry_exit(self, event: EntryExitEvent) -> None:
        await asyncio.to_thread(self.store.prepend, self.ENTRY_EXIT_KEY, event.to_dict(), self.max_entries)
        await self._write({"kind": "entry_exit", "data": event.to_dict()})

    async def get_location(self, location_id: str) -> Optional[Location]:
        cached = (self.store.get(self.LOCATIONS_KEY) or {}).get(location_id)
        try:
            location = await self.primary.get_location(location_id)
        except Exception as e:
            self._mark_offline(e)
            return Location.from_dict(cached) if cached else None
        if location is not None:
            locations = dict(self.store.get(self.LOCATIONS_KEY) or {})
            locations[location_id] = location.to_dict()
            await asyncio.to_thread(self.store.set, self.LOCATIONS_KEY, locations)
        return location

    async def _write(self, item: Dict[str, Any]) -> None:
        try:
            await self.flush()
            await self._send(item)
        except Exception as e:
            self._mark_offline(e)
            await self._queue([item])
            return
        if not self.online:
            logging.info("Count backend reachable again")
        self.online = True

    async def flush(self) -> int:
        """Send queued writes. Re-queues everything not yet sent on failure."""
        pending = await asyncio.to_thread(self.store.pop_all, self.PENDING_KEY)
        for i, item in enumerate(pending):
            try:
                await self._send(item)
            except Exception:
                await self._queue(pending[i:], front=True)
                raise
        if pending:
            logging.info(f"Flushed {len(pending)} queued count write(s)")
        return len(pending)

    async def _queue(self, items: List[Dict[str, Any]], front: bool = False) -> None:
        dropped = await asyncio.to_thread(
            self.store.extend, self.PENDING_KEY, items, self.max_entries, front
        )
        if dropped:
            self.dropped += dropped
            logging.warning(f"Offline queue full; dropped {dropped} oldest write(s) ({self.dropped} total)")

    async def _send(self, item: Dict[str, Any]) -> None:
        if item["kind"] == "count":
            await self.primary.save_count(CountLogEntry.from_dict(item["data"]))
        else:
            await self.primary.save_entry_exit(EntryExitEvent.from_dict(item["data"]))

    def _mark_offline(self, e: Exception) -> None:
        if self.online:
            logging.warning(f"Count backend unavailable, storing locally: {e}")
        self.online = False
