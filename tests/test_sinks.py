"""
Tests for analytics/sinks.py: offline store, database sink, HTTP sink and
the offline fallback queue.
"""

import asyncio
import json

import httpx
import pytest

from analytics.sinks import DatabaseSink, FallbackSink, HttpSink, OfflineStore
from models.count_event import CountLogEntry, CountStatus, EntryExitEvent, EntryExitType, Location

TS = "2024-03-01T10:00:00+00:00"


def entry(count=3, location_id="lobby"):
    return CountLogEntry(TS, location_id, count, CountStatus.NORMAL, "Normal operation")


def event(count=3, location_id="lobby"):
    return EntryExitEvent(TS, location_id, EntryExitType.ENTRY, count, count)


class RecordingHub:
    def __init__(self):
        self.sent = []

    async def broadcast(self, name, data):
        self.sent.append((name, data))


class FlakyPrimary:
    def __init__(self):
        self.online = False
        self.counts = []
        self.events = []

    async def save_count(self, e):
        if not self.online:
            raise httpx.ConnectError("unreachable")
        self.counts.append(e)

    async def save_entry_exit(self, e):
        if not self.online:
            raise httpx.ConnectError("unreachable")
        self.events.append(e)

    async def get_location(self, location_id):
        if not self.online:
            raise httpx.ConnectError("unreachable")
        return Location(location_id, "Lobby", 20)


def http_sink(handler, retries=2):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpSink("http://backend", retries=retries, retry_delay_s=0, client=client)


class TestOfflineStore:
    def test_values_survive_reopen(self, tmp_path):
        path = str(tmp_path / "store" / "offline.json")
        store = OfflineStore(path)
        store.set("low_power_mode", True)
        assert OfflineStore(path).get("low_power_mode") is True

    def test_prepend_keeps_newest_first_within_limit(self, tmp_path):
        store = OfflineStore(str(tmp_path / "s.json"))
        for i in range(5):
            store.prepend("logs", i, limit=3)
        assert store.get("logs") == [4, 3, 2]

    def test_pop_all_empties_the_key(self, tmp_path):
        store = OfflineStore(str(tmp_path / "s.json"))
        store.append("pending", 1)
        store.append("pending", 2)
        assert store.pop_all("pending") == [1, 2]
        assert store.pop_all("pending") == []

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text("{not json")
        assert OfflineStore(str(path)).get("anything") is None

    def test_append_with_limit_drops_oldest(self, tmp_path):
        store = OfflineStore(str(tmp_path / "s.json"))
        dropped = [store.append("pending", i, limit=3) for i in range(5)]
        assert store.get("pending") == [2, 3, 4]
        assert dropped == [0, 0, 0, 1, 1]

    def test_extend_front_requeues_before_newer_items(self, tmp_path):
        store = OfflineStore(str(tmp_path / "s.json"))
        store.append("pending", "new")
        store.extend("pending", ["old1", "old2"], limit=10, front=True)
        assert store.get("pending") == ["old1", "old2", "new"]

    def test_remove(self, tmp_path):
        store = OfflineStore(str(tmp_path / "s.json"))
        store.set("k", 1)
        store.remove("k")
        assert store.get("k", "gone") == "gone"


class TestDatabaseSink:
    def test_writes_rows_and_broadcasts(self, memory_db):
        hub = RecordingHub()
        sink = DatabaseSink(memory_db, hub)

        async def scenario():
            await sink.save_count(entry(4))
            await sink.save_entry_exit(event(4))
            return await sink.get_location("lobby")

        location = asyncio.run(scenario())
        assert location.capacity == 20
        assert memory_db.get_counts("lobby")[0]["count"] == 4
        assert memory_db.get_entry_exit("lobby")[0]["type"] == "entry"
        assert [name for name, _ in hub.sent] == ["count_updated", "entry_exit_recorded"]
        assert hub.sent[0][1]["location_id"] == "lobby"


class TestHttpSink:
    def test_posts_count_payload(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(201, json={})

        asyncio.run(http_sink(handler).save_count(entry(7)))
        method, path, body = seen[0]
        assert (method, path) == ("POST", "/api/counts/lobby")
        assert body["count"] == 7
        assert body["status"] == "normal"

    def test_entry_exit_payload_uses_snake_case(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(201, json={})

        asyncio.run(http_sink(handler).save_entry_exit(event(2)))
        assert seen[0] == {"type": "entry", "count": 2, "current_occupancy": 2, "timestamp": TS}

    def test_retries_server_errors(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(503 if len(calls) < 3 else 201, json={})

        asyncio.run(http_sink(handler, retries=2).save_count(entry()))
        assert len(calls) == 3

    def test_gives_up_after_retries(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(500, json={})

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(http_sink(handler, retries=1).save_count(entry()))
        assert len(calls) == 2

    def test_client_errors_are_not_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(400, json={"error": "Count and status are required"})

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(http_sink(handler).save_count(entry()))
        assert len(calls) == 1

    def test_unknown_location_is_none(self):
        def handler(request):
            return httpx.Response(404, json={"error": "Location not found"})

        assert asyncio.run(http_sink(handler).get_location("nowhere")) is None

    def test_location_is_parsed(self):
        def handler(request):
            return httpx.Response(200, json={"id": "lobby", "name": "Lobby", "capacity": 20})

        location = asyncio.run(http_sink(handler).get_location("lobby"))
        assert location == Location("lobby", "Lobby", 20)


class TestFallbackSink:
    def test_queues_while_offline_and_flushes_on_recovery(self, tmp_path):
        primary = FlakyPrimary()
        store = OfflineStore(str(tmp_path / "offline.json"))
        sink = FallbackSink(primary, store)

        async def scenario():
            await sink.save_count(entry(1))
            await sink.save_entry_exit(event(1))
            assert not sink.online
            assert sink.pending_count == 2

            primary.online = True
            await sink.save_count(entry(2))

        asyncio.run(scenario())
        assert sink.online
        assert sink.pending_count == 0
        assert [e.count for e in primary.counts] == [1, 2]
        assert len(primary.events) == 1

    def test_offline_queue_is_bounded(self, tmp_path):
        primary = FlakyPrimary()
        sink = FallbackSink(primary, OfflineStore(str(tmp_path / "offline.json")), max_entries=10)

        async def scenario():
            for c in range(50):
                await sink.save_count(entry(c))

        asyncio.run(scenario())
        assert sink.pending_count == 10
        assert sink.dropped == 40
        queued = [item["data"]["count"] for item in sink.store.get(FallbackSink.PENDING_KEY)]
        assert queued == list(range(40, 50))

    def test_mirrors_logs_newest_first(self, tmp_path):
        primary = FlakyPrimary()
        primary.online = True
        store = OfflineStore(str(tmp_path / "offline.json"))
        sink = FallbackSink(primary, store, max_entries=2)

        async def scenario():
            for c in (1, 2, 3):
                await sink.save_count(entry(c))

        asyncio.run(scenario())
        assert [e["count"] for e in store.get(FallbackSink.LOGS_KEY)] == [3, 2]

    def test_cached_location_served_offline(self, tmp_path):
        primary = FlakyPrimary()
        primary.online = True
        sink = FallbackSink(primary, OfflineStore(str(tmp_path / "offline.json")))

        async def scenario():
            online = await sink.get_location("lobby")
            primary.online = False
            offline = await sink.get_location("lobby")
            return online, offline

        online, offline = asyncio.run(scenario())
        assert online == offline
        assert not sink.online
