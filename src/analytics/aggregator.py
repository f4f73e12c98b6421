"""
Count aggregator.

Receives the latest people count from the frame pump, derives an occupancy
status against the location capacity, keeps a bounded newest-first log and
emits entry/exit events for every change against the previous count.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Deque, List, Optional, Tuple

from models.count_event import (
    CountLogEntry,
    CountStatus,
    EntryExitEvent,
    EntryExitType,
    Location,
    utc_now_iso,
)

NEAR_CAPACITY_RATIO = 0.8
OVER_CAPACITY_RATIO = 1.0
DEFAULT_MAX_LOG_ENTRIES = 1000


def derive_status(count: int, capacity: int) -> Tuple[CountStatus, str]:
    """Occupancy status and message for a count against a capacity."""
    ratio = count / capacity if capacity > 0 else 0.0
    if ratio > OVER_CAPACITY_RATIO:
        return CountStatus.OVER_CAPACITY, f"Over capacity ({count}/{capacity})"
    if ratio > NEAR_CAPACITY_RATIO:
        return CountStatus.NEAR_CAPACITY, f"Approaching capacity ({count}/{capacity})"
    if count == 0:
        return CountStatus.NORMAL, "No individuals detected in frame"
    return CountStatus.NORMAL, "Normal operation"


class CountAggregator:
    """
    Args:
        location: Location the counts belong to.
        sink: Optional persistence sink (see analytics.sinks).
        max_log_entries: Bound on the in-memory log.
        clock: Timestamp source, ISO-8601 strings.
    """

    def __init__(
        self,
        location: Location,
        sink=None,
        max_log_entries: int = DEFAULT_MAX_LOG_ENTRIES,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.location = location
        self.sink = sink
        self.clock = clock
        self.log: Deque[CountLogEntry] = deque(maxlen=max_log_entries)
        self.events: Deque[EntryExitEvent] = deque(maxlen=max_log_entries)
        self.current_count = 0
        self._last_reported: Optional[int] = None

    @property
    def latest(self) -> Optional[CountLogEntry]:
        return self.log[0] if self.log else None

    async def report_count(self, count: int) -> Optional[CountLogEntry]:
        """
        Record a new count.

        Returns:
            The new log entry, or None when the count equals the last report.
        """
        count = max(0, int(count))
        if count == self._last_reported:
            return None
        self._last_reported = count

        status, message = derive_status(count, self.location.capacity)
        timestamp = self.clock()
        entry = CountLogEntry(
            timestamp=timestamp,
            location_id=self.location.id,
            count=count,
            status=status,
            message=message,
        )
        self.log.appendleft(entry)

        event = self._delta_event(count, timestamp)
        self.current_count = count

        if status != CountStatus.NORMAL:
            logging.warning(f"[{self.location.id}] {message}")

        if self.sink is not None:
            try:
                await self.sink.save_count(entry)
                if event is not None:
                    await self.sink.save_entry_exit(event)
            except Exception as e:
                logging.error(f"Failed to persist count for {self.location.id}: {e}")
        return entry

    def _delta_event(self, count: int, timestamp: str) -> Optional[EntryExitEvent]:
        delta = count - self.current_count
        if delta == 0:
            return None
        event = EntryExitEvent(
            timestamp=timestamp,
            location_id=self.location.id,
            type=EntryExitType.ENTRY if delta > 0 else EntryExitType.EXIT,
            count=abs(delta),
            current_occupancy=count,
        )
        self.events.appendleft(event)
        return event

    def recent_logs(self, limit: int = 100) -> List[CountLogEntry]:
        return list(self.log)[:limit]

    def clear(self) -> None:
        self.log.clear()
        self.events.clear()
