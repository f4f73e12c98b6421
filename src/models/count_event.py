"""
Count log and entry/exit models produced by the count aggregator.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class CountStatus(str, Enum):
    """Occupancy status derived from a count and the location capacity."""
    NORMAL = "normal"
    NEAR_CAPACITY = "near_capacity"
    OVER_CAPACITY = "over_capacity"


class EntryExitType(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


def utc_now_iso() -> str:
    """ISO-8601 timestamp in UTC, the format stored in the backend."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Location:
    """
    A monitored location.

    Attributes:
        id: Stable identifier used in REST paths.
        name: Display name.
        capacity: Maximum intended occupancy (> 0).
        description: Optional free text.
    """
    id: str
    name: str
    capacity: int
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Location":
        return cls(
            id=str(d["id"]),
            name=d.get("name") or str(d["id"]),
            capacity=int(d.get("capacity", 50)),
            description=d.get("description"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "capacity": self.capacity,
            "description": self.description,
        }


@dataclass(frozen=True)
class CountLogEntry:
    """
    One log line written whenever the reported count changes.

    Attributes:
        timestamp: ISO-8601 UTC timestamp.
        location_id: Location the count belongs to.
        count: Number of detected subjects.
        status: Derived occupancy status.
        message: Human-readable status message.
    """
    timestamp: str
    location_id: str
    count: int
    status: CountStatus
    message: str

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CountLogEntry":
        return cls(
            timestamp=d["timestamp"],
            location_id=d.get("location_id", "default"),
            count=int(d["count"]),
            status=CountStatus(d["status"]),
            message=d.get("message") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "location_id": self.location_id,
            "count": self.count,
            "status": self.status.value,
            "message": self.message,
        }


@dataclass(frozen=True)
class EntryExitEvent:
    """
    An occupancy change derived from two consecutive counts.

    Attributes:
        timestamp: ISO-8601 UTC timestamp.
        location_id: Location the event belongs to.
        type: entry or exit.
        count: Magnitude of the change (>= 1).
        current_occupancy: Count after the change.
    """
    timestamp: str
    location_id: str
    type: EntryExitType
    count: int
    current_occupancy: int

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EntryExitEvent":
        return cls(
            timestamp=d["timestamp"],
            location_id=d.get("location_id", "default"),
            type=EntryExitType(d["type"]),
            count=int(d["count"]),
            current_occupancy=int(d["current_occupancy"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "location_id": self.location_id,
            "type": self.type.value,
            "count": self.count,
            "current_occupancy": self.current_occupancy,
        }
