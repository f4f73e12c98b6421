"""
Camera device and stream models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union


@dataclass(frozen=True)
class DeviceDescriptor:
    """
    A video input device as reported by a capture backend.

    Attributes:
        device_id: Backend-specific identifier (V4L2 index, CSI camera number, URL).
        label: Human-readable device name, may be empty before permission is granted.
        kind: Always "videoinput" for cameras.
    """
    device_id: Union[int, str]
    label: str = ""
    kind: str = "videoinput"

    def to_dict(self) -> Dict[str, Any]:
        return {"device_id": self.device_id, "label": self.label, "kind": self.kind}


@dataclass(frozen=True)
class StreamConstraints:
    """
    Constraints requested from a backend when opening or tightening a stream.

    ideal_* values are requests; max_* values are hard caps for the tightening pass.
    """
    ideal_width: Optional[int] = None
    ideal_height: Optional[int] = None
    ideal_fps: Optional[float] = None
    max_width: Optional[int] = None
    max_height: Optional[int] = None
    max_fps: Optional[float] = None


@dataclass(frozen=True)
class TrackSettings:
    """Settings actually negotiated by the device, which may differ from the request."""
    width: int
    height: int
    frame_rate: float
    label: str = ""


@dataclass
class StreamState:
    """
    The single active camera stream.

    Created by the negotiator when a stream is acquired and dropped when it is
    released. The frame pump only reads it.
    """
    device_id: Union[int, str]
    width: int
    height: int
    frame_rate_target: float
    label: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "label": self.label,
            "width": self.width,
            "height": self.height,
            "frame_rate_target": self.frame_rate_target,
        }
