"""
Frames handed from a camera track to the frame pump.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class FrameData:
    """
    The latest image grabbed from a live track.

    frame is a BGR uint8 array owned by the grabber; consumers must not
    mutate it. timestamp is time.monotonic() at grab time.
    """
    frame: np.ndarray
    timestamp: float
    frame_index: int = 0
    source: Optional[str] = None

    @classmethod
    def from_numpy(
        cls,
        frame: np.ndarray,
        timestamp: Optional[float] = None,
        frame_index: int = 0,
        source: Optional[str] = None,
    ) -> "FrameData":
        if frame.ndim not in (2, 3):
            raise ValueError(f"Expected a 2D or 3D image array, got shape {frame.shape}")
        return cls(
            frame=frame,
            timestamp=time.monotonic() if timestamp is None else timestamp,
            frame_index=frame_index,
            source=source,
        )

    @property
    def width(self) -> int:
        return int(self.frame.shape[1])

    @property
    def height(self) -> int:
        return int(self.frame.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height), the order cv2.resize expects."""
        return (self.width, self.height)

    @property
    def is_empty(self) -> bool:
        return self.frame.size == 0

    def age_s(self, now: Optional[float] = None) -> float:
        """Seconds since the frame was grabbed."""
        return (time.monotonic() if now is None else now) - self.timestamp
