"""
Drawing surface for the live feed.

The canvas is sized to the negotiated camera resolution and holds the most
recently painted frame (video plus overlay). The web layer encodes it for the
MJPEG preview and snapshots.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

DEFAULT_CANVAS_SIZE = (640, 480)


class Canvas:
    def __init__(self, width: int = DEFAULT_CANVAS_SIZE[0], height: int = DEFAULT_CANVAS_SIZE[1]):
        self.width = int(width)
        self.height = int(height)
        self.surface = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        self.version = 0

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def resize(self, width: Optional[int], height: Optional[int]) -> None:
        """Resize to the track resolution, falling back to 640x480 when unknown."""
        width = int(width or DEFAULT_CANVAS_SIZE[0])
        height = int(height or DEFAULT_CANVAS_SIZE[1])
        if (width, height) == self.size:
            return
        self.width, self.height = width, height
        self.surface = np.zeros((height, width, 3), dtype=np.uint8)
        self.version += 1
        logging.info(f"Canvas resized to {width}x{height}")

    def draw_image(self, frame: np.ndarray) -> None:
        """Paint a BGR frame, scaling it to fill the canvas."""
        if frame is None or frame.size == 0:
            raise ValueError("empty frame")
        h, w = frame.shape[:2]
        if (w, h) != self.size:
            frame = cv2.resize(frame, self.size, interpolation=cv2.INTER_LINEAR)
        np.copyto(self.surface, frame)
        self.version += 1

    def clear(self) -> None:
        self.surface.fill(0)
        self.version += 1

    def snapshot(self) -> np.ndarray:
        return self.surface.copy()

    def encode_jpeg(self, quality: int = 80) -> Optional[bytes]:
        ok, buf = cv2.imencode(".jpg", self.surface, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
        if not ok:
            return None
        return buf.tobytes()
