"""
Camera interfaces.

A capture backend enumerates devices and opens a LiveStream. The stream
behaves like a browser video element: a background grabber keeps the most
recent frame, and readers take whatever is current without blocking.

We support multiple capture backends:
- OpenCV VideoCapture (USB/V4L2 cameras)
- Picamera2/libcamera (CSI camera on Raspberry Pi)
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence

import cv2
import numpy as np

from models.frame import FrameData
from models.stream import DeviceDescriptor, StreamConstraints, TrackSettings

FrameTransform = Callable[[np.ndarray], np.ndarray]


def make_transform(swap_rb: bool = False, flip_horizontal: bool = False) -> Optional[FrameTransform]:
    """Post-capture fixups applied on the grabber thread, or None when there are none."""
    if not swap_rb and not flip_horizontal:
        return None

    def transform(frame: np.ndarray) -> np.ndarray:
        if flip_horizontal:
            frame = cv2.flip(frame, 1)
        if swap_rb:
            frame = frame[:, :, ::-1].copy()
        return frame

    return transform


class VideoTrack(ABC):
    """A single video track of a live stream."""

    kind = "video"

    @property
    @abstractmethod
    def ready_state(self) -> str:
        """"live" while frames can be produced, "ended" once stopped."""

    @abstractmethod
    def settings(self) -> TrackSettings:
        """Settings actually in effect on the device."""

    @abstractmethod
    def apply_constraints(self, constraints: StreamConstraints) -> TrackSettings:
        """Re-negotiate the track in place. May raise; callers decide whether to care."""

    @abstractmethod
    def current_frame(self) -> Optional[FrameData]:
        """Most recent frame, or None before the first frame arrives."""

    @abstractmethod
    def stop(self) -> None:
        """Stop the track and release the device. Idempotent."""


class GrabberTrack(VideoTrack):
    """
    VideoTrack that pulls frames on a daemon thread.

    Subclasses implement _grab() (blocking read of one frame) and _close().
    """

    def __init__(self, source: str, transform: Optional[FrameTransform] = None):
        self._source = source
        self.transform = transform
        self._lock = threading.Lock()
        # Held around every device read; reconfiguring takes it too
        self._device_lock = threading.Lock()
        self._latest: Optional[FrameData] = None
        self._frame_index = 0
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._consecutive_failures = 0

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run, name=f"grabber-{self._source}", daemon=True
        )
        self._thread.start()

    @property
    def ready_state(self) -> str:
        return "ended" if self._stopped.is_set() else "live"

    def current_frame(self) -> Optional[FrameData]:
        with self._lock:
            return self._latest

    def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                with self._device_lock:
                    frame = self._grab()
            except Exception as e:
                if self._stopped.is_set():
                    break
                self._consecutive_failures += 1
                if self._consecutive_failures in (1, 10, 100):
                    logging.warning(f"Frame grab failed on {self._source} ({self._consecutive_failures}x): {e}")
                time.sleep(min(0.05 * self._consecutive_failures, 1.0))
                continue

            if frame is None:
                time.sleep(0.01)
                continue

            self._consecutive_failures = 0
            if self.transform is not None:
                frame = self.transform(frame)
            with self._lock:
                self._frame_index += 1
                self._latest = FrameData.from_numpy(
                    frame, timestamp=time.monotonic(), frame_index=self._frame_index, source=self._source
                )

    def stop(self) -> None:
        if self._stopped.is_set():
            return
        self._stopped.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._close()
        logging.info(f"Video track stopped ({self._source})")

    @abstractmethod
    def _grab(self) -> Optional[np.ndarray]:
        """Block until the next BGR frame is available."""

    @abstractmethod
    def _close(self) -> None:
        """Release the underlying device handle."""


class LiveStream:
    """An opened camera stream: one or more tracks sharing a device."""

    def __init__(self, tracks: Sequence[VideoTrack], device: DeviceDescriptor):
        self._tracks = list(tracks)
        self.device = device

    def get_tracks(self) -> List[VideoTrack]:
        return list(self._tracks)

    @property
    def video_track(self) -> Optional[VideoTrack]:
        for track in self._tracks:
            if track.kind == "video":
                return track
        return None

    @property
    def active(self) -> bool:
        return any(t.ready_state == "live" for t in self._tracks)

    def current_frame(self) -> Optional[FrameData]:
        track = self.video_track
        if track is None or track.ready_state != "live":
            return None
        return track.current_frame()

    def stop(self) -> None:
        """Stop every track. Safe to call more than once."""
        for track in self._tracks:
            track.stop()


class CameraBackend(ABC):
    """A platform capture backend. All methods are blocking."""

    name = "base"
    transform: Optional[FrameTransform] = None

    @abstractmethod
    def enumerate_devices(self) -> List[DeviceDescriptor]:
        """List video input devices. May raise PermissionError."""

    @abstractmethod
    def open(self, device: DeviceDescriptor, constraints: StreamConstraints) -> LiveStream:
        """
        Open a stream on a device.

        Raises:
            PermissionError: Access to the device was denied.
            OSError: errno EBUSY when the device is held by another process.
            TimeoutError: The device did not produce a frame in time.
        """
