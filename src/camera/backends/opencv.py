"""
OpenCV camera backend.

Supports USB/V4L2 webcams (device_id as int index) and, for testing against
recorded footage, any path or URL OpenCV can open (device_id as str).
"""

from __future__ import annotations

import errno
import glob
import logging
import os
import platform
import time
from typing import List, Optional, Union

import cv2
import numpy as np

from camera.base import CameraBackend, GrabberTrack, LiveStream
from models.stream import DeviceDescriptor, StreamConstraints, TrackSettings


SYSFS_VIDEO_GLOB = "/sys/class/video4linux/video*"
PROBE_MAX_INDEX = 4
FIRST_FRAME_TIMEOUT_S = 5.0


def _read_sysfs(path: str) -> Optional[str]:
    try:
        with open(path, "r") as f:
            return f.read().strip()
    except OSError:
        return None


class OpenCVTrack(GrabberTrack):
    """Video track backed by cv2.VideoCapture."""

    def __init__(self, device_id: Union[int, str], cap: "cv2.VideoCapture", label: str = ""):
        super().__init__(source=str(device_id))
        self.device_id = device_id
        self.label = label
        self._cap = cap

    def settings(self) -> TrackSettings:
        return TrackSettings(
            width=int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            frame_rate=float(self._cap.get(cv2.CAP_PROP_FPS) or 0.0),
            label=self.label,
        )

    def apply_constraints(self, constraints: StreamConstraints) -> TrackSettings:
        current = self.settings()
        width = constraints.max_width or constraints.ideal_width
        height = constraints.max_height or constraints.ideal_height
        fps = constraints.max_fps or constraints.ideal_fps

        # Only shrink on the tightening pass
        with self._device_lock:
            if width and height and (current.width > width or current.height > height):
                self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
                self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
            if fps and (current.frame_rate == 0 or current.frame_rate > fps):
                self._cap.set(cv2.CAP_PROP_FPS, fps)

        actual = self.settings()
        logging.info(f"Camera constraints applied - Resolution: ({actual.width}x{actual.height}), FPS: {actual.frame_rate}")
        return actual

    def _grab(self) -> Optional[np.ndarray]:
        ok, frame = self._cap.read()
        if not ok:
            raise IOError("VideoCapture.read() returned no frame")
        return frame

    def _close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logging.info("Camera released")


class OpenCVBackend(CameraBackend):
    """OpenCV-based capture for V4L2/USB webcams."""

    name = "opencv"

    def __init__(self, buffer_size: int = 1, probe_max_index: int = PROBE_MAX_INDEX):
        self.buffer_size = buffer_size
        self.probe_max_index = probe_max_index

    def enumerate_devices(self) -> List[DeviceDescriptor]:
        if platform.system().lower() == "linux" and glob.glob(SYSFS_VIDEO_GLOB):
            return self._enumerate_sysfs()
        return self._enumerate_probe()

    def _enumerate_sysfs(self) -> List[DeviceDescriptor]:
        devices = []
        for node in sorted(glob.glob(SYSFS_VIDEO_GLOB), key=lambda p: int(p.rsplit("video", 1)[1] or 0)):
            # Each UVC camera also exposes a metadata node with index 1
            if (_read_sysfs(os.path.join(node, "index")) or "0") != "0":
                continue
            num = int(node.rsplit("video", 1)[1])
            dev_path = f"/dev/video{num}"
            if os.path.exists(dev_path) and not os.access(dev_path, os.R_OK):
                raise PermissionError(errno.EACCES, "Permission denied", dev_path)
            label = _read_sysfs(os.path.join(node, "name")) or ""
            devices.append(DeviceDescriptor(device_id=num, label=label))
        return devices

    def _enumerate_probe(self) -> List[DeviceDescriptor]:
        devices = []
        for idx in range(self.probe_max_index):
            cap = cv2.VideoCapture(idx)
            try:
                if cap.isOpened():
                    devices.append(DeviceDescriptor(device_id=idx, label=f"Camera {idx}"))
            finally:
                cap.release()
        return devices

    def open(self, device: DeviceDescriptor, constraints: StreamConstraints) -> LiveStream:
        device_id = device.device_id
        if isinstance(device_id, int):
            dev_path = f"/dev/video{device_id}"
            if os.path.exists(dev_path) and not os.access(dev_path, os.R_OK | os.W_OK):
                raise PermissionError(errno.EACCES, "Permission denied", dev_path)

        cap = cv2.VideoCapture(device_id)
        if not cap.isOpened():
            cap.release()
            raise OSError(errno.ENODEV, f"Failed to open camera device {device_id}")

        if isinstance(device_id, int):
            if constraints.ideal_width and constraints.ideal_height:
                cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.ideal_width)
                cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.ideal_height)
            if constraints.ideal_fps:
                cap.set(cv2.CAP_PROP_FPS, constraints.ideal_fps)
            cap.set(cv2.CAP_PROP_BUFFERSIZE, self.buffer_size)

        # V4L2 opens a busy device fine and only fails at stream-on, i.e. the first read
        deadline = time.monotonic() + FIRST_FRAME_TIMEOUT_S
        ok = False
        while time.monotonic() < deadline:
            ok, _ = cap.read()
            if ok:
                break
            time.sleep(0.1)
        if not ok:
            cap.release()
            raise OSError(errno.EBUSY, f"Camera device {device_id} produced no frames (busy?)")

        track = OpenCVTrack(device_id, cap, label=device.label)
        actual = track.settings()
        logging.info(
            f"Camera initialized (backend=opencv, id={device_id}, "
            f"res=({actual.width}x{actual.height}), fps={actual.frame_rate})"
        )
        track.transform = self.transform
        track.start()
        return LiveStream([track], device)
