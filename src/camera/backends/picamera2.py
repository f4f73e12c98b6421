"""
Picamera2 camera backend (Raspberry Pi CSI camera via libcamera).

Only works on Raspberry Pi OS with Picamera2 installed:
  sudo apt install -y python3-picamera2
"""

from __future__ import annotations

import errno
import logging
from typing import Any, List, Optional

import numpy as np

from camera.base import CameraBackend, GrabberTrack, LiveStream
from models.stream import DeviceDescriptor, StreamConstraints, TrackSettings


def _import_picamera2():
    try:
        from picamera2 import Picamera2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError(
            "Picamera2 is not available. This backend only works on Raspberry Pi OS. "
            "Install with `sudo apt install -y python3-picamera2` or use backend 'opencv'."
        ) from e
    return Picamera2


def _classify(e: Exception) -> Exception:
    msg = str(e).lower()
    if "busy" in msg or "in use" in msg:
        return OSError(errno.EBUSY, str(e))
    if "permission" in msg or "not permitted" in msg:
        return PermissionError(errno.EACCES, str(e))
    return e


class Picamera2Track(GrabberTrack):
    def __init__(self, picam2: Any, num: int, size, fps: float, label: str = ""):
        super().__init__(source=f"csi{num}")
        self._picam2 = picam2
        self._size = tuple(size)
        self._fps = float(fps)
        self.label = label

    def settings(self) -> TrackSettings:
        return TrackSettings(width=self._size[0], height=self._size[1], frame_rate=self._fps, label=self.label)

    def apply_constraints(self, constraints: StreamConstraints) -> TrackSettings:
        width, height = self._size
        if constraints.max_width and width > constraints.max_width:
            width = constraints.max_width
        if constraints.max_height and height > constraints.max_height:
            height = constraints.max_height
        fps = min(self._fps, constraints.max_fps) if constraints.max_fps else self._fps

        if (width, height) != self._size or fps != self._fps:
            with self._device_lock:
                self._picam2.stop()
                config = self._picam2.create_video_configuration(
                    main={"size": (width, height), "format": "RGB888"},
                    controls={"FrameRate": fps},
                )
                self._picam2.configure(config)
                self._picam2.start()
            self._size = (width, height)
            self._fps = fps
        return self.settings()

    def _grab(self) -> Optional[np.ndarray]:
        frame_rgb = self._picam2.capture_array("main")
        # Drawing and detection code expect BGR
        return frame_rgb[..., ::-1].copy()

    def _close(self) -> None:
        try:
            self._picam2.stop()
        finally:
            self._picam2.close()


class Picamera2Backend(CameraBackend):
    name = "picamera2"

    def enumerate_devices(self) -> List[DeviceDescriptor]:
        Picamera2 = _import_picamera2()
        devices = []
        for i, info in enumerate(Picamera2.global_camera_info()):
            devices.append(DeviceDescriptor(device_id=int(info.get("Num", i)), label=str(info.get("Model", ""))))
        return devices

    def open(self, device: DeviceDescriptor, constraints: StreamConstraints) -> LiveStream:
        Picamera2 = _import_picamera2()
        num = int(device.device_id)
        size = (constraints.ideal_width or 640, constraints.ideal_height or 480)
        fps = constraints.ideal_fps or 15

        try:
            picam2 = Picamera2(num)
        except Exception as e:
            raise _classify(e) from e

        try:
            config = picam2.create_video_configuration(
                main={"size": size, "format": "RGB888"},
                controls={"FrameRate": fps},
            )
            picam2.configure(config)
            picam2.start()
        except Exception as e:
            picam2.close()
            raise _classify(e) from e

        logging.info(f"Camera initialized (backend=picamera2, id={num}, res={size}, fps={fps})")
        track = Picamera2Track(picam2, num, size, fps, label=device.label)
        track.transform = self.transform
        track.start()
        return LiveStream([track], device)
