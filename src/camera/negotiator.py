"""
Camera capability negotiation.

Enumerates video inputs, picks a preferred device, opens a stream with
constraints scaled to the resource tier, and classifies failures into the
camera error taxonomy. At most one stream is held at any time.
"""

from __future__ import annotations

import asyncio
import errno
import logging
from typing import List, Optional, Sequence

from camera.base import CameraBackend, LiveStream, make_transform
from models.errors import (
    AcquisitionTimeout,
    CameraAcquisitionFailed,
    CameraError,
    DeviceBusy,
    NoDeviceFound,
    OperationCancelled,
    PermissionDenied,
)
from models.frame import FrameData
from models.stream import DeviceDescriptor, StreamConstraints, StreamState
from models.tier import ResourceTier, TierProfile, profile_for
from runtime.cancellation import CancellationToken

DEFAULT_ACQUIRE_TIMEOUT_S = 10.0
DEFAULT_EXCLUDE_LABELS = ("built-in", "internal", "facetime")


def create_backend(name: str, swap_rb: bool = False, flip_horizontal: bool = False) -> CameraBackend:
    """Single entrypoint for building a capture backend from config."""
    if name == "picamera2":
        from camera.backends.picamera2 import Picamera2Backend
        backend = Picamera2Backend()
    elif name == "opencv":
        from camera.backends.opencv import OpenCVBackend
        backend = OpenCVBackend()
    else:
        raise ValueError(f"Unknown camera backend: {name}")
    backend.transform = make_transform(swap_rb, flip_horizontal)
    return backend


def capture_constraints(profile: TierProfile) -> StreamConstraints:
    """Ideal constraints for the initial open."""
    return StreamConstraints(
        ideal_width=profile.capture_width,
        ideal_height=profile.capture_height,
        ideal_fps=profile.capture_fps,
    )


def tightening_constraints(profile: TierProfile) -> Optional[StreamConstraints]:
    """Hard caps for the secondary pass, or None when the tier needs none."""
    if profile.max_capture_size is None:
        return None
    max_w, max_h = profile.max_capture_size
    return StreamConstraints(max_width=max_w, max_height=max_h, max_fps=profile.capture_fps)


def classify_camera_error(e: BaseException) -> CameraError:
    """Map a backend failure to the camera error taxonomy."""
    if isinstance(e, CameraError):
        return e
    if isinstance(e, PermissionError):
        return PermissionDenied()
    if isinstance(e, OSError) and e.errno == errno.EBUSY:
        return DeviceBusy()
    if isinstance(e, (TimeoutError, asyncio.TimeoutError)):
        return AcquisitionTimeout()
    return CameraAcquisitionFailed(str(e))


class CameraNegotiator:
    """
    Owns the single active camera stream.

    Args:
        backend: Capture backend performing the blocking device calls.
        canvas: Optional surface resized to the negotiated resolution.
        acquire_timeout_s: Upper bound on opening a stream.
        exclude_labels: Label fragments identifying built-in cameras.
    """

    def __init__(
        self,
        backend: CameraBackend,
        canvas=None,
        acquire_timeout_s: float = DEFAULT_ACQUIRE_TIMEOUT_S,
        exclude_labels: Sequence[str] = DEFAULT_EXCLUDE_LABELS,
    ):
        self.backend = backend
        self.canvas = canvas
        self.acquire_timeout_s = acquire_timeout_s
        self.exclude_labels = tuple(s.lower() for s in exclude_labels)
        self.stream: Optional[LiveStream] = None
        self.state: Optional[StreamState] = None
        self._lock = asyncio.Lock()

    @property
    def is_live(self) -> bool:
        return self.stream is not None and self.stream.active

    async def list_cameras(self) -> List[DeviceDescriptor]:
        """Enumerate video inputs; an empty list when enumeration is denied or fails."""
        try:
            devices = await asyncio.to_thread(self.backend.enumerate_devices)
        except (PermissionError, OSError, ImportError) as e:
            logging.warning(f"Camera enumeration failed ({self.backend.name}): {e}")
            return []
        devices = [d for d in devices if d.kind == "videoinput"]
        logging.info(f"Found {len(devices)} camera(s): {[d.label or d.device_id for d in devices]}")
        return devices

    def select_preferred_device(self, devices: Sequence[DeviceDescriptor]) -> DeviceDescriptor:
        """
        Prefer the first external camera.

        Raises:
            NoDeviceFound: No devices to choose from.
        """
        if not devices:
            raise NoDeviceFound()
        for device in devices:
            label = (device.label or "").lower()
            if not any(fragment in label for fragment in self.exclude_labels):
                return device
        return devices[0]

    async def acquire_stream(
        self,
        device: DeviceDescriptor,
        tier: ResourceTier,
        low_power: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> StreamState:
        """
        Open a stream on `device` with tier-scaled constraints.

        Any previously held stream is released first. On success the canvas
        is resized to the actual track settings.

        Raises:
            CameraError: Classified acquisition failure.
            OperationCancelled: The token fired while waiting.
        """
        token = token or CancellationToken()
        profile = profile_for(tier, low_power)

        async with self._lock:
            self.release_stream()
            token.check()

            logging.info(
                f"Acquiring camera {device.device_id} ({device.label or 'unlabelled'}) "
                f"for tier={ResourceTier(tier).value}, low_power={low_power}"
            )
            try:
                stream = await token.wait_or_cancel(
                    asyncio.to_thread(self.backend.open, device, capture_constraints(profile)),
                    timeout=self.acquire_timeout_s,
                    on_abandon=_release_late_stream,
                )
            except OperationCancelled:
                raise
            except Exception as e:
                err = classify_camera_error(e)
                logging.error(f"Camera acquisition failed: {type(e).__name__}: {e}")
                raise err from e

            if token.cancelled:
                stream.stop()
                token.check()

            track = stream.video_track
            if track is None:
                stream.stop()
                raise CameraAcquisitionFailed("stream has no video track")

            tighten = tightening_constraints(profile)
            if tighten is not None:
                try:
                    await asyncio.to_thread(track.apply_constraints, tighten)
                except Exception as e:
                    logging.warning(f"Could not apply tighter camera constraints: {e}")

            settings = track.settings()
            self.stream = stream
            self.state = StreamState(
                device_id=device.device_id,
                width=settings.width,
                height=settings.height,
                frame_rate_target=settings.frame_rate or profile.capture_fps,
                label=settings.label or device.label,
            )
            if self.canvas is not None:
                self.canvas.resize(settings.width, settings.height)

            logging.info(
                f"Camera stream active: {self.state.width}x{self.state.height} "
                f"@ {self.state.frame_rate_target}fps"
            )
            return self.state

    def release_stream(self, state: Optional[StreamState] = None) -> None:
        """Stop every track of the held stream. Idempotent."""
        if state is not None and self.state is not None and state is not self.state:
            logging.debug("release_stream called with a stale state; releasing current stream")
        stream, self.stream, self.state = self.stream, None, None
        if stream is None:
            return
        for track in stream.get_tracks():
            try:
                track.stop()
            except Exception as e:
                logging.warning(f"Error stopping camera track: {e}")
        logging.info("Camera stream released")

    def current_frame(self) -> Optional[FrameData]:
        if self.stream is None:
            return None
        return self.stream.current_frame()


def _release_late_stream(fut: "asyncio.Future[LiveStream]") -> None:
    if fut.cancelled() or fut.exception() is not None:
        return
    logging.warning("Camera opened after acquisition was abandoned; releasing it")
    fut.result().stop()
