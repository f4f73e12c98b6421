"""
Error taxonomy for camera acquisition, model loading and per-frame work.

Every error carries a user-facing message so the live feed can surface an
actionable hint without knowing where the failure came from.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class PeopleCounterError(Exception):
    """Base class for all classified failures."""

    user_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)

    @property
    def code(self) -> str:
        return type(self).__name__


class CameraError(PeopleCounterError):
    """Failures while negotiating a camera stream. Never fatal; caller may retry."""


class PermissionDenied(CameraError):
    user_message = "Camera access denied. Please allow camera access and try again."


class DeviceBusy(CameraError):
    user_message = (
        "Camera is in use by another application. "
        "Please close other apps using the camera and try again."
    )


class NoDeviceFound(CameraError):
    user_message = "No camera found. Please connect a camera and try again."


class AcquisitionTimeout(CameraError):
    user_message = "Timed out waiting for the camera. Please check the connection and try again."


class CameraAcquisitionFailed(CameraError):
    """Any acquisition failure that is neither permission nor busy."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Could not access camera: {detail or 'Unknown error'}")


class ModelLoadFailed(PeopleCounterError):
    """Every model variant in the selection plan failed to load."""

    user_message = (
        "Failed to load detection model after all attempts. "
        "Please reload the model and try again."
    )

    def __init__(self, attempted: Sequence[str] = (), errors: Optional[List[str]] = None):
        self.attempted = list(attempted)
        self.errors = list(errors or [])
        detail = ", ".join(self.attempted) if self.attempted else "none"
        super().__init__(f"{self.user_message} (attempted: {detail})")


class DetectionTransientError(PeopleCounterError):
    """A single detection call failed; the previous count is retained."""

    user_message = "Detection error occurred. Attempting to recover..."


class RenderTransientError(PeopleCounterError):
    """Drawing a frame failed, typically before the stream is ready."""

    user_message = "Could not draw video frame"


class OperationCancelled(PeopleCounterError):
    """The owning session was stopped while an operation was in flight."""

    user_message = "Operation cancelled"
