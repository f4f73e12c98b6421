"""
Typed models for the people counter.

Plain dataclasses with from_dict/to_dict adapters for the YAML config,
the REST payloads and the offline store.
"""

from .frame import FrameData
from .detection import BoundingBox, DetectionResult, count_matching
from .stream import DeviceDescriptor, StreamConstraints, StreamState, TrackSettings
from .tier import ResourceTier, TierProfile, detect_resource_tier, profile_for
from .count_event import CountLogEntry, CountStatus, EntryExitEvent, EntryExitType, Location
from .errors import (
    AcquisitionTimeout,
    CameraAcquisitionFailed,
    CameraError,
    DetectionTransientError,
    DeviceBusy,
    ModelLoadFailed,
    NoDeviceFound,
    OperationCancelled,
    PeopleCounterError,
    PermissionDenied,
    RenderTransientError,
)
from .config import (
    AggregatorConfig,
    CameraConfig,
    Config,
    ModelsConfig,
    MotionGateConfig,
    PumpConfig,
    StorageConfig,
    TierConfig,
    WebConfig,
)

__all__ = [
    # Frame
    "FrameData",
    # Detection
    "BoundingBox",
    "DetectionResult",
    "count_matching",
    # Camera
    "DeviceDescriptor",
    "StreamConstraints",
    "StreamState",
    "TrackSettings",
    # Tier
    "ResourceTier",
    "TierProfile",
    "detect_resource_tier",
    "profile_for",
    # Counting
    "CountLogEntry",
    "CountStatus",
    "EntryExitEvent",
    "EntryExitType",
    "Location",
    # Errors
    "PeopleCounterError",
    "CameraError",
    "PermissionDenied",
    "DeviceBusy",
    "NoDeviceFound",
    "AcquisitionTimeout",
    "CameraAcquisitionFailed",
    "ModelLoadFailed",
    "DetectionTransientError",
    "RenderTransientError",
    "OperationCancelled",
    # Config
    "Config",
    "CameraConfig",
    "TierConfig",
    "ModelsConfig",
    "MotionGateConfig",
    "PumpConfig",
    "AggregatorConfig",
    "StorageConfig",
    "WebConfig",
]
