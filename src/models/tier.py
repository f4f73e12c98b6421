"""
Resource tier classification and the per-tier tuning profile.

The tier is derived once at startup from platform hints and never changes for
the lifetime of the process. Everything that trades quality for latency (frame
rate ceiling, detection cadence, downscale factor, capture constraints) is read
from the TierProfile for the current (tier, low_power) pair.
"""

from __future__ import annotations

import logging
import os
import platform
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class ResourceTier(str, Enum):
    """Coarse classification of host compute capability."""
    CONSTRAINED = "constrained"
    STANDARD = "standard"


# Single-board computers (Raspberry Pi 4B and friends) report <= 4 cores.
CONSTRAINED_MAX_CORES = 4


@dataclass(frozen=True)
class TierProfile:
    """
    Concrete knobs for one (tier, low_power) combination.

    Attributes:
        max_fps: Render ceiling for the frame pump.
        detection_interval_s: Minimum time between detection runs.
        detection_scale: Factor applied to the frame before detection.
        capture_width: Ideal capture width requested from the camera.
        capture_height: Ideal capture height requested from the camera.
        capture_fps: Ideal capture frame rate.
        max_capture_size: Optional (width, height) cap for the tightening pass.
    """
    max_fps: float
    detection_interval_s: float
    detection_scale: float
    capture_width: int
    capture_height: int
    capture_fps: int
    max_capture_size: Optional[Tuple[int, int]] = None

    @property
    def frame_interval_s(self) -> float:
        return 1.0 / self.max_fps


_PROFILES = {
    (ResourceTier.STANDARD, False): TierProfile(
        max_fps=30, detection_interval_s=1.0, detection_scale=0.85,
        capture_width=1280, capture_height=720, capture_fps=30,
    ),
    (ResourceTier.STANDARD, True): TierProfile(
        max_fps=10, detection_interval_s=2.0, detection_scale=0.6,
        capture_width=640, capture_height=480, capture_fps=15,
    ),
    (ResourceTier.CONSTRAINED, False): TierProfile(
        max_fps=5, detection_interval_s=3.0, detection_scale=0.35,
        capture_width=320, capture_height=240, capture_fps=5,
        max_capture_size=(480, 360),
    ),
    (ResourceTier.CONSTRAINED, True): TierProfile(
        max_fps=3, detection_interval_s=4.0, detection_scale=0.35,
        capture_width=320, capture_height=240, capture_fps=5,
        max_capture_size=(480, 360),
    ),
}


def profile_for(tier: ResourceTier, low_power: bool = False) -> TierProfile:
    """Return the tuning profile for a tier and power mode."""
    return _PROFILES[(ResourceTier(tier), bool(low_power))]


def detect_resource_tier(
    cpu_count: Optional[int] = None,
    system: Optional[str] = None,
    override: Optional[str] = None,
) -> ResourceTier:
    """
    Classify the host from platform hints.

    Args:
        cpu_count: Logical core count (defaults to os.cpu_count()).
        system: OS name as reported by platform.system().
        override: "constrained" or "standard" to force a tier ("auto"/None detects).

    Returns:
        CONSTRAINED on Linux hosts with few cores, STANDARD otherwise.
    """
    if override and override != "auto":
        tier = ResourceTier(override)
        logging.info(f"Resource tier forced by config: {tier.value}")
        return tier

    cores = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
    os_name = (system if system is not None else platform.system()).lower()

    if os_name == "linux" and cores <= CONSTRAINED_MAX_CORES:
        tier = ResourceTier.CONSTRAINED
    else:
        tier = ResourceTier.STANDARD

    logging.info(f"Resource tier detected: {tier.value} (os={os_name}, cores={cores})")
    return tier
