"""
Frame pump: the cooperative tick loop of the live feed.

Every tick paints the current camera frame onto the canvas, capped by the
tier's frame-rate ceiling. On a slower cadence it hands a downscaled copy of
the frame to the detection capability, paints the overlay and reports the
count. A single processing gate keeps detections from overlapping while ticks
keep running.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import cv2
import numpy as np

from models.config import MotionGateConfig
from models.detection import DetectionResult, count_matching
from models.errors import DetectionTransientError, OperationCancelled, RenderTransientError
from models.tier import ResourceTier, TierProfile, profile_for
from runtime.cancellation import CancellationToken
from .overlay import draw_detections

# Upper bound on a single idle wait so a stopped pump exits promptly
MAX_IDLE_WAIT_S = 0.1


class PumpState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    DETECTING = "detecting"
    STOPPED = "stopped"


@dataclass
class PumpStats:
    """Runtime statistics for the frame pump."""
    ticks: int = 0
    frames_drawn: int = 0
    detections: int = 0
    detection_errors: int = 0
    render_errors: int = 0
    skipped_busy: int = 0
    skipped_no_motion: int = 0
    last_detection_s: Optional[float] = None
    last_frame_ts: Optional[float] = None
    effective_fps: float = 0.0
    start_time: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticks": self.ticks,
            "frames_drawn": self.frames_drawn,
            "detections": self.detections,
            "detection_errors": self.detection_errors,
            "render_errors": self.render_errors,
            "skipped_busy": self.skipped_busy,
            "skipped_no_motion": self.skipped_no_motion,
            "last_detection_s": self.last_detection_s,
            "effective_fps": round(self.effective_fps, 2),
            "uptime_seconds": int(time.time() - self.start_time),
        }


class MotionGate:
    """
    Skips detection while the scene is static.

    Compares a small greyscale thumbnail of each candidate frame against the
    previous one; detection runs only when the mean absolute difference
    reaches the threshold.
    """

    def __init__(self, cfg: MotionGateConfig):
        self.cfg = cfg
        self._previous: Optional[np.ndarray] = None

    def _thumbnail(self, frame: np.ndarray) -> np.ndarray:
        gray = frame if frame.ndim == 2 else cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        size = self.cfg.sample_size
        return cv2.resize(gray, (size, size), interpolation=cv2.INTER_AREA).astype(np.int16)

    def should_detect(self, frame: np.ndarray) -> bool:
        if not self.cfg.enabled:
            return True
        thumb = self._thumbnail(frame)
        previous, self._previous = self._previous, thumb
        if previous is None:
            return True
        return float(np.mean(np.abs(thumb - previous))) >= self.cfg.threshold

    def reset(self) -> None:
        self._previous = None


class FramePump:
    """
    Drives rendering and detection for one live stream.

    Args:
        source: Frame provider (the camera negotiator): is_live, current_frame(), release_stream().
        canvas: Surface the frames and overlay are painted on.
        loader: Model loader; its `capability` is read on every detection.
        tier: Resource tier of the host.
        low_power: Start in low-power mode.
        on_count: Called with each new count; may be a coroutine function.
        on_low_power: Called with True when the pump downgrades itself.
        count_labels: Labels that count as a subject (empty counts everything).
        slow_detection_s: Detection latency that triggers a downgrade on constrained hosts.
        motion_gate: Optional motion gate.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        source,
        canvas,
        loader,
        tier: ResourceTier,
        low_power: bool = False,
        on_count: Optional[Callable[[int], Any]] = None,
        on_low_power: Optional[Callable[[bool], Any]] = None,
        count_labels: Sequence[str] = ("person", "face"),
        slow_detection_s: float = 0.5,
        motion_gate: Optional[MotionGate] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.canvas = canvas
        self.loader = loader
        self.tier = ResourceTier(tier)
        self.low_power = bool(low_power)
        self.on_count = on_count
        self.on_low_power = on_low_power
        self.count_labels = list(count_labels)
        self.slow_detection_s = slow_detection_s
        self.motion_gate = motion_gate
        self.clock = clock

        self.state = PumpState.IDLE
        self.processing = False
        self.paused = False
        self.count = 0
        self.stats = PumpStats()

        self._token: Optional[CancellationToken] = None
        self._last_frame_at: Optional[float] = None
        self._last_detection_at: Optional[float] = None
        self._last_results: List[DetectionResult] = []
        self._last_scale = (1.0, 1.0)
        self._detection_task: Optional[asyncio.Task] = None

    @property
    def profile(self) -> TierProfile:
        return profile_for(self.tier, self.low_power)

    @property
    def last_results(self) -> List[DetectionResult]:
        return list(self._last_results)

    def set_low_power(self, enabled: bool) -> None:
        if self.low_power == enabled:
            return
        self.low_power = enabled
        p = self.profile
        logging.info(
            f"Frame pump low-power mode {'on' if enabled else 'off'} "
            f"(max_fps={p.max_fps}, detection_interval={p.detection_interval_s}s, scale={p.detection_scale})"
        )

    async def run(self, token: CancellationToken) -> None:
        """Tick until the token fires or stop() is called."""
        self._token = token
        self.state = PumpState.STREAMING
        logging.info(f"Frame pump started (tier={self.tier.value}, low_power={self.low_power})")
        try:
            while not token.cancelled and self.state != PumpState.STOPPED:
                await self.tick()
                await token.sleep(self._time_until_next_frame())
        except OperationCancelled:
            pass
        finally:
            self.stop()

    def _time_until_next_frame(self) -> float:
        if self._last_frame_at is None:
            return 0.0
        remaining = self._last_frame_at + self.profile.frame_interval_s - self.clock()
        return min(MAX_IDLE_WAIT_S, max(0.0, remaining))

    async def tick(self, now: Optional[float] = None) -> bool:
        """
        Run one iteration of the loop.

        Returns:
            True if a frame was painted this tick.
        """
        if self.state == PumpState.STOPPED:
            return False
        if self._token is not None and self._token.cancelled:
            return False
        if not self.source.is_live:
            return False

        now = self.clock() if now is None else now
        self.stats.ticks += 1

        if self._last_frame_at is not None and now - self._last_frame_at < self.profile.frame_interval_s:
            return False
        if self._last_frame_at is not None:
            dt = now - self._last_frame_at
            if dt > 0:
                inst = 1.0 / dt
                self.stats.effective_fps = inst if self.stats.effective_fps == 0 else 0.9 * self.stats.effective_fps + 0.1 * inst
        self._last_frame_at = now

        frame = self._draw_frame()
        if frame is None:
            return False

        if self._detection_due(now):
            self._start_detection(frame, now)
        return True

    def _draw_frame(self) -> Optional[np.ndarray]:
        try:
            frame_data = self.source.current_frame()
            if frame_data is None or frame_data.is_empty:
                raise RenderTransientError("no frame available yet")
            self.canvas.draw_image(frame_data.frame)
            if self._last_results:
                draw_detections(self._last_results, self.canvas, *self._last_scale, self.count)
        except Exception as e:
            self.stats.render_errors += 1
            logging.debug(f"Could not draw video frame: {e}")
            return None
        self.stats.frames_drawn += 1
        self.stats.last_frame_ts = time.time()
        return frame_data.frame

    def _detection_due(self, now: float) -> bool:
        if self.paused or self.loader.capability is None:
            return False
        if self._last_detection_at is not None and now - self._last_detection_at < self.profile.detection_interval_s:
            return False
        if self.processing:
            self.stats.skipped_busy += 1
            return False
        return True

    def _start_detection(self, frame: np.ndarray, now: float) -> None:
        self._last_detection_at = now
        if self.motion_gate is not None and not self.motion_gate.should_detect(frame):
            self.stats.skipped_no_motion += 1
            return
        self.processing = True
        self._detection_task = asyncio.ensure_future(self._detect(frame))

    async def _detect(self, frame: np.ndarray) -> None:
        capability = self.loader.capability
        self.state = PumpState.DETECTING
        try:
            if capability is None:
                raise DetectionTransientError("model unloaded")
            h, w = frame.shape[:2]
            scale = self.profile.detection_scale
            small_w, small_h = max(1, int(w * scale)), max(1, int(h * scale))
            small = cv2.resize(frame, (small_w, small_h), interpolation=cv2.INTER_AREA)

            started = self.clock()
            results = await asyncio.to_thread(capability.detect, small)
            elapsed = self.clock() - started

            if self.state == PumpState.STOPPED:
                return

            self.count = count_matching(results, self.count_labels)
            self._last_results = list(results)
            self._last_scale = (self.canvas.width / small_w, self.canvas.height / small_h)
            self.stats.detections += 1
            self.stats.last_detection_s = elapsed
            draw_detections(self._last_results, self.canvas, *self._last_scale, self.count)

            await self._report(self.count)
            self._maybe_downgrade(elapsed)
        except Exception as e:
            self.stats.detection_errors += 1
            logging.warning(f"Detection error, keeping previous count {self.count}: {e}")
        finally:
            self.processing = False
            if self.state == PumpState.DETECTING:
                self.state = PumpState.STREAMING

    async def _report(self, count: int) -> None:
        if self.on_count is None:
            return
        try:
            result = self.on_count(count)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logging.error(f"Failed to report count {count}: {e}")

    def _maybe_downgrade(self, elapsed: float) -> None:
        if self.tier != ResourceTier.CONSTRAINED or self.low_power:
            return
        if elapsed <= self.slow_detection_s:
            return
        logging.warning(f"Detection took {elapsed * 1000:.0f}ms; switching to low-power mode")
        self.set_low_power(True)
        if self.on_low_power is not None:
            self.on_low_power(True)

    async def wait_idle(self) -> None:
        """Wait for an in-flight detection to finish."""
        task = self._detection_task
        if task is not None and not task.done():
            await asyncio.wait({task})

    def stop(self) -> None:
        """Stop ticking, release the stream and clear the gate. Idempotent."""
        if self.state == PumpState.STOPPED:
            return
        self.state = PumpState.STOPPED
        self.processing = False
        if self.motion_gate is not None:
            self.motion_gate.reset()
        self.source.release_stream()
        logging.info(
            f"Frame pump stopped (frames={self.stats.frames_drawn}, detections={self.stats.detections}, "
            f"errors={self.stats.detection_errors})"
        )
