"""
Model loader: acquires exactly one detection capability for the current tier.

Variant selection is data, not control flow. Each tier maps to an ordered
plan of attempts; every attempt goes through the same timeout and error
handling, and the emergency face detector closes every plan.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from models.config import ModelsConfig
from models.errors import ModelLoadFailed, OperationCancelled
from models.tier import ResourceTier
from runtime.cancellation import CancellationToken
from .backend import DetectionCapability, ModelVariant
from .cpu_backend import CpuYoloConfig, UltralyticsClassifier, UltralyticsDetector
from .face_detector import FaceDetectorConfig, HaarFaceDetector

WARM_UP_SHAPE = (120, 160, 3)

# Settings for the face detector on constrained hosts
CONSTRAINED_FACE_MAX_FACES = 6
CONSTRAINED_FACE_INPUT_SIZE = 128
CONSTRAINED_FACE_IOU = 0.3
CONSTRAINED_FACE_SCORE = 0.5


@dataclass(frozen=True)
class LoadAttempt:
    """One (variant, config) entry of a selection plan."""
    name: str
    variant: ModelVariant
    factory: Callable[[], DetectionCapability]


def face_detector_config(cfg: ModelsConfig, constrained: bool = False) -> FaceDetectorConfig:
    """Strict defaults everywhere; constrained hosts trade precision for speed."""
    if not constrained:
        return FaceDetectorConfig(cascade=cfg.face_cascade, max_faces=cfg.max_detections)
    return FaceDetectorConfig(
        cascade=cfg.face_cascade,
        max_faces=CONSTRAINED_FACE_MAX_FACES,
        input_size=CONSTRAINED_FACE_INPUT_SIZE,
        score_threshold=CONSTRAINED_FACE_SCORE,
        iou_threshold=CONSTRAINED_FACE_IOU,
    )


def emergency_attempt(cfg: ModelsConfig) -> LoadAttempt:
    fd_cfg = face_detector_config(cfg)
    return LoadAttempt("face-detector", ModelVariant.FACE_DETECTOR, lambda: HaarFaceDetector(fd_cfg))


def build_plan(tier: ResourceTier, cfg: ModelsConfig) -> List[LoadAttempt]:
    """
    Ordered attempts for a tier, emergency fallback included.

    Args:
        tier: Resource tier of the host.
        cfg: Model section of the app config.

    Returns:
        Attempts in the order they should be tried.
    """
    if ResourceTier(tier) == ResourceTier.CONSTRAINED:
        fd_cfg = face_detector_config(cfg, constrained=True)
        return [
            LoadAttempt("face-detector:constrained", ModelVariant.FACE_DETECTOR, lambda: HaarFaceDetector(fd_cfg)),
            emergency_attempt(cfg),
        ]

    def yolo(model: str) -> CpuYoloConfig:
        return CpuYoloConfig(
            model=model,
            conf_threshold=cfg.score_threshold,
            iou_threshold=cfg.iou_threshold,
            max_det=cfg.max_detections,
            device=cfg.device,
        )

    det_cfg = yolo(cfg.object_detector)
    light_cfg = yolo(cfg.light_object_detector)
    cls_cfg = yolo(cfg.classifier)
    return [
        LoadAttempt(f"object-detector:{cfg.object_detector}", ModelVariant.OBJECT_DETECTOR,
                    lambda: UltralyticsDetector(det_cfg)),
        LoadAttempt(f"object-detector:{cfg.light_object_detector}", ModelVariant.OBJECT_DETECTOR,
                    lambda: UltralyticsDetector(light_cfg)),
        LoadAttempt(f"classifier:{cfg.classifier}", ModelVariant.CLASSIFIER,
                    lambda: UltralyticsClassifier(cls_cfg)),
        emergency_attempt(cfg),
    ]


def _close_late_capability(fut: "asyncio.Future[DetectionCapability]") -> None:
    if fut.cancelled() or fut.exception() is not None:
        return
    logging.warning("Model finished loading after its attempt was abandoned; closing it")
    fut.result().close()


class ModelLoader:
    """
    Owns the single active detection capability.

    Args:
        cfg: Model section of the app config.
        plan_builder: Maps a tier to its ordered attempts (defaults to build_plan).
        attempt_timeout_s: Upper bound on a single attempt.
    """

    def __init__(
        self,
        cfg: Optional[ModelsConfig] = None,
        plan_builder: Optional[Callable[[ResourceTier], List[LoadAttempt]]] = None,
        attempt_timeout_s: Optional[float] = None,
    ):
        self.cfg = cfg or ModelsConfig()
        self._plan_builder = plan_builder or (lambda tier: build_plan(tier, self.cfg))
        self.attempt_timeout_s = attempt_timeout_s if attempt_timeout_s is not None else self.cfg.load_timeout_s
        self.capability: Optional[DetectionCapability] = None
        self.last_error: Optional[ModelLoadFailed] = None
        self._inflight: Optional[asyncio.Task] = None

    @property
    def is_loading(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def is_ready(self) -> bool:
        return self.capability is not None

    async def load(self, tier: ResourceTier, token: Optional[CancellationToken] = None) -> DetectionCapability:
        """
        Load a capability for `tier`.

        Concurrent callers share the in-flight load instead of starting a
        second one.

        Raises:
            ModelLoadFailed: Every attempt in the plan failed.
            OperationCancelled: The token fired during loading.
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._load(tier, token or CancellationToken()))
        else:
            logging.info("Model load already in progress; joining it")
        return await asyncio.shield(self._inflight)

    async def _load(self, tier: ResourceTier, token: CancellationToken) -> DetectionCapability:
        self.unload()
        plan = self._plan_builder(tier)
        attempted: List[str] = []
        errors: List[str] = []
        logging.info(f"Loading detection model for tier={ResourceTier(tier).value} ({len(plan)} candidate(s))")

        for attempt in plan:
            if attempt.name in attempted:
                continue
            attempted.append(attempt.name)
            capability = await self._try_attempt(attempt, token, errors)
            if capability is None:
                continue

            if token.cancelled:
                capability.close()
                token.check()

            await self._warm_up(capability)
            self.capability = capability
            self.last_error = None
            return capability

        self.last_error = ModelLoadFailed(attempted, errors)
        logging.error(f"All model loading attempts failed: {errors}")
        raise self.last_error

    async def _try_attempt(
        self, attempt: LoadAttempt, token: CancellationToken, errors: List[str]
    ) -> Optional[DetectionCapability]:
        started = time.monotonic()
        logging.info(f"Loading model {attempt.name}")
        try:
            capability = await token.wait_or_cancel(
                asyncio.to_thread(attempt.factory),
                timeout=self.attempt_timeout_s,
                on_abandon=_close_late_capability,
            )
        except OperationCancelled:
            raise
        except asyncio.TimeoutError:
            errors.append(f"{attempt.name}: timed out after {self.attempt_timeout_s}s")
            logging.warning(f"Model {attempt.name} timed out after {self.attempt_timeout_s}s")
            return None
        except Exception as e:
            errors.append(f"{attempt.name}: {e}")
            logging.warning(f"Model {attempt.name} failed to load: {e}")
            return None

        logging.info(f"Model {attempt.name} loaded in {time.monotonic() - started:.2f}s")
        return capability

    async def _warm_up(self, capability: DetectionCapability) -> None:
        dummy = np.zeros(WARM_UP_SHAPE, dtype=np.uint8)
        try:
            await asyncio.to_thread(capability.detect, dummy)
        except Exception as e:
            logging.warning(f"Model warm-up failed, continuing: {e}")

    def unload(self) -> None:
        """Close the active capability. Idempotent."""
        capability, self.capability = self.capability, None
        if capability is None:
            return
        try:
            capability.close()
        except Exception as e:
            logging.warning(f"Error closing model {getattr(capability, 'name', '?')}: {e}")
        logging.info("Detection model unloaded")
