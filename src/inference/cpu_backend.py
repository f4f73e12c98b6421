"""
Ultralytics capabilities (object detector and classifier).

Runs on CPU by default so the project works on a Pi and on dev machines alike;
set models.device to "cuda:0" where a GPU is available.
"""

from __future__ import annotations

import gc
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from models.detection import DetectionResult
from .backend import ModelVariant


@dataclass(frozen=True)
class CpuYoloConfig:
    model: str
    conf_threshold: float = 0.25
    iou_threshold: float = 0.45
    classes: Optional[Sequence[int]] = None
    class_name_overrides: Optional[Dict[int, str]] = None
    max_det: int = 20
    device: str = "cpu"
    imgsz: Optional[int] = None


def _load_yolo(model: str):
    try:
        from ultralytics import YOLO  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError(
            "Ultralytics is not installed. Install with `pip install ultralytics` "
            "or use the face-detector variant."
        ) from e
    return YOLO(model)


def _to_numpy(t) -> np.ndarray:
    return t.cpu().numpy() if hasattr(t, "cpu") else np.asarray(t)


def free_accelerator_memory() -> None:
    gc.collect()
    import torch  # ultralytics hard dependency

    if torch.cuda.is_available():
        torch.cuda.empty_cache()


class _UltralyticsCapability:
    variant: ModelVariant

    def __init__(self, cfg: CpuYoloConfig):
        self.cfg = cfg
        self.name = f"{self.variant.value}:{cfg.model}"
        self._model = _load_yolo(cfg.model)
        logging.info(f"Loaded {self.name} on {cfg.device}")

    def _predict_kwargs(self, image: np.ndarray):
        if self._model is None:
            raise RuntimeError(f"{self.name} has been closed")
        kwargs = dict(
            source=image,
            conf=self.cfg.conf_threshold,
            device=self.cfg.device,
            verbose=False,
        )
        if self.cfg.imgsz:
            kwargs["imgsz"] = self.cfg.imgsz
        return kwargs

    def close(self) -> None:
        if self._model is None:
            return
        self._model = None
        free_accelerator_memory()


class UltralyticsDetector(_UltralyticsCapability):
    variant = ModelVariant.OBJECT_DETECTOR

    def detect(self, image: np.ndarray) -> List[DetectionResult]:
        kwargs = self._predict_kwargs(image)
        results = self._model.predict(
            iou=self.cfg.iou_threshold,
            max_det=self.cfg.max_det,
            classes=list(self.cfg.classes) if self.cfg.classes is not None else None,
            **kwargs,
        )
        if not results:
            return []

        r0 = results[0]
        names = getattr(r0, "names", None) or {}
        boxes = getattr(r0, "boxes", None)
        if boxes is None:
            return []

        xyxy = _to_numpy(boxes.xyxy)
        conf = _to_numpy(boxes.conf)
        cls = _to_numpy(boxes.cls)

        out: List[DetectionResult] = []
        for (x1, y1, x2, y2), c, k in zip(xyxy, conf, cls):
            class_id = int(k)
            label = (
                (self.cfg.class_name_overrides or {}).get(class_id)
                or names.get(class_id)
                or str(class_id)
            )
            out.append(DetectionResult.from_xyxy(label, float(c), float(x1), float(y1), float(x2), float(y2)))
        return out


class UltralyticsClassifier(_UltralyticsCapability):
    """
    Whole-image classifier.

    Produces at most one result: the top-1 class, boxed to the full image,
    when its probability clears the confidence threshold.
    """

    variant = ModelVariant.CLASSIFIER

    def detect(self, image: np.ndarray) -> List[DetectionResult]:
        results = self._model.predict(**self._predict_kwargs(image))
        if not results:
            return []

        r0 = results[0]
        probs = getattr(r0, "probs", None)
        if probs is None:
            return []
        top1 = int(probs.top1)
        score = float(_to_numpy(probs.top1conf))
        if score < self.cfg.conf_threshold:
            return []

        names = getattr(r0, "names", None) or {}
        label = (self.cfg.class_name_overrides or {}).get(top1) or names.get(top1) or str(top1)
        h, w = image.shape[:2]
        return [DetectionResult.from_xyxy(label, score, 0, 0, w, h)]
