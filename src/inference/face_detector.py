"""
Face detector capability using the Haar cascades bundled with OpenCV.

Cheap enough for single-board computers; used for the constrained tier and as
the emergency fallback when every heavier model fails to load.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import List, Optional

import cv2
import numpy as np

from models.detection import DetectionResult
from .backend import ModelVariant


@dataclass(frozen=True)
class FaceDetectorConfig:
    cascade: str = "haarcascade_frontalface_default.xml"
    max_faces: int = 10
    input_size: Optional[int] = None
    score_threshold: float = 0.75
    iou_threshold: float = 0.3
    scale_factor: float = 1.1
    min_neighbors: int = 4


def resolve_cascade_path(cascade: str) -> str:
    if os.path.isfile(cascade):
        return cascade
    return os.path.join(cv2.data.haarcascades, cascade)


def _weight_to_score(weight: float) -> float:
    # Haar level weights are unbounded; squash onto [0, 1]
    return 1.0 / (1.0 + math.exp(-float(weight)))


class HaarFaceDetector:
    variant = ModelVariant.FACE_DETECTOR

    def __init__(self, cfg: FaceDetectorConfig):
        self.cfg = cfg
        self.name = f"face-detector:{os.path.basename(cfg.cascade)}"
        path = resolve_cascade_path(cfg.cascade)
        self._cascade: Optional[cv2.CascadeClassifier] = cv2.CascadeClassifier(path)
        if self._cascade.empty():
            self._cascade = None
            raise IOError(f"Failed to load Haar cascade from {path}")
        logging.info(
            f"Face detector loaded ({path}, max_faces={cfg.max_faces}, input_size={cfg.input_size})"
        )

    def detect(self, image: np.ndarray) -> List[DetectionResult]:
        if self._cascade is None:
            raise RuntimeError("Face detector has been closed")

        gray = image if image.ndim == 2 else cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        h, w = gray.shape[:2]
        scale = 1.0
        if self.cfg.input_size and max(h, w) > self.cfg.input_size:
            scale = self.cfg.input_size / float(max(h, w))
            gray = cv2.resize(gray, (max(1, int(w * scale)), max(1, int(h * scale))), interpolation=cv2.INTER_AREA)

        rects, _levels, weights = self._cascade.detectMultiScale3(
            gray,
            scaleFactor=self.cfg.scale_factor,
            minNeighbors=self.cfg.min_neighbors,
            outputRejectLevels=True,
        )
        if len(rects) == 0:
            return []

        boxes = [[int(x), int(y), int(bw), int(bh)] for (x, y, bw, bh) in rects]
        scores = [_weight_to_score(wt) for wt in np.asarray(weights).reshape(-1)]
        keep = cv2.dnn.NMSBoxes(boxes, scores, self.cfg.score_threshold, self.cfg.iou_threshold)
        keep_idx = sorted(np.asarray(keep).reshape(-1).tolist(), key=lambda i: scores[i], reverse=True)

        inv = 1.0 / scale
        out: List[DetectionResult] = []
        for i in keep_idx[: self.cfg.max_faces]:
            x, y, bw, bh = boxes[i]
            out.append(
                DetectionResult.from_xyxy("face", scores[i], x * inv, y * inv, (x + bw) * inv, (y + bh) * inv)
            )
        return out

    def close(self) -> None:
        self._cascade = None
