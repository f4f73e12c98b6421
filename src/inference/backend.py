"""
Detection capability interface.

A capability wraps one loaded model. Capabilities return pixel-space results
in the coordinate system of the image they were given.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Protocol

import numpy as np

from models.detection import DetectionResult


class ModelVariant(str, Enum):
    FACE_DETECTOR = "face-detector"
    CLASSIFIER = "classifier"
    OBJECT_DETECTOR = "object-detector"


class DetectionCapability(Protocol):
    variant: ModelVariant
    name: str

    def detect(self, image: np.ndarray) -> List[DetectionResult]:
        ...

    def close(self) -> None:
        ...
