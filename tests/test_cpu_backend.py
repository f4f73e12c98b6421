"""
Tests for the ultralytics capabilities with the YOLO model stubbed out.
"""

from types import SimpleNamespace

import numpy as np
import torch

import inference.cpu_backend as cpu_backend
from inference.cpu_backend import CpuYoloConfig, UltralyticsClassifier, UltralyticsDetector


class StubYolo:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def predict(self, **kwargs):
        self.calls.append(kwargs)
        return [self.result]


def with_stub(monkeypatch, result):
    stub = StubYolo(result)
    monkeypatch.setattr(cpu_backend, "_load_yolo", lambda model: stub)
    return stub


def test_detector_maps_boxes_and_names(monkeypatch):
    boxes = SimpleNamespace(
        xyxy=np.array([[10.0, 20.0, 50.0, 80.0]]),
        conf=np.array([0.9]),
        cls=np.array([0]),
    )
    stub = with_stub(monkeypatch, SimpleNamespace(names={0: "person"}, boxes=boxes))
    detector = UltralyticsDetector(CpuYoloConfig(model="yolov8n.pt", classes=[0]))

    results = detector.detect(np.zeros((100, 100, 3), dtype=np.uint8))

    assert [(r.label, r.confidence) for r in results] == [("person", 0.9)]
    assert results[0].box.as_int_xyxy() == (10, 20, 50, 80)
    assert stub.calls[0]["classes"] == [0]


def test_classifier_below_threshold_is_empty(monkeypatch):
    probs = SimpleNamespace(top1=3, top1conf=0.1)
    with_stub(monkeypatch, SimpleNamespace(names={3: "person"}, probs=probs))
    classifier = UltralyticsClassifier(CpuYoloConfig(model="yolov8n-cls.pt", conf_threshold=0.25))
    assert classifier.detect(np.zeros((10, 10, 3), dtype=np.uint8)) == []


def test_close_frees_accelerator_memory(monkeypatch):
    emptied = []
    monkeypatch.setattr(torch.cuda, "is_available", lambda: True)
    monkeypatch.setattr(torch.cuda, "empty_cache", lambda: emptied.append(True))
    with_stub(monkeypatch, SimpleNamespace(names={}, boxes=None))
    detector = UltralyticsDetector(CpuYoloConfig(model="yolov8n.pt"))

    detector.close()
    detector.close()

    assert emptied == [True]
