"""
Tests for the threaded OpenCV track.
"""

import threading
import time

import cv2
import numpy as np

from camera.backends.opencv import OpenCVTrack
from models.stream import StreamConstraints


class SlowCapture:
    """cv2.VideoCapture stand-in whose reads take a while and record overlap."""

    def __init__(self, width=1280, height=720, fps=30.0, read_s=0.02):
        self.props = {
            cv2.CAP_PROP_FRAME_WIDTH: width,
            cv2.CAP_PROP_FRAME_HEIGHT: height,
            cv2.CAP_PROP_FPS: fps,
        }
        self.read_s = read_s
        self.reading = threading.Event()
        self.reads = 0
        self.overlaps = 0
        self.released = False

    def read(self):
        self.reading.set()
        time.sleep(self.read_s)
        self.reads += 1
        self.reading.clear()
        h, w = int(self.props[cv2.CAP_PROP_FRAME_HEIGHT]), int(self.props[cv2.CAP_PROP_FRAME_WIDTH])
        return True, np.zeros((h, w, 3), dtype=np.uint8)

    def get(self, prop):
        return self.props.get(prop, 0)

    def set(self, prop, value):
        if self.reading.is_set():
            self.overlaps += 1
        self.props[prop] = value
        return True

    def release(self):
        self.released = True


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


class TestOpenCVTrack:
    def test_constraints_never_change_the_device_mid_read(self):
        cap = SlowCapture()
        track = OpenCVTrack(0, cap, label="USB Camera")
        track.start()
        try:
            assert wait_for(lambda: cap.reads >= 2)
            for _ in range(5):
                cap.reading.wait(timeout=1.0)
                settings = track.apply_constraints(StreamConstraints(max_width=640, max_height=480, max_fps=15))
        finally:
            track.stop()

        assert cap.overlaps == 0
        assert (settings.width, settings.height, settings.frame_rate) == (640, 480, 15.0)
        assert cap.released

    def test_frames_follow_the_new_resolution(self):
        cap = SlowCapture(read_s=0.005)
        track = OpenCVTrack(0, cap)
        track.start()
        try:
            track.apply_constraints(StreamConstraints(max_width=320, max_height=240))
            assert wait_for(lambda: track.current_frame() is not None and track.current_frame().size == (320, 240))
        finally:
            track.stop()
        assert track.ready_state == "ended"
