"""
Tests for pipeline/pump.py: frame ceiling, detection gate, count reporting and
the automatic low-power downgrade.
"""

import asyncio

import numpy as np
import pytest

from models.config import MotionGateConfig
from models.detection import BoundingBox, DetectionResult
from models.frame import FrameData
from models.tier import ResourceTier, profile_for
from pipeline.canvas import Canvas
from pipeline.pump import FramePump, MotionGate, PumpState
from runtime.cancellation import CancellationToken


class FakeClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


class FakeSource:
    def __init__(self, frame=None):
        self.frame = frame if frame is not None else np.full((240, 320, 3), 90, dtype=np.uint8)
        self.is_live = True
        self.released = 0

    def current_frame(self):
        if self.frame is None:
            return None
        return FrameData.from_numpy(self.frame, timestamp=0.0)

    def release_stream(self):
        self.released += 1
        self.is_live = False


class FakeCapability:
    name = "fake"

    def __init__(self, results=None, error=None, clock=None, latency_s=0.0):
        self.results = results or []
        self.error = error
        self.clock = clock
        self.latency_s = latency_s
        self.calls = 0

    def detect(self, image):
        self.calls += 1
        if self.clock is not None:
            self.clock.t += self.latency_s
        if self.error is not None:
            raise self.error
        return list(self.results)


class FakeLoader:
    def __init__(self, capability):
        self.capability = capability


def person(confidence=0.9):
    return DetectionResult("person", confidence, BoundingBox(10, 10, 40, 80))


def make_pump(capability, tier=ResourceTier.STANDARD, **kwargs):
    clock = kwargs.pop("clock", FakeClock())
    return FramePump(
        source=kwargs.pop("source", FakeSource()),
        canvas=Canvas(320, 240),
        loader=FakeLoader(capability),
        tier=tier,
        clock=clock,
        **kwargs,
    )


class TestDetectionGate:
    def test_gate_clears_after_success(self):
        pump = make_pump(FakeCapability([person(), person()]))

        async def scenario():
            assert await pump.tick(now=0.0)
            assert pump.processing
            await pump.wait_idle()

        asyncio.run(scenario())
        assert not pump.processing
        assert pump.count == 2
        assert pump.stats.detections == 1

    def test_gate_clears_after_failure_and_keeps_count(self):
        capability = FakeCapability([person()])
        pump = make_pump(capability)

        async def scenario():
            await pump.tick(now=0.0)
            await pump.wait_idle()
            capability.error = RuntimeError("inference failed")
            await pump.tick(now=10.0)
            await pump.wait_idle()

        asyncio.run(scenario())
        assert not pump.processing
        assert pump.count == 1
        assert pump.stats.detection_errors == 1

    def test_no_overlapping_detections(self):
        capability = FakeCapability([person()])
        pump = make_pump(capability)

        async def scenario():
            pump.processing = True
            await pump.tick(now=0.0)

        asyncio.run(scenario())
        assert capability.calls == 0
        assert pump.stats.skipped_busy == 1

    def test_no_detection_without_model(self):
        pump = make_pump(None)

        async def scenario():
            return await pump.tick(now=0.0)

        assert asyncio.run(scenario()) is True
        assert not pump.processing
        assert pump.stats.frames_drawn == 1

    def test_paused_pump_paints_but_does_not_detect(self):
        capability = FakeCapability([person()])
        pump = make_pump(capability)
        pump.paused = True

        async def scenario():
            return await pump.tick(now=0.0)

        assert asyncio.run(scenario()) is True
        assert capability.calls == 0

    def test_detection_respects_interval(self):
        capability = FakeCapability([person()])
        pump = make_pump(capability)
        interval = pump.profile.detection_interval_s

        async def scenario():
            await pump.tick(now=0.0)
            await pump.wait_idle()
            await pump.tick(now=interval / 2)
            await pump.wait_idle()
            await pump.tick(now=interval + 0.01)
            await pump.wait_idle()

        asyncio.run(scenario())
        assert capability.calls == 2


class TestCounting:
    def test_only_count_labels_are_counted(self):
        results = [person(), DetectionResult("chair", 0.9, BoundingBox(0, 0, 5, 5))]
        pump = make_pump(FakeCapability(results), count_labels=["person"])

        async def scenario():
            await pump.tick(now=0.0)
            await pump.wait_idle()

        asyncio.run(scenario())
        assert pump.count == 1
        assert len(pump.last_results) == 2

    def test_count_is_reported_to_async_callback(self):
        reported = []

        async def on_count(n):
            reported.append(n)

        pump = make_pump(FakeCapability([person(), person(), person()]), on_count=on_count)

        async def scenario():
            await pump.tick(now=0.0)
            await pump.wait_idle()

        asyncio.run(scenario())
        assert reported == [3]

    def test_report_failure_does_not_break_the_pump(self):
        def on_count(n):
            raise RuntimeError("sink down")

        pump = make_pump(FakeCapability([person()]), on_count=on_count)

        async def scenario():
            await pump.tick(now=0.0)
            await pump.wait_idle()

        asyncio.run(scenario())
        assert pump.count == 1
        assert pump.stats.detection_errors == 0

    def test_overlay_is_painted(self):
        pump = make_pump(FakeCapability([person()]))

        async def scenario():
            await pump.tick(now=0.0)
            await pump.wait_idle()

        asyncio.run(scenario())
        # Frame is uniform grey; any other value comes from the overlay
        assert np.any(pump.canvas.surface != 90)


class TestFrameCeiling:
    def test_ticks_inside_frame_interval_do_not_paint(self):
        pump = make_pump(None)
        interval = pump.profile.frame_interval_s

        async def scenario():
            painted = [
                await pump.tick(now=0.0),
                await pump.tick(now=interval / 2),
                await pump.tick(now=interval * 1.5),
            ]
            return painted

        assert asyncio.run(scenario()) == [True, False, True]

    def test_missing_frame_is_a_render_error(self):
        source = FakeSource()
        source.frame = None
        pump = make_pump(None, source=source)

        async def scenario():
            return await pump.tick(now=0.0)

        assert asyncio.run(scenario()) is False
        assert pump.stats.render_errors == 1


class TestLowPowerDowngrade:
    def test_slow_detection_on_constrained_switches_to_low_power(self):
        clock = FakeClock()
        toggles = []
        capability = FakeCapability([person()], clock=clock, latency_s=0.6)
        pump = make_pump(capability, tier=ResourceTier.CONSTRAINED, clock=clock, on_low_power=toggles.append)
        normal = profile_for(ResourceTier.CONSTRAINED, False)
        low = profile_for(ResourceTier.CONSTRAINED, True)

        async def scenario():
            await pump.tick(now=0.0)
            await pump.wait_idle()
            # A tick that the normal ceiling would allow is now skipped
            return await pump.tick(now=normal.frame_interval_s + 0.01)

        painted = asyncio.run(scenario())
        assert pump.low_power is True
        assert toggles == [True]
        assert pump.profile == low
        assert normal.frame_interval_s + 0.01 < low.frame_interval_s
        assert painted is False

    def test_slow_detection_on_standard_keeps_mode(self):
        clock = FakeClock()
        capability = FakeCapability([person()], clock=clock, latency_s=0.6)
        pump = make_pump(capability, tier=ResourceTier.STANDARD, clock=clock)

        async def scenario():
            await pump.tick(now=0.0)
            await pump.wait_idle()

        asyncio.run(scenario())
        assert pump.low_power is False

    def test_fast_detection_on_constrained_keeps_mode(self):
        clock = FakeClock()
        capability = FakeCapability([person()], clock=clock, latency_s=0.2)
        pump = make_pump(capability, tier=ResourceTier.CONSTRAINED, clock=clock)

        async def scenario():
            await pump.tick(now=0.0)
            await pump.wait_idle()

        asyncio.run(scenario())
        assert pump.low_power is False
        assert pump.stats.last_detection_s == pytest.approx(0.2)


class TestLifecycle:
    def test_stop_releases_stream_once(self):
        source = FakeSource()
        pump = make_pump(None, source=source)
        pump.stop()
        pump.stop()
        assert source.released == 1
        assert pump.state == PumpState.STOPPED

    def test_tick_after_stop_does_nothing(self):
        pump = make_pump(FakeCapability([person()]))
        pump.stop()

        async def scenario():
            return await pump.tick(now=0.0)

        assert asyncio.run(scenario()) is False
        assert pump.stats.ticks == 0

    def test_run_exits_when_token_cancelled(self):
        source = FakeSource()
        pump = FramePump(source=source, canvas=Canvas(320, 240), loader=FakeLoader(None), tier=ResourceTier.STANDARD)

        async def scenario():
            token = CancellationToken()
            task = asyncio.ensure_future(pump.run(token))
            await asyncio.sleep(0.1)
            token.cancel("stopped")
            await asyncio.wait_for(task, timeout=2.0)

        asyncio.run(scenario())
        assert pump.state == PumpState.STOPPED
        assert source.released == 1
        assert pump.stats.frames_drawn > 0


class TestMotionGate:
    def test_static_scene_is_skipped(self):
        gate = MotionGate(MotionGateConfig(enabled=True, threshold=4.0, sample_size=16))
        frame = np.full((120, 160, 3), 50, dtype=np.uint8)
        assert gate.should_detect(frame) is True
        assert gate.should_detect(frame.copy()) is False
        assert gate.should_detect(np.full((120, 160, 3), 200, dtype=np.uint8)) is True

    def test_disabled_gate_always_detects(self):
        gate = MotionGate(MotionGateConfig(enabled=False))
        frame = np.zeros((10, 10, 3), dtype=np.uint8)
        assert gate.should_detect(frame) and gate.should_detect(frame)
