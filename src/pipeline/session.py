"""
Live feed session.

Owns everything the live feed needs for one process: the camera negotiator,
the model loader, the canvas, the frame pump and the count aggregator, plus
the cancellation token shared by every async operation. The web layer drives
it through start/stop/retry/reload/pause/resume and the low-power toggle.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from models.config import Config
from models.errors import CameraError, ModelLoadFailed, OperationCancelled, PeopleCounterError
from models.stream import DeviceDescriptor
from models.tier import ResourceTier
from runtime.cancellation import CancellationToken
from .pump import FramePump, MotionGate, PumpState

LOW_POWER_KEY = "low_power_mode"


class LiveFeedSession:
    """
    Args:
        config: Typed app config.
        tier: Resource tier detected at startup.
        negotiator: CameraNegotiator owning the stream.
        loader: ModelLoader owning the capability.
        canvas: Canvas the pump paints on.
        aggregator: CountAggregator receiving counts.
        store: Optional OfflineStore persisting the low-power preference.
    """

    def __init__(self, config: Config, tier: ResourceTier, negotiator, loader, canvas, aggregator, store=None):
        self.config = config
        self.tier = ResourceTier(tier)
        self.negotiator = negotiator
        self.loader = loader
        self.canvas = canvas
        self.aggregator = aggregator
        self.store = store

        stored = store.get(LOW_POWER_KEY) if store is not None else None
        self.low_power = bool(stored) if stored is not None else config.tier.low_power

        self.token = CancellationToken()
        self.pump: Optional[FramePump] = None
        self.devices: List[DeviceDescriptor] = []
        self.last_error: Optional[PeopleCounterError] = None
        self.paused = False
        self._pump_task: Optional[asyncio.Task] = None
        self._op_lock = asyncio.Lock()

    @property
    def streaming(self) -> bool:
        return self.pump is not None and self.pump.state != PumpState.STOPPED and self.negotiator.is_live

    @property
    def count(self) -> int:
        return self.pump.count if self.pump is not None else 0

    async def start(self) -> None:
        """Load the model, then open the camera and start the pump."""
        async with self._op_lock:
            if self.token.cancelled:
                self.token = CancellationToken()
            await self._load_model()
            await self._start_camera()

    async def stop(self) -> None:
        """Cancel everything in flight, stop the pump and release the stream."""
        async with self._op_lock:
            self.token.cancel("session stopped")
            await self._stop_pump()
            self.negotiator.release_stream()
            logging.info("Live feed stopped")

    async def shutdown(self) -> None:
        await self.stop()
        self.loader.unload()

    async def retry_camera(self) -> None:
        async with self._op_lock:
            if self.token.cancelled:
                self.token = CancellationToken()
            await self._start_camera()

    async def reload_model(self) -> None:
        async with self._op_lock:
            if self.token.cancelled:
                self.token = CancellationToken()
            await self._load_model()

    def pause(self) -> None:
        self.paused = True
        if self.pump is not None:
            self.pump.paused = True
        logging.info("Detection paused")

    def resume(self) -> None:
        self.paused = False
        if self.pump is not None:
            self.pump.paused = False
        logging.info("Detection resumed")

    async def set_low_power(self, enabled: bool) -> None:
        """Persist the preference and restart the stream with the new constraints."""
        enabled = bool(enabled)
        self._persist_low_power(enabled)
        if self.low_power == enabled:
            return
        self.low_power = enabled
        logging.info(f"Low-power mode {'enabled' if enabled else 'disabled'}")
        if self.streaming:
            await self.retry_camera()

    async def list_cameras(self) -> List[DeviceDescriptor]:
        self.devices = await self.negotiator.list_cameras()
        return self.devices

    def _persist_low_power(self, enabled: bool) -> None:
        if self.store is not None:
            self.store.set(LOW_POWER_KEY, enabled)

    def _on_pump_low_power(self, enabled: bool) -> None:
        self.low_power = enabled
        self._persist_low_power(enabled)

    async def _load_model(self) -> None:
        try:
            await self.loader.load(self.tier, self.token)
        except ModelLoadFailed as e:
            self.last_error = e
        except OperationCancelled:
            logging.info("Model load cancelled")
        else:
            if isinstance(self.last_error, ModelLoadFailed):
                self.last_error = None

    async def _start_camera(self) -> None:
        await self._stop_pump()
        try:
            self.devices = await self.negotiator.list_cameras()
            device = self._choose_device(self.devices)
            await self.negotiator.acquire_stream(device, self.tier, self.low_power, self.token)
        except CameraError as e:
            logging.error(f"Camera unavailable: {e}")
            self.last_error = e
            return
        except OperationCancelled:
            logging.info("Camera acquisition cancelled")
            return

        if isinstance(self.last_error, CameraError):
            self.last_error = None

        pump_cfg = self.config.pump
        self.pump = FramePump(
            source=self.negotiator,
            canvas=self.canvas,
            loader=self.loader,
            tier=self.tier,
            low_power=self.low_power,
            on_count=self.aggregator.report_count,
            on_low_power=self._on_pump_low_power,
            count_labels=self.config.models.count_labels,
            slow_detection_s=pump_cfg.slow_detection_s,
            motion_gate=MotionGate(pump_cfg.motion_gate) if pump_cfg.motion_gate.enabled else None,
        )
        self.pump.paused = self.paused
        self._pump_task = asyncio.ensure_future(self.pump.run(self.token))

    def _choose_device(self, devices: List[DeviceDescriptor]) -> DeviceDescriptor:
        wanted = self.config.camera.device_id
        if wanted is not None:
            for device in devices:
                if str(device.device_id) == str(wanted):
                    return device
            # Configured devices may not be enumerable (e.g. a file path)
            return DeviceDescriptor(device_id=wanted, label=str(wanted))
        return self.negotiator.select_preferred_device(devices)

    async def _stop_pump(self) -> None:
        pump, task = self.pump, self._pump_task
        self._pump_task = None
        if pump is not None:
            pump.stop()
            await pump.wait_idle()
        if task is not None and not task.done():
            await asyncio.wait({task})

    def status(self) -> Dict[str, Any]:
        capability = self.loader.capability
        error = None
        if self.last_error is not None:
            error = {"code": self.last_error.code, "message": str(self.last_error)}
        return {
            "state": self.pump.state.value if self.pump is not None else PumpState.IDLE.value,
            "streaming": self.streaming,
            "paused": self.paused,
            "tier": self.tier.value,
            "low_power": self.low_power,
            "count": self.count,
            "model": {
                "ready": capability is not None,
                "loading": self.loader.is_loading,
                "name": getattr(capability, "name", None),
                "variant": capability.variant.value if capability is not None else None,
            },
            "camera": self.negotiator.state.to_dict() if self.negotiator.state is not None else None,
            "pump": self.pump.stats.to_dict() if self.pump is not None else None,
            "last_error": error,
        }
