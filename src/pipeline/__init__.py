"""
Live feed pipeline.

- Canvas: the render surface the MJPEG stream encodes
- FramePump: paints frames and gates one detection at a time
- LiveFeedSession: wires camera, model, pump and counts together
"""

from .canvas import Canvas
from .pump import FramePump, MotionGate, PumpState, PumpStats
from .session import LiveFeedSession

__all__ = [
    "Canvas",
    "FramePump",
    "MotionGate",
    "PumpState",
    "PumpStats",
    "LiveFeedSession",
]
