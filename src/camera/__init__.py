"""
Camera package.

Canonical imports:
- `from camera.negotiator import CameraNegotiator, create_backend`
- `from camera.backends.opencv import OpenCVBackend` (USB/V4L2)
- `from camera.backends.picamera2 import Picamera2Backend` (CSI)
"""
