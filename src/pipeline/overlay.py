"""
Detection overlay drawing.

Pure functions over a canvas: they read detection results and paint boxes,
labels and the count summary. No state is kept between calls.
"""

from __future__ import annotations

from typing import Sequence, Tuple

import cv2

from models.detection import DetectionResult

# Colors (BGR)
COLOR_STRONG = (0, 200, 0)  # Green
COLOR_MEDIUM = (0, 200, 255)  # Amber
COLOR_WEAK = (60, 60, 230)  # Red
COLOR_TEXT = (255, 255, 255)
COLOR_SUMMARY_BG = (40, 40, 40)

STRONG_THRESHOLD = 0.8
MEDIUM_THRESHOLD = 0.6

FONT = cv2.FONT_HERSHEY_SIMPLEX


def confidence_band(confidence: float) -> str:
    if confidence >= STRONG_THRESHOLD:
        return "strong"
    if confidence >= MEDIUM_THRESHOLD:
        return "medium"
    return "weak"


_BAND_COLORS = {"strong": COLOR_STRONG, "medium": COLOR_MEDIUM, "weak": COLOR_WEAK}


def band_color(confidence: float) -> Tuple[int, int, int]:
    return _BAND_COLORS[confidence_band(confidence)]


def draw_detections(
    results: Sequence[DetectionResult],
    canvas,
    scale_x: float,
    scale_y: float,
    count: int,
) -> None:
    """
    Paint detection boxes and the count summary onto the canvas.

    Args:
        results: Detections in the (downscaled) detection-input space.
        canvas: Canvas whose surface is drawn on in place.
        scale_x: canvas width / detection input width.
        scale_y: canvas height / detection input height.
        count: Count shown in the summary block.
    """
    surface = canvas.surface
    thickness = 2 if canvas.width >= 480 else 1
    font_scale = 0.5 if canvas.width >= 480 else 0.35

    for result in results:
        x1, y1, x2, y2 = result.scaled(scale_x, scale_y).box.as_int_xyxy()
        color = band_color(result.confidence)
        cv2.rectangle(surface, (x1, y1), (x2, y2), color, thickness)

        # Label with background, kept inside the canvas
        label = f"{result.label} {int(round(result.confidence * 100))}%"
        (tw, th), _ = cv2.getTextSize(label, FONT, font_scale, 1)
        top = max(0, y1 - th - 6)
        cv2.rectangle(surface, (x1, top), (x1 + tw + 4, top + th + 6), color, -1)
        cv2.putText(surface, label, (x1 + 2, top + th + 2), FONT, font_scale, COLOR_TEXT, 1)

    draw_summary(canvas, count)


def draw_summary(canvas, count: int) -> None:
    text = f"Count: {count}"
    font_scale = 0.7 if canvas.width >= 480 else 0.45
    (tw, th), _ = cv2.getTextSize(text, FONT, font_scale, 2)
    cv2.rectangle(canvas.surface, (8, 8), (8 + tw + 16, 8 + th + 16), COLOR_SUMMARY_BG, -1)
    cv2.putText(canvas.surface, text, (16, 16 + th), FONT, font_scale, COLOR_TEXT, 2)
