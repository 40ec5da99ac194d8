# src/normalizer.py
"""
Coordinate normalization.

Maps projected points into the unit square using caller-supplied bounds, then onto the canvas.
Normalized space has y pointing up while pixel space has y pointing down, hence the flip.
"""

from __future__ import annotations

from typing import Tuple

from models import NormalizationBounds, Pixel, PlacementConfig


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def normalize(x: float, y: float, bounds: NormalizationBounds) -> Tuple[float, float]:
    nx = (x - bounds.min_x) / (bounds.max_x - bounds.min_x)
    ny = (y - bounds.min_y) / (bounds.max_y - bounds.min_y)
    return _clamp01(nx), _clamp01(ny)


def to_pixel(nx: float, ny: float, config: PlacementConfig) -> Pixel:
    margin = config.margin
    px = margin + nx * (config.canvas_width - 2 * margin)
    py = margin + (1 - ny) * (config.canvas_height - 2 * margin)
    return Pixel(px, py)


def center_offset(pixel: Pixel, config: PlacementConfig) -> Pixel:
    """Translate a canvas pixel so the canvas centre becomes the hex origin."""
    return Pixel(pixel.x - config.canvas_width / 2, pixel.y - config.canvas_height / 2)
