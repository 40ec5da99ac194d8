# src/models.py
"""
Data model for the placement engine.

Every object here is created fresh per placement or theme-assignment request and never
mutated once handed back to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config import Config


@dataclass
class Story:
    """A short text item. Callers may pass richer objects as long as they expose ``id``."""
    id: str
    text: str = ""


@dataclass
class EmbeddingItem:
    """A story reduced to its id, embedding vector and optional cluster hint."""
    id: str
    vector: List[float]
    cluster_hint: Optional[str] = None


@dataclass(frozen=True)
class AxialHex:
    """Axial hex coordinate. The cube form is (q, r, s) with s = -q - r."""
    q: int
    r: int

    @property
    def s(self) -> int:
        return -self.q - self.r

    @property
    def key(self) -> str:
        return f"{self.q},{self.r}"


@dataclass(frozen=True)
class Pixel:
    x: float
    y: float


@dataclass(frozen=True)
class NormalizationBounds:
    """Known range of the projected point cloud, supplied by the caller."""
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    def __post_init__(self) -> None:
        if self.max_x <= self.min_x or self.max_y <= self.min_y:
            raise ValueError(
                f"Invalid normalization bounds: x=[{self.min_x}, {self.max_x}], y=[{self.min_y}, {self.max_y}]"
            )


@dataclass(frozen=True)
class PlacementConfig:
    canvas_width: float = 900
    canvas_height: float = 600
    hex_radius: float = 14
    margin: float = 20
    max_search_radius: int = 200

    def __post_init__(self) -> None:
        if self.hex_radius <= 0:
            raise ValueError("hex_radius must be positive")
        if self.canvas_width - 2 * self.margin <= 0 or self.canvas_height - 2 * self.margin <= 0:
            raise ValueError("margin leaves no drawable area on the canvas")
        if self.max_search_radius < 0:
            raise ValueError("max_search_radius must not be negative")

    @classmethod
    def from_env(cls) -> "PlacementConfig":
        return cls(
            canvas_width=Config.CANVAS_WIDTH,
            canvas_height=Config.CANVAS_HEIGHT,
            hex_radius=Config.HEX_RADIUS,
            margin=Config.MARGIN,
            max_search_radius=Config.MAX_SEARCH_RADIUS,
        )


@dataclass(frozen=True)
class DebugPoint:
    """Raw projected coordinate of one item, before normalization."""
    id: str
    x: float
    y: float


@dataclass
class PlacementResult:
    placements: Dict[str, AxialHex] = field(default_factory=dict)
    debug_points: Optional[List[DebugPoint]] = None
    # ids that share a cell with an earlier item; only filled under the "overlap" policy
    overlapping: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Theme:
    id: str
    label: str
