# src/placement.py
"""
Placement orchestrator.

Turns items with embeddings into a conflict-free map of item id -> hex cell:
project all vectors to 2D, then walk the items in cluster-sorted order and greedily claim the
nearest free cell to each item's ideal position. No backtracking, so an early item can take the
ideal cell of a later one.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Set

import numpy as np

from collision import HexSpaceExhaustedError, find_available_hex
from config import Config
from hex_grid import hex_distance, pixel_to_hex
from logger import get_logger
from models import (
    AxialHex,
    DebugPoint,
    EmbeddingItem,
    NormalizationBounds,
    PlacementConfig,
    PlacementResult,
)
from normalizer import center_offset, normalize, to_pixel
from projection import Projector, create_projector, project_points

logger = get_logger(__name__)

EXHAUSTION_POLICIES = ("error", "overlap")


def sort_for_placement(items: Sequence[EmbeddingItem]) -> List[EmbeddingItem]:
    """Items with a cluster hint first, ordered by hint; the rest keep their input order."""
    return sorted(items, key=lambda item: (not item.cluster_hint, item.cluster_hint or ""))


def ideal_hex(x: float, y: float, bounds: NormalizationBounds, config: PlacementConfig) -> AxialHex:
    """Cell a projected point would occupy on an empty grid."""
    nx, ny = normalize(x, y, bounds)
    pixel = center_offset(to_pixel(nx, ny, config), config)
    return pixel_to_hex(pixel, config.hex_radius)


def compute_placement(
    items: Sequence[EmbeddingItem],
    bounds: NormalizationBounds,
    config: Optional[PlacementConfig] = None,
    projector: Optional[Projector] = None,
    rng: Optional[np.random.Generator] = None,
    on_exhausted: Optional[str] = None,
) -> PlacementResult:
    if not items:
        return PlacementResult()

    config = config or PlacementConfig.from_env()
    policy = (on_exhausted or Config.ON_EXHAUSTED).lower()
    if policy not in EXHAUSTION_POLICIES:
        raise ValueError(f"Unknown exhaustion policy '{policy}'. Expected one of {EXHAUSTION_POLICIES}")

    ids = [item.id for item in items]
    if len(set(ids)) != len(ids):
        raise ValueError("Item ids must be unique within a placement request")

    if len(items) == 1:
        # nothing to project against; the lone item sits at the origin
        return PlacementResult(placements={items[0].id: AxialHex(0, 0)})

    projector = projector or create_projector()
    logger.info(f"Projecting {len(items)} items with {type(projector).__name__}.")
    points = project_points([item.vector for item in items], projector, rng)
    point_by_id = {item.id: (float(x), float(y)) for item, (x, y) in zip(items, points)}

    placements = {}
    overlapping: List[str] = []
    occupied: Set[str] = set()
    displacement = 0
    for item in sort_for_placement(items):
        x, y = point_by_id[item.id]
        target = ideal_hex(x, y, bounds, config)
        cell = find_available_hex(target, occupied, config.max_search_radius)
        if cell is None:
            if policy == "error":
                raise HexSpaceExhaustedError(target, config.max_search_radius)
            logger.warning(
                f"No free hex within radius {config.max_search_radius} for '{item.id}'; "
                f"overlapping at ({target.q}, {target.r})."
            )
            cell = target
            overlapping.append(item.id)
        displacement += hex_distance(target, cell)
        placements[item.id] = cell
        occupied.add(cell.key)

    logger.info(
        f"Placed {len(placements)} items (mean displacement {displacement / len(placements):.2f} hexes, "
        f"{len(overlapping)} overlapping)."
    )
    debug_points = [DebugPoint(item.id, *point_by_id[item.id]) for item in items]
    return PlacementResult(placements=placements, debug_points=debug_points, overlapping=overlapping)
