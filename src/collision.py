# src/collision.py
"""
Collision resolution for hex placement.

When the ideal cell of an item is taken, search outward ring by ring for the nearest free cell.
The walk order is fixed, so a given centre and occupied set always resolve to the same cell.
"""

from __future__ import annotations

from typing import AbstractSet, Optional

from hex_grid import hex_neighbor
from models import AxialHex

# Ring walks start this many steps away from the centre in this direction
RING_START_DIRECTION = 4


class HexSpaceExhaustedError(RuntimeError):
    """No free cell exists within the allowed search radius."""

    def __init__(self, center: AxialHex, max_radius: int):
        super().__init__(f"No free hex within radius {max_radius} of ({center.q}, {center.r})")
        self.center = center
        self.max_radius = max_radius


def find_available_hex(
    center: AxialHex,
    occupied: AbstractSet[str],
    max_radius: int = 10,
) -> Optional[AxialHex]:
    """
    Return ``center`` if it is free, otherwise the first free cell met on rings 1..max_radius.

    Each ring starts ``radius`` steps away in direction 4 and is walked clockwise through all
    six directions, ``radius`` steps each. Returns None when every cell in range is occupied.
    """
    if max_radius < 0:
        raise ValueError("max_radius must not be negative")
    if center.key not in occupied:
        return center

    for radius in range(1, max_radius + 1):
        current = center
        for _ in range(radius):
            current = hex_neighbor(current, RING_START_DIRECTION)
        for direction in range(6):
            for _ in range(radius):
                if current.key not in occupied:
                    return current
                current = hex_neighbor(current, direction)
    return None
