# src/hex_grid.py
"""
Hex grid math.

Flat-top axial layout: conversions between pixel space and axial coordinates, cube rounding,
the fixed neighbour order used by the collision resolver, and hex distance.
"""

from __future__ import annotations

import math
from typing import List

from models import AxialHex, Pixel

SQRT3 = math.sqrt(3)

# Clockwise neighbour order; the collision resolver's ring walk depends on it
HEX_DIRECTIONS = (
    (1, 0),
    (1, -1),
    (0, -1),
    (-1, 0),
    (-1, 1),
    (0, 1),
)


def hex_to_pixel(hex: AxialHex, hex_radius: float) -> Pixel:
    x = hex_radius * (1.5 * hex.q)
    y = hex_radius * ((SQRT3 / 2) * hex.q + SQRT3 * hex.r)
    return Pixel(x, y)


def pixel_to_hex(pixel: Pixel, hex_radius: float) -> AxialHex:
    q = ((2 / 3) * pixel.x) / hex_radius
    r = ((-1 / 3) * pixel.x + (SQRT3 / 3) * pixel.y) / hex_radius
    return cube_round(q, r, -q - r)


def _round_half_up(value: float) -> int:
    # round() uses banker's rounding, which would break symmetry on .5 boundaries
    return int(math.floor(value + 0.5))


def cube_round(q: float, r: float, s: float) -> AxialHex:
    """
    Round fractional cube coordinates to the containing hex.

    Each component is rounded on its own, then the one with the largest rounding error is
    rebuilt from the other two so that q + r + s == 0 holds exactly.
    """
    rq = _round_half_up(q)
    rr = _round_half_up(r)
    rs = _round_half_up(s)

    q_diff = abs(rq - q)
    r_diff = abs(rr - r)
    s_diff = abs(rs - s)

    if q_diff > r_diff and q_diff > s_diff:
        rq = -rr - rs
    elif r_diff > s_diff:
        rr = -rq - rs
    return AxialHex(rq, rr)


def hex_neighbor(hex: AxialHex, direction: int) -> AxialHex:
    dq, dr = HEX_DIRECTIONS[direction]
    return AxialHex(hex.q + dq, hex.r + dr)


def hex_neighbors(hex: AxialHex) -> List[AxialHex]:
    return [hex_neighbor(hex, d) for d in range(len(HEX_DIRECTIONS))]


def hex_distance(a: AxialHex, b: AxialHex) -> int:
    """Number of steps between two cells."""
    dq = a.q - b.q
    dr = a.r - b.r
    return (abs(dq) + abs(dq + dr) + abs(dr)) // 2


def parse_hex_key(key: str) -> AxialHex:
    try:
        q, r = key.split(",")
        return AxialHex(int(q), int(r))
    except ValueError as exc:
        raise ValueError(f"Malformed hex key '{key}'") from exc
