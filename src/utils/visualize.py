# src/utils/visualize.py
"""
Visualization utilities.

Diagnostic figures for a placement run: the raw 2D projection and the resulting hex layout,
optionally coloured by theme. Useful to check how themes cluster and how far collisions pushed items.
"""

from __future__ import annotations
from typing import Dict, List, Optional
import numpy as np
import matplotlib.pyplot as plt
from matplotlib.patches import RegularPolygon

from hex_grid import hex_to_pixel
from models import DebugPoint, PlacementResult, Theme
from themes import group_by_theme


def _theme_palette(themes: List[Theme]) -> Dict[str, tuple]:
    palette = plt.get_cmap('tab10', max(len(themes), 1))
    return {theme.id: palette(idx) for idx, theme in enumerate(themes)}


def plot_projection(
    points: List[DebugPoint],
    assignment: Optional[Dict[str, str]] = None,
    themes: Optional[List[Theme]] = None,
):
    if not points:
        raise ValueError("No projected points to plot")
    fig, ax = plt.subplots(figsize=(6, 6))
    if assignment and themes:
        colors = _theme_palette(themes)
        by_id = {p.id: p for p in points}
        labels = {theme.id: theme.label for theme in themes}
        for theme_id, item_ids in group_by_theme(assignment, themes).items():
            members = [by_id[i] for i in item_ids if i in by_id]
            if members and theme_id in colors:
                ax.scatter([p.x for p in members], [p.y for p in members],
                           label=labels[theme_id], alpha=0.7, color=colors[theme_id])
        ax.legend(title="Theme", fontsize='small')
    else:
        ax.scatter([p.x for p in points], [p.y for p in points], alpha=0.7)
    ax.set_title("Embedding Projection (2D)")
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    ax.grid(True, linestyle='--', alpha=0.5)
    fig.tight_layout()
    return fig


def plot_placement(
    result: PlacementResult,
    hex_radius: float,
    assignment: Optional[Dict[str, str]] = None,
    themes: Optional[List[Theme]] = None,
):
    if not result.placements:
        raise ValueError("Placement result is empty")
    colors = _theme_palette(themes) if themes else {}
    fig, ax = plt.subplots(figsize=(9, 6))
    centres = []
    for item_id, hex in result.placements.items():
        pixel = hex_to_pixel(hex, hex_radius)
        centres.append((pixel.x, pixel.y))
        theme_id = (assignment or {}).get(item_id)
        ax.add_patch(RegularPolygon(
            (pixel.x, pixel.y),
            numVertices=6,
            radius=hex_radius,
            orientation=np.pi / 6,  # flat-top
            facecolor=colors.get(theme_id, 'lightgray'),
            edgecolor='white',
            linewidth=0.8,
        ))
    xs, ys = zip(*centres)
    pad = 2 * hex_radius
    ax.set_xlim(min(xs) - pad, max(xs) + pad)
    # pixel space grows downward
    ax.set_ylim(max(ys) + pad, min(ys) - pad)
    ax.set_aspect('equal')
    ax.set_title(f"Hex Placement ({len(result.placements)} items)")
    ax.axis('off')
    fig.tight_layout()
    return fig
