# src/config.py
"""
Central configuration module.

Sets defaults for canvas geometry, collision search, projection, clustering and the placement worker.
Values can be overridden by environment variables.
"""

from __future__ import annotations
from dotenv import load_dotenv
from pathlib import Path
import os

# Loads .env from project root
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")

class Config:
    # Canvas geometry
    CANVAS_WIDTH: float = float(os.getenv("CANVAS_WIDTH", "900"))
    CANVAS_HEIGHT: float = float(os.getenv("CANVAS_HEIGHT", "600"))
    HEX_RADIUS: float = float(os.getenv("HEX_RADIUS", "14"))
    MARGIN: float = float(os.getenv("MARGIN", "20"))

    # Collision resolution
    MAX_SEARCH_RADIUS: int = int(os.getenv("MAX_SEARCH_RADIUS", "200"))
    # "error" raises when the spiral search runs out of rings, "overlap" keeps the ideal cell
    ON_EXHAUSTED: str = os.getenv("ON_EXHAUSTED", "error").lower()

    # Projection
    PROJECTOR: str = os.getenv("PROJECTOR", "umap").lower()
    UMAP_MIN_DIST: float = float(os.getenv("UMAP_MIN_DIST", "0.1"))
    UMAP_SPREAD: float = float(os.getenv("UMAP_SPREAD", "1.0"))
    UMAP_MAX_NEIGHBORS: int = int(os.getenv("UMAP_MAX_NEIGHBORS", "15"))

    # Theme clustering
    KMEANS_MAX_ITERATIONS: int = int(os.getenv("KMEANS_MAX_ITERATIONS", "100"))

    # Worker
    WORKER_TIMEOUT_SECONDS: float = float(os.getenv("WORKER_TIMEOUT_SECONDS", "30"))

    # Reproducibility; unset means unseeded
    RANDOM_SEED: int | None = int(os.environ["RANDOM_SEED"]) if os.getenv("RANDOM_SEED") else None
