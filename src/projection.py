# src/projection.py
"""
Dimensionality reduction stage.

Projects N embedding vectors of equal dimension onto 2D points that keep local neighbourhoods
together. Projectors are pluggable:
- UMAP via umap-learn (default, stochastic unless a random generator is passed in; falls back
  to PCA for fewer than UMAP_MIN_ITEMS points)
- PCA via scikit-learn (deterministic, lightweight fallback)

Projectors are looked up by name in a small registry so the background worker can build its own
instance once and keep it for the lifetime of the process.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Sequence

import numpy as np
from sklearn.decomposition import PCA

from config import Config
from logger import get_logger

logger = get_logger(__name__)

# UMAP import (optional)
try:
    import umap
except Exception:  # pragma: no cover
    umap = None  # type: ignore[assignment]

MIN_ITEMS = 2
# below this umap-learn cannot build a neighbour graph; PCA lays the points out instead
UMAP_MIN_ITEMS = 5


class InsufficientItemsError(ValueError):
    """Projection needs at least two items."""


class ProjectorNotRegisteredError(LookupError):
    """No projector is registered under the requested name."""


class Projector(Protocol):
    def project(self, vectors: np.ndarray, rng: Optional[np.random.Generator] = None) -> np.ndarray:
        ...


def compute_n_neighbors(n_items: int, max_neighbors: int = 15) -> int:
    """
    Neighbour count for UMAP: floor(sqrt(n)) clamped into [2, min(max_neighbors, n - 1)].

    UMAP requires the value to stay below the number of points.
    """
    upper = min(max_neighbors, n_items - 1)
    return max(2, min(int(math.floor(math.sqrt(n_items))), upper))


def _seed_from(rng: Optional[np.random.Generator]) -> Optional[int]:
    if rng is None:
        return None
    return int(rng.integers(0, 2**31 - 1))


@dataclass
class UMAPProjector:
    """Wraps umap-learn with parameters tuned for legible hex layouts."""

    min_dist: float = 0.1
    spread: float = 1.0
    max_neighbors: int = 15

    def __post_init__(self) -> None:
        if umap is None:
            raise ImportError("umap-learn is required for the UMAP projector (pip install umap-learn)")

    def project(self, vectors: np.ndarray, rng: Optional[np.random.Generator] = None) -> np.ndarray:
        n_items = vectors.shape[0]
        if n_items < UMAP_MIN_ITEMS:
            logger.debug(f"Only {n_items} vectors; using PCA instead of UMAP.")
            return PCAProjector().project(vectors, rng)
        n_neighbors = compute_n_neighbors(n_items, self.max_neighbors)
        logger.debug(f"Running UMAP on {n_items} vectors (n_neighbors={n_neighbors}).")
        reducer = umap.UMAP(
            n_components=2,
            n_neighbors=n_neighbors,
            min_dist=self.min_dist,
            spread=self.spread,
            # spectral init is unstable on very small graphs
            init="random" if n_items < 10 else "spectral",
            random_state=_seed_from(rng),
        )
        return np.asarray(reducer.fit_transform(vectors), dtype=np.float64)


@dataclass
class PCAProjector:
    """Linear projection onto the first two principal components."""

    def project(self, vectors: np.ndarray, rng: Optional[np.random.Generator] = None) -> np.ndarray:
        n_items, dim = vectors.shape
        n_components = min(2, n_items, dim)
        pca = PCA(n_components=n_components, svd_solver="full")
        reduced = pca.fit_transform(vectors)
        if reduced.shape[1] < 2:
            # one-dimensional input or a single usable component: pad with a zero axis
            reduced = np.hstack([reduced, np.zeros((n_items, 2 - reduced.shape[1]))])
        return np.asarray(reduced, dtype=np.float64)


def _make_umap() -> Projector:
    return UMAPProjector(
        min_dist=Config.UMAP_MIN_DIST,
        spread=Config.UMAP_SPREAD,
        max_neighbors=Config.UMAP_MAX_NEIGHBORS,
    )


_REGISTRY: Dict[str, Callable[[], Projector]] = {
    "umap": _make_umap,
    "pca": PCAProjector,
}


def register_projector(name: str, factory: Callable[[], Projector]) -> None:
    _REGISTRY[name.lower()] = factory


def available_projectors() -> List[str]:
    return sorted(_REGISTRY)


def create_projector(name: Optional[str] = None) -> Projector:
    """Build the projector registered under ``name`` (defaults to Config.PROJECTOR)."""
    key = (name or Config.PROJECTOR).lower()
    factory = _REGISTRY.get(key)
    if factory is None:
        raise ProjectorNotRegisteredError(
            f"No projector registered under '{key}'. Available: {', '.join(available_projectors())}"
        )
    projector = factory()
    logger.info(f"Created projector '{key}' ({type(projector).__name__}).")
    return projector


def to_matrix(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Stack vectors into a 2D float64 array.
    All vectors must share one dimension and hold finite values.
    """
    if len(vectors) == 0:
        return np.zeros((0, 0), dtype=np.float64)
    lengths = {len(v) for v in vectors}
    if len(lengths) != 1:
        raise ValueError(f"All embedding vectors must have the same length. Got lengths {sorted(lengths)}")
    arr = np.asarray(vectors, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] == 0:
        raise ValueError(f"Embeddings must be non-empty 2D. Got shape={arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError("Embeddings contain NaN or infinite values")
    return arr


def project_points(
    vectors: Sequence[Sequence[float]],
    projector: Projector,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Project N >= 2 vectors to an (N, 2) array of points."""
    if len(vectors) < MIN_ITEMS:
        raise InsufficientItemsError(f"Need at least {MIN_ITEMS} items to compute a projection, got {len(vectors)}")
    matrix = to_matrix(vectors)
    points = projector.project(matrix, rng)
    if points.shape != (matrix.shape[0], 2):
        raise ValueError(f"Projector returned shape {points.shape}, expected ({matrix.shape[0]}, 2)")
    return points
