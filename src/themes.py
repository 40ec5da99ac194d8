# src/themes.py
"""
Theme assignment.

Groups items into one cluster per theme with k-means over cosine distance, then maps cluster
indices onto the supplied theme list. Independent of hex placement; the caller uses the result
to colour and label cells.

Randomness (initial centroids) comes from an explicit numpy Generator so runs can be reproduced.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from config import Config
from logger import get_logger
from models import Story, Theme
from projection import to_matrix

logger = get_logger(__name__)


class ZeroVectorError(ValueError):
    """Cosine similarity is undefined for a zero-length vector."""


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors differ in length: {va.shape[0]} vs {vb.shape[0]}")
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        raise ZeroVectorError("Cosine similarity is undefined for a zero vector")
    return float(np.dot(va, vb) / (norm_a * norm_b))


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    return 1.0 - cosine_similarity(a, b)


def _unit_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    if np.any(norms == 0):
        raise ZeroVectorError("Cosine similarity is undefined for a zero vector")
    return matrix / norms


def kmeans_cosine(
    vectors: np.ndarray,
    k: int,
    rng: Optional[np.random.Generator] = None,
    max_iterations: int = 100,
) -> List[int]:
    """
    Partition ``vectors`` into ``k`` clusters by cosine distance and return one cluster index per row.

    Initial centroids are rows sampled uniformly with replacement, so two clusters can start on the
    same point. An empty cluster keeps its previous centroid.
    """
    n_items = vectors.shape[0]
    if n_items == 0:
        return []
    if k <= 0:
        raise ValueError("k must be positive")
    unit = _unit_rows(vectors)
    if k >= n_items:
        return list(range(n_items))
    if max_iterations < 1:
        raise ValueError("max_iterations must be at least 1")

    rng = rng if rng is not None else np.random.default_rng()
    start = rng.integers(0, n_items, size=k)
    if len(set(start.tolist())) < k:
        logger.debug(f"Duplicate initial centroids drawn: {start.tolist()}")
    centroids = vectors[start].copy()

    assignments: Optional[np.ndarray] = None
    for iteration in range(max_iterations):
        # a centroid is a mean of non-zero vectors and can itself cancel out to zero
        norms = np.linalg.norm(centroids, axis=1)
        similarity = unit @ (centroids / np.where(norms == 0, 1, norms)[:, None]).T
        similarity[:, norms == 0] = -np.inf
        new_assignments = np.argmax(similarity, axis=1)

        if assignments is not None and np.array_equal(assignments, new_assignments):
            logger.debug(f"k-means converged after {iteration} iterations.")
            break
        assignments = new_assignments

        for c in range(k):
            members = vectors[assignments == c]
            if len(members):
                centroids[c] = members.mean(axis=0)

    return assignments.tolist()


def assign_items_to_themes(
    items: Sequence[Story],
    embeddings: Mapping[str, Sequence[float]],
    themes: Sequence[Theme],
    rng: Optional[np.random.Generator] = None,
    max_iterations: Optional[int] = None,
) -> Dict[str, str]:
    """Map every item that has an embedding to one theme id."""
    if not themes or not items:
        return {}
    valid = [item for item in items if item.id in embeddings]
    if not valid:
        return {}

    k = min(len(themes), len(valid))
    matrix = to_matrix([embeddings[item.id] for item in valid])
    clusters = kmeans_cosine(matrix, k, rng, max_iterations or Config.KMEANS_MAX_ITERATIONS)

    assignment = {item.id: themes[c % len(themes)].id for item, c in zip(valid, clusters)}
    logger.info(f"Assigned {len(assignment)} items to {k} of {len(themes)} themes.")
    counts = {theme_id: len(ids) for theme_id, ids in group_by_theme(assignment, themes).items()}
    logger.debug(f"Items per theme: {counts}")
    return assignment


def group_by_theme(assignment: Mapping[str, str], themes: Sequence[Theme]) -> Dict[str, List[str]]:
    """Item ids per theme, in theme order; themes with no items map to an empty list."""
    groups: Dict[str, List[str]] = {theme.id: [] for theme in themes}
    for item_id, theme_id in assignment.items():
        groups.setdefault(theme_id, []).append(item_id)
    return groups
