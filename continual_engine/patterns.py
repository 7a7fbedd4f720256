"""
Pattern Bank

Keeps a bounded set of representative embeddings (centroids) taken from
recent high-quality trajectories, and answers cosine-similarity queries
against them. Each extraction pass replaces the whole set.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .errors import ConfigurationError
from .experience import Trajectory

logger = logging.getLogger(__name__)

SIMILARITY_EPS = 1e-8


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b| + eps); near-zero vectors give ~0 instead of an error."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    return float(np.dot(a, b) / (np.linalg.norm(a) * np.linalg.norm(b) + SIMILARITY_EPS))


@dataclass(frozen=True)
class PatternCentroid:
    embedding: np.ndarray
    quality: float


@dataclass(frozen=True)
class PatternMatch:
    """A centroid ranked against a query."""
    centroid: np.ndarray
    quality: float
    similarity: float


class PatternBank:
    """
    Bounded centroid store with greedy quality-weighted extraction.
    """

    def __init__(
        self,
        dim: int,
        max_patterns: int = 100,
        min_trajectories: int = 5,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize pattern bank.

        Args:
            dim: Embedding dimension
            max_patterns: Upper bound on stored centroids
            min_trajectories: Inputs required before an extraction pass runs
            rng: Random source for selection tie-breaks
        """
        if dim < 1:
            raise ConfigurationError(f"Pattern dimension must be positive (got {dim})")
        if max_patterns < 1:
            raise ConfigurationError(f"max_patterns must be positive (got {max_patterns})")

        self.dim = dim
        self.max_patterns = max_patterns
        self.min_trajectories = min_trajectories
        self.rng = rng if rng is not None else np.random.default_rng()
        self._centroids: List[PatternCentroid] = []

    @property
    def centroids(self) -> List[PatternCentroid]:
        return list(self._centroids)

    def extract_patterns(self, trajectories: Sequence[Trajectory], k: int = 10) -> int:
        """
        Replace the centroid set with up to k representatives.

        Selection is greedy: repeatedly take the unused trajectory maximizing
        quality * (0.5 + 0.5 * u). With fewer than `min_trajectories` inputs
        the existing centroids are kept.

        Returns:
            Number of centroids held after the call
        """
        if len(trajectories) < self.min_trajectories:
            logger.debug(
                f"Skipping pattern extraction: {len(trajectories)} < {self.min_trajectories} trajectories"
            )
            return len(self._centroids)

        target = min(k, self.max_patterns, len(trajectories))
        qualities = np.array([t.final_quality for t in trajectories], dtype=np.float64)
        used = np.zeros(len(trajectories), dtype=bool)

        selected: List[PatternCentroid] = []
        while len(selected) < target:
            scores = qualities * (0.5 + self.rng.random(len(trajectories)) * 0.5)
            scores[used] = -np.inf
            best = int(np.argmax(scores))
            used[best] = True
            chosen = trajectories[best]
            selected.append(
                PatternCentroid(
                    embedding=np.array(chosen.query_embedding, dtype=np.float64),
                    quality=float(chosen.final_quality),
                )
            )

        self._centroids = selected
        logger.info(f"Extracted {len(selected)} patterns from {len(trajectories)} trajectories")
        return len(selected)

    def find_similar(self, query: Sequence[float], top_k: int = 3) -> List[PatternMatch]:
        """Return the top_k centroids by cosine similarity, most similar first."""
        if not self._centroids or top_k <= 0:
            return []

        query = np.asarray(query, dtype=np.float64)
        matches = [
            PatternMatch(
                centroid=c.embedding,
                quality=c.quality,
                similarity=cosine_similarity(query, c.embedding),
            )
            for c in self._centroids
        ]
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:top_k]

    def pattern_count(self) -> int:
        return len(self._centroids)

    def get_state(self) -> Dict[str, Any]:
        """Serializable centroid set."""
        return {
            "centroids": [c.embedding.tolist() for c in self._centroids],
            "qualities": [c.quality for c in self._centroids],
        }

    def load_state(self, state: Dict[str, Any]) -> None:
        centroids = state.get("centroids", [])
        qualities = state.get("qualities", [])
        if len(centroids) != len(qualities):
            raise ConfigurationError("Pattern centroids and qualities differ in length")
        if len(centroids) > self.max_patterns:
            raise ConfigurationError(
                f"{len(centroids)} centroids exceed max_patterns={self.max_patterns}"
            )

        loaded = []
        for embedding, quality in zip(centroids, qualities):
            embedding = np.asarray(embedding, dtype=np.float64)
            if embedding.shape != (self.dim,):
                raise ConfigurationError(
                    f"Pattern centroid has shape {embedding.shape}, expected ({self.dim},)"
                )
            loaded.append(PatternCentroid(embedding=embedding, quality=float(quality)))
        self._centroids = loaded
