"""
Quality-Gated Experience Buffer

Stores one trajectory per task attempt. Retention is decided by quality only:
when the buffer is full the lowest-quality entries are evicted, never the
oldest. High-quality entries can be drained for pattern extraction, and the
best entries can be sampled (without removal) for replay.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

EVICTION_KEEP_RATIO = 0.8


@dataclass(frozen=True)
class TrajectoryStep:
    """One intermediate step of a task attempt."""
    hidden: np.ndarray
    output: np.ndarray
    quality: float


@dataclass(frozen=True)
class Trajectory:
    """A completed task attempt."""
    id: int
    query_embedding: np.ndarray
    steps: Tuple[TrajectoryStep, ...]
    final_quality: float
    timestamp: float
    task_type: str = "generic"
    metadata: Dict[str, Any] = field(default_factory=dict)


class ExperienceBuffer:
    """
    Bounded trajectory store with quality-based eviction.
    """

    def __init__(self, capacity: int = 10000, success_quality_bar: float = 0.5):
        """
        Initialize experience buffer.

        Args:
            capacity: Maximum number of buffered trajectories
            success_quality_bar: Quality at or above which a trajectory counts as successful
        """
        if capacity < 1:
            raise ConfigurationError(f"Buffer capacity must be positive (got {capacity})")

        self.capacity = capacity
        self.success_quality_bar = success_quality_bar
        self._buffer: List[Trajectory] = []
        self._next_id = 0
        self.total_recorded = 0
        self.evictions = 0

        logger.info(f"Experience buffer initialized: capacity={capacity}")

    def next_id(self) -> int:
        """Allocate a monotonic trajectory id."""
        trajectory_id = self._next_id
        self._next_id += 1
        return trajectory_id

    def record(self, trajectory: Trajectory) -> None:
        """Append a trajectory, evicting the lowest-quality entries when full."""
        if len(self._buffer) >= self.capacity:
            keep = int(self.capacity * EVICTION_KEEP_RATIO)
            self._buffer.sort(key=lambda t: t.final_quality, reverse=True)
            evicted = len(self._buffer) - keep
            del self._buffer[keep:]
            self.evictions += evicted
            logger.debug(f"Evicted {evicted} low-quality trajectories (kept {keep})")

        self._buffer.append(trajectory)
        self.total_recorded += 1

    def drain_high_quality(self, threshold: float = 0.35) -> List[Trajectory]:
        """Remove and return every trajectory with final_quality >= threshold."""
        drained = [t for t in self._buffer if t.final_quality >= threshold]
        self._buffer = [t for t in self._buffer if t.final_quality < threshold]
        return drained

    def sample_for_replay(self, count: int) -> List[Trajectory]:
        """Return (without removing) the `count` highest-quality trajectories."""
        if not self._buffer or count <= 0:
            return []
        ranked = sorted(self._buffer, key=lambda t: t.final_quality, reverse=True)
        return ranked[:count]

    def stats(self) -> Dict[str, Any]:
        """Buffer summary: total ever recorded, successful and average quality of current contents."""
        successful = sum(1 for t in self._buffer if t.final_quality >= self.success_quality_bar)
        avg_quality = (
            float(np.mean([t.final_quality for t in self._buffer])) if self._buffer else 0.0
        )
        return {
            "total": self.total_recorded,
            "successful": successful,
            "avg_quality": avg_quality,
        }

    def restore_counters(self, total_recorded: int) -> None:
        """Resume id allocation after a checkpoint restore."""
        self.total_recorded = max(self.total_recorded, int(total_recorded))
        self._next_id = max(self._next_id, self.total_recorded)

    def clear(self) -> None:
        self._buffer.clear()
        logger.info("Experience buffer cleared")

    def __len__(self) -> int:
        return len(self._buffer)
