"""
Low-Rank Adapter

A LoRA-style additive correction over a fixed-length representation:

    delta(x) = (scale / rank) * sum_r (x . A_r) * B_r

Gradients are accumulated between epochs and applied in one momentum-smoothed
step whose size is averaged over the number of pending updates.
"""

import logging
from typing import Any, Dict, Optional, Sequence

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

INIT_RANGE = 0.01


def adaptive_rank(model_capacity: float) -> int:
    """
    Map a declared model capacity (billions of parameters) to an adapter rank.

    Large models (>= 7B) get rank 4, medium (>= 3B) rank 2, everything else rank 1.
    """
    if model_capacity >= 7:
        return 4
    if model_capacity >= 3:
        return 2
    return 1


class LowRankAdapter:
    """
    Low-rank weight delta with momentum-smoothed batched updates.
    """

    def __init__(
        self,
        dim: int,
        rank: int = 1,
        scale: float = 1.0,
        base_step: float = 0.002,
        momentum_beta: float = 0.9,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize adapter.

        Args:
            dim: Vector dimension
            rank: Number of direction pairs (must not exceed dim)
            scale: LoRA alpha
            base_step: Accumulation step per unit of outcome quality
            momentum_beta: Momentum coefficient for the A directions
            rng: Random source for the initial directions
        """
        if dim < 1:
            raise ConfigurationError(f"Adapter dimension must be positive (got {dim})")
        if rank < 1 or rank > dim:
            raise ConfigurationError(f"Adapter rank must be within [1, {dim}] (got {rank})")

        rng = rng if rng is not None else np.random.default_rng()

        self.dim = dim
        self.rank = rank
        self.scale = float(scale)
        self.base_step = base_step
        self.momentum_beta = momentum_beta

        self.a = (rng.random((rank, dim)) - 0.5) * INIT_RANGE
        self.b = (rng.random((rank, dim)) - 0.5) * INIT_RANGE
        self.grad_a = np.zeros((rank, dim))
        self.grad_b = np.zeros((rank, dim))
        self.momentum = np.zeros((rank, dim))
        self.pending_updates = 0

        logger.info(f"Low-rank adapter initialized: dim={dim}, rank={rank}, scale={scale}")

    def forward(self, x: Sequence[float]) -> np.ndarray:
        """Return the additive correction for input x (length dim)."""
        x = np.asarray(x, dtype=np.float64)
        projections = self.a @ x
        return (projections @ self.b) * (self.scale / self.rank)

    def learning_rate(self, quality: float) -> float:
        """Accumulation step for an outcome of the given quality."""
        return quality * self.base_step

    def accumulate_gradient(
        self,
        query: Sequence[float],
        gradient: Sequence[float],
        quality: float,
    ) -> None:
        """
        Accumulate a gradient estimate for the next apply step.

        Args:
            query: Query vector that produced the outcome
            gradient: Gradient estimate (length dim)
            quality: Outcome quality; higher quality means a larger step
        """
        lr = self.learning_rate(quality)
        query = np.asarray(query, dtype=np.float64)
        gradient = np.asarray(gradient, dtype=np.float64)

        # Same update for every rank row
        self.grad_a += (query * gradient * lr)[np.newaxis, :]
        self.grad_b += (gradient * lr)[np.newaxis, :]
        self.pending_updates += 1

    def apply_accumulated(self, base_learning_rate: float = 0.001) -> float:
        """
        Apply accumulated gradients.

        Args:
            base_learning_rate: Step size before averaging over pending updates

        Returns:
            Adapted learning rate for the next round (unchanged when nothing was pending)
        """
        if self.pending_updates == 0:
            return base_learning_rate

        step = base_learning_rate / self.pending_updates
        beta = self.momentum_beta

        self.momentum = beta * self.momentum + (1 - beta) * self.grad_a
        self.a -= self.momentum * step
        self.b -= self.grad_b * step
        self.grad_a.fill(0.0)
        self.grad_b.fill(0.0)

        adapted = base_learning_rate * min(2.0, 1 + self.pending_updates / 100)
        logger.debug(
            f"Applied {self.pending_updates} accumulated updates (lr={base_learning_rate:.6f} -> {adapted:.6f})"
        )
        self.pending_updates = 0
        return adapted

    def delta_diagonal(self) -> np.ndarray:
        """Diagonal of the low-rank delta matrix, (scale/rank) * sum_r A_r * B_r."""
        return (self.a * self.b).sum(axis=0) * (self.scale / self.rank)

    def get_state(self) -> Dict[str, Any]:
        """Serializable adapter weights."""
        return {
            "A": self.a.tolist(),
            "B": self.b.tolist(),
            "rank": self.rank,
            "scale": self.scale,
        }

    def load_state(self, state: Dict[str, Any]) -> None:
        """Load adapter weights; pending gradients and momentum are reset."""
        a = np.asarray(state["A"], dtype=np.float64)
        b = np.asarray(state["B"], dtype=np.float64)
        expected = (self.rank, self.dim)
        if a.shape != expected or b.shape != expected or int(state.get("rank", self.rank)) != self.rank:
            raise ConfigurationError(
                f"Adapter state shape {a.shape}/{b.shape} does not match rank x dim {expected}"
            )

        self.a = a
        self.b = b
        self.scale = float(state.get("scale", self.scale))
        self.grad_a = np.zeros(expected)
        self.grad_b = np.zeros(expected)
        self.momentum = np.zeros(expected)
        self.pending_updates = 0
