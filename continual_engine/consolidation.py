"""
Consolidation Guard

Elastic Weight Consolidation for the engine's online updates.

Keeps a diagonal Fisher-style importance estimate per dimension:

    F_i <- 0.95 * F_i + 0.05 * g_i^2

and, once at least one task is registered, dampens incoming gradients:

    g_i' = g_i / (1 + lambda * (F_i + eps))

so dimensions that mattered for earlier tasks move less.
"""

import logging
from typing import Any, Dict, Sequence

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

IMPORTANCE_DECAY = 0.95
IMPORTANCE_EPS = 1e-8


class ConsolidationGuard:
    """
    Importance-weighted gradient dampening against catastrophic forgetting.
    """

    def __init__(self, dim: int, ewc_lambda: float = 500.0):
        """
        Initialize guard.

        Args:
            dim: Vector dimension
            ewc_lambda: Regularization strength (higher = less forgetting, less plasticity)
        """
        if dim < 1:
            raise ConfigurationError(f"Consolidation dimension must be positive (got {dim})")
        if ewc_lambda < 0:
            raise ConfigurationError(f"EWC lambda must be non-negative (got {ewc_lambda})")

        self.dim = dim
        self.ewc_lambda = float(ewc_lambda)
        self.importance = np.zeros(dim)
        self.optimal_weights = np.zeros(dim)
        self.task_count = 0

        logger.info(f"Consolidation guard initialized: dim={dim}, lambda={ewc_lambda}")

    def update_importance(self, gradient: Sequence[float]) -> None:
        """EMA update of the importance diagonal with squared gradients."""
        gradient = np.asarray(gradient, dtype=np.float64)
        self.importance = IMPORTANCE_DECAY * self.importance + (1 - IMPORTANCE_DECAY) * gradient ** 2

    def register_task(self) -> int:
        """Register a completed task; constraints apply from now on."""
        self.task_count += 1
        logger.info(f"Consolidation guard protecting {self.task_count} task(s)")
        return self.task_count

    def dampen(self, gradient: Sequence[float]) -> np.ndarray:
        """Scale a gradient down on dimensions important to earlier tasks."""
        gradient = np.asarray(gradient, dtype=np.float64)
        if self.task_count == 0:
            return gradient
        return gradient / (1 + self.ewc_lambda * (self.importance + IMPORTANCE_EPS))

    def set_optimal_weights(self, weights: Sequence[float]) -> None:
        """Store the reference weights for the most recently completed task."""
        weights = np.asarray(weights, dtype=np.float64)
        if weights.shape != (self.dim,):
            raise ConfigurationError(
                f"Optimal weights must have length {self.dim} (got shape {weights.shape})"
            )
        self.optimal_weights = weights.copy()

    def penalty(self, weights: Sequence[float]) -> float:
        """
        EWC penalty for a candidate weight vector.

        Loss = lambda/2 * sum_i F_i * (w_i - w*_i)^2
        """
        weights = np.asarray(weights, dtype=np.float64)
        if self.task_count == 0:
            return 0.0
        return float((self.ewc_lambda / 2) * np.sum(self.importance * (weights - self.optimal_weights) ** 2))

    def get_state(self) -> Dict[str, Any]:
        """Serializable guard state."""
        return {
            "importance": self.importance.tolist(),
            "optimal_weights": self.optimal_weights.tolist(),
            "task_count": self.task_count,
            "lambda": self.ewc_lambda,
        }

    def load_state(self, state: Dict[str, Any]) -> None:
        importance = np.asarray(state["importance"], dtype=np.float64)
        optimal = np.asarray(state["optimal_weights"], dtype=np.float64)
        if importance.shape != (self.dim,) or optimal.shape != (self.dim,):
            raise ConfigurationError(
                f"Consolidation state does not match dimension {self.dim}"
            )
        if np.any(importance < 0):
            raise ConfigurationError("Importance entries must be non-negative")

        self.importance = importance
        self.optimal_weights = optimal
        self.task_count = int(state["task_count"])
        self.ewc_lambda = float(state.get("lambda", self.ewc_lambda))
