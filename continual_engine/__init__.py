"""
Continual Engine Package

Components:
- Low-rank adapter with momentum-smoothed batched updates
- EWC-style consolidation guard against catastrophic forgetting
- Quality-gated experience buffer with replay
- Pattern bank for similarity lookup of successful behaviour
- Orchestrator driving the epoch loop and verifiable checkpoints
"""

from .adapter import LowRankAdapter, adaptive_rank
from .checkpoint import Checkpoint, load_checkpoint, save_checkpoint, verify_checkpoint
from .config import ConfidenceConfig, EngineConfig, load_config
from .consolidation import ConsolidationGuard
from .errors import (
    CheckpointError,
    CheckpointNotFoundError,
    ConfigurationError,
    EngineError,
    IntegrityError,
)
from .experience import ExperienceBuffer, Trajectory, TrajectoryStep
from .orchestrator import EngineState, EpochMetrics, Orchestrator, Task, TaskResult
from .patterns import PatternBank, PatternMatch, cosine_similarity
from .storage import CheckpointStore

__all__ = [
    "LowRankAdapter",
    "adaptive_rank",
    "Checkpoint",
    "load_checkpoint",
    "save_checkpoint",
    "verify_checkpoint",
    "ConfidenceConfig",
    "EngineConfig",
    "load_config",
    "ConsolidationGuard",
    "CheckpointError",
    "CheckpointNotFoundError",
    "ConfigurationError",
    "EngineError",
    "IntegrityError",
    "ExperienceBuffer",
    "Trajectory",
    "TrajectoryStep",
    "EngineState",
    "EpochMetrics",
    "Orchestrator",
    "Task",
    "TaskResult",
    "PatternBank",
    "PatternMatch",
    "cosine_similarity",
    "CheckpointStore",
]
