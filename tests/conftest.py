"""
Pytest configuration and fixtures for continual engine tests.

This file provides shared fixtures for the unit tests: a seeded random
source, small engine configurations and synthetic trajectories.
"""

import sys
import time
from pathlib import Path

import numpy as np
import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from continual_engine.config import EngineConfig  # noqa: E402
from continual_engine.experience import Trajectory, TrajectoryStep  # noqa: E402


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random source so every test is deterministic."""
    return np.random.default_rng(1234)


@pytest.fixture
def small_config() -> EngineConfig:
    """Small engine that runs a few epochs in milliseconds."""
    return EngineConfig(
        model_name="test-model",
        embedding_dim=16,
        model_capacity=1.5,
        buffer_capacity=200,
        min_trajectories_for_extraction=3,
        seed=7,
    )


@pytest.fixture
def make_trajectory():
    """Factory for trajectories with a given quality (and optional embedding)."""
    counter = {"next": 0}

    def _make(quality: float, embedding=None, dim: int = 8) -> Trajectory:
        embedding = np.asarray(embedding if embedding is not None else np.full(dim, quality), dtype=np.float64)
        trajectory_id = counter["next"]
        counter["next"] += 1
        return Trajectory(
            id=trajectory_id,
            query_embedding=embedding,
            steps=(TrajectoryStep(hidden=np.zeros_like(embedding), output=embedding, quality=quality),),
            final_quality=quality,
            timestamp=time.time(),
        )

    return _make


# Markers for test categorization


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test (no external services)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow (>5 seconds)"
    )
