"""
Curriculum and temperature schedules, plus a synthetic curriculum task generator.
"""

from typing import Dict, List, Optional, Tuple

import numpy as np

TASK_TYPES = ["code_completion", "bug_fix", "refactor", "test_gen"]
CATEGORIES = ["python", "javascript", "rust", "go", "typescript"]

# Difficulty band per curriculum level
DIFFICULTY_BANDS: Dict[int, Tuple[float, float]] = {
    0: (0.0, 0.3),
    1: (0.2, 0.6),
    2: (0.4, 0.9),
}
DEFAULT_BAND = (0.0, 1.0)


def temperature_at(
    epoch: int,
    initial: float = 1.0,
    decay_rate: float = 0.08,
    floor: float = 0.3,
) -> float:
    """Linear temperature decay per epoch, clamped at the floor."""
    return max(floor, initial - epoch * decay_rate)


def curriculum_level_at(
    epoch: int,
    current_level: int = 0,
    epochs_per_level: int = 3,
    max_level: int = 2,
) -> int:
    """Curriculum level after `epoch` epochs; never decreases, never exceeds max_level."""
    return max(current_level, min(max_level, epoch // epochs_per_level))


def generate_curriculum_tasks(
    count: int,
    level: int,
    rng: Optional[np.random.Generator] = None,
    embedding_dim: Optional[int] = None,
) -> List[Dict]:
    """
    Build synthetic tasks whose difficulty follows the curriculum level.

    Args:
        count: Number of tasks
        level: Curriculum level (0 easy, 1 medium, 2 hard)
        rng: Random source
        embedding_dim: When set, each task carries a synthetic feature vector

    Returns:
        Task payloads (dicts accepted by Task(**payload))
    """
    rng = rng if rng is not None else np.random.default_rng()
    low, high = DIFFICULTY_BANDS.get(level, DEFAULT_BAND)

    tasks = []
    for i in range(count):
        task_type = TASK_TYPES[i % len(TASK_TYPES)]
        category = CATEGORIES[i % len(CATEGORIES)]
        payload = {
            "id": f"task_{i:04d}",
            "type": task_type,
            "difficulty": float(low + rng.random() * (high - low)),
            "category": category,
            "prompt": f"// Task {i}: {task_type} in {category}",
        }
        if embedding_dim:
            payload["features"] = (rng.random(embedding_dim) - 0.5).tolist()
        tasks.append(payload)
    return tasks
