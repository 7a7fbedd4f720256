"""
Confidence model.

Task confidence is the sum of independent terms:

    base capability + learning boost + pattern boost
        + curriculum adjustment + temperature noise

clipped to [0, cap]. Each term is a pure function of its inputs and the
ConfidenceConfig coefficients so it can be tuned and tested on its own.
"""

from typing import Optional, Sequence

import numpy as np

from .config import ConfidenceConfig
from .patterns import PatternMatch


def base_capability(model_capacity: float, cfg: ConfidenceConfig) -> float:
    """Starting capability; grows linearly with declared model capacity."""
    return cfg.base_capability + model_capacity / cfg.capacity_divisor


def learning_boost(epoch: int, cfg: ConfidenceConfig) -> float:
    """Improvement from completed epochs, capped."""
    return min(cfg.learning_boost_cap, epoch * cfg.learning_boost_per_epoch)


def pattern_boost(matches: Sequence[PatternMatch], cfg: ConfidenceConfig) -> float:
    """Boost from the closest stored pattern (quality * similarity * weight)."""
    if not matches:
        return 0.0
    top = matches[0]
    return top.quality * top.similarity * cfg.pattern_boost_weight


def is_pattern_match(matches: Sequence[PatternMatch], cfg: ConfidenceConfig) -> bool:
    return bool(matches) and matches[0].similarity > cfg.pattern_match_threshold


def curriculum_adjustment(level: int, max_level: int, cfg: ConfidenceConfig) -> float:
    """Easier curriculum levels give a larger bonus."""
    return (max_level - level) * cfg.curriculum_step


def temperature_noise(
    temperature: float,
    cfg: ConfidenceConfig,
    rng: Optional[np.random.Generator] = None,
    draw: Optional[float] = None,
) -> float:
    """Zero-mean noise whose spread scales with temperature."""
    if draw is None:
        rng = rng if rng is not None else np.random.default_rng()
        draw = float(rng.random())
    return (draw - 0.5) * cfg.temperature_noise * temperature


def combine_confidence(terms: Sequence[float], cfg: ConfidenceConfig) -> float:
    return float(np.clip(sum(terms), 0.0, cfg.confidence_cap))


def success_threshold(difficulty: float, model_capacity: float, cfg: ConfidenceConfig) -> float:
    """Confidence a task must exceed to count as resolved."""
    if model_capacity >= cfg.large_model_capacity:
        size_bonus = cfg.large_model_bonus
    else:
        size_bonus = cfg.small_model_bonus
    return cfg.success_threshold + difficulty * cfg.difficulty_penalty - size_bonus


def final_quality(confidence: float, success: bool, cfg: ConfidenceConfig) -> float:
    """Trajectory quality; failures keep part of their confidence."""
    return confidence if success else confidence * cfg.failure_quality_factor


def learning_quality(confidence: float, success: bool, cfg: ConfidenceConfig) -> float:
    """Quality used to weight a gradient accumulation."""
    return confidence if success else confidence * cfg.failure_learning_factor


def should_learn(confidence: float, success: bool, cfg: ConfidenceConfig) -> bool:
    """Learn from successes and from high-confidence failures."""
    return success or confidence > cfg.high_confidence_threshold
