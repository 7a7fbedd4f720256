#!/usr/bin/env python3
"""
Continual engine configuration.

Configuration is resolved in three layers (lowest to highest precedence):
model defaults, an optional YAML file, then CONTINUAL_* environment variables.
"""

import logging
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class ConfidenceConfig(BaseModel):
    """Coefficients of the confidence model (see confidence.py)."""
    base_capability: float = Field(default=0.18)
    capacity_divisor: float = Field(default=12.0)
    learning_boost_per_epoch: float = Field(default=0.028)
    learning_boost_cap: float = Field(default=0.18)
    pattern_boost_weight: float = Field(default=0.15)
    pattern_match_threshold: float = Field(default=0.7)
    curriculum_step: float = Field(default=0.06)
    temperature_noise: float = Field(default=0.08)
    confidence_cap: float = Field(default=0.92)
    success_threshold: float = Field(default=0.35)
    difficulty_penalty: float = Field(default=0.22)
    large_model_capacity: float = Field(default=3.0)
    large_model_bonus: float = Field(default=0.08)
    small_model_bonus: float = Field(default=0.04)
    high_confidence_threshold: float = Field(default=0.5)
    failure_quality_factor: float = Field(default=0.6)
    failure_learning_factor: float = Field(default=0.5)
    success_gradient_scale: float = Field(default=0.1)
    failure_gradient_scale: float = Field(default=0.05)
    replay_gradient_scale: float = Field(default=0.02)


class EngineConfig(BaseModel):
    """Continual engine configuration"""
    model_config = ConfigDict(protected_namespaces=())

    model_name: str = Field(default="default-model")
    embedding_dim: int = Field(..., description="Length of every feature vector")
    model_capacity: float = Field(default=1.5, description="Declared model size in billions of parameters")
    rank: Optional[int] = Field(default=None, description="Adapter rank (adaptive when unset)")
    scale: float = Field(default=1.0)

    # Consolidation
    ewc_lambda: float = Field(default=500.0)

    # Experience buffer / pattern bank
    buffer_capacity: int = Field(default=10000)
    pattern_threshold: float = Field(default=0.35)
    max_patterns: int = Field(default=100)
    patterns_per_extraction: int = Field(default=15)
    min_trajectories_for_extraction: int = Field(default=5)
    replay_count: int = Field(default=10)
    replay_weight: float = Field(default=0.5)
    success_quality_bar: float = Field(default=0.5)

    # Adapter updates
    base_learning_rate: float = Field(default=0.001)
    base_step: float = Field(default=0.002)
    momentum_beta: float = Field(default=0.9)
    min_pending_updates: int = Field(default=5)

    # Schedules
    initial_temperature: float = Field(default=1.0)
    temperature_decay_rate: float = Field(default=0.08)
    temperature_floor: float = Field(default=0.3)
    curriculum_epochs_per_level: int = Field(default=3)
    max_curriculum_level: int = Field(default=2)

    seed: Optional[int] = Field(default=None)
    confidence: ConfidenceConfig = Field(default_factory=ConfidenceConfig)

    def validate_engine(self) -> "EngineConfig":
        """Fail fast on configurations the engine cannot run with."""
        problems = []
        if self.embedding_dim < 1:
            problems.append(f"embedding_dim must be >= 1 (got {self.embedding_dim})")
        if self.rank is not None:
            if self.rank < 1:
                problems.append(f"rank must be >= 1 (got {self.rank})")
            elif self.rank > self.embedding_dim:
                problems.append(
                    f"rank {self.rank} exceeds embedding_dim {self.embedding_dim}"
                )
        if self.buffer_capacity < 1:
            problems.append(f"buffer_capacity must be positive (got {self.buffer_capacity})")
        if self.max_patterns < 1:
            problems.append(f"max_patterns must be positive (got {self.max_patterns})")
        if self.patterns_per_extraction < 1:
            problems.append("patterns_per_extraction must be positive")
        for name in ("pattern_threshold", "success_quality_bar", "replay_weight", "momentum_beta"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                problems.append(f"{name} must be within [0, 1] (got {value})")
        if self.ewc_lambda < 0:
            problems.append(f"ewc_lambda must be non-negative (got {self.ewc_lambda})")
        if self.temperature_floor > self.initial_temperature:
            problems.append("temperature_floor must not exceed initial_temperature")
        if self.temperature_decay_rate < 0:
            problems.append("temperature_decay_rate must be non-negative")
        if self.curriculum_epochs_per_level < 1:
            problems.append("curriculum_epochs_per_level must be positive")
        if self.max_curriculum_level < 0:
            problems.append("max_curriculum_level must be non-negative")

        if problems:
            raise ConfigurationError("; ".join(problems))
        return self


# Environment variable -> (field, parser)
ENV_OVERRIDES = {
    "CONTINUAL_MODEL_NAME": ("model_name", str),
    "CONTINUAL_EMBEDDING_DIM": ("embedding_dim", int),
    "CONTINUAL_MODEL_CAPACITY": ("model_capacity", float),
    "CONTINUAL_RANK": ("rank", int),
    "CONTINUAL_SCALE": ("scale", float),
    "CONTINUAL_EWC_LAMBDA": ("ewc_lambda", float),
    "CONTINUAL_BUFFER_CAPACITY": ("buffer_capacity", int),
    "CONTINUAL_PATTERN_THRESHOLD": ("pattern_threshold", float),
    "CONTINUAL_MAX_PATTERNS": ("max_patterns", int),
    "CONTINUAL_MIN_TRAJECTORIES": ("min_trajectories_for_extraction", int),
    "CONTINUAL_REPLAY_COUNT": ("replay_count", int),
    "CONTINUAL_BASE_LEARNING_RATE": ("base_learning_rate", float),
    "CONTINUAL_TEMPERATURE_FLOOR": ("temperature_floor", float),
    "CONTINUAL_TEMPERATURE_DECAY_RATE": ("temperature_decay_rate", float),
    "CONTINUAL_CURRICULUM_EPOCHS_PER_LEVEL": ("curriculum_epochs_per_level", int),
    "CONTINUAL_SEED": ("seed", int),
}

DEFAULT_EMBEDDING_DIM = 128


def _env_overrides(environ: Dict[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_name, (field_name, parser) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            overrides[field_name] = parser(raw)
        except (TypeError, ValueError):
            logger.warning(
                "Ignoring unparsable %s='%s'; keeping configured %s",
                env_name,
                raw,
                field_name,
            )
    return overrides


def load_config(
    path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> EngineConfig:
    """
    Load engine configuration.

    Args:
        path: Optional YAML file (falls back to CONTINUAL_CONFIG_PATH)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated EngineConfig
    """
    environ = dict(os.environ if environ is None else environ)
    path = path or environ.get("CONTINUAL_CONFIG_PATH")

    data: Dict[str, Any] = {}
    if path:
        if not os.path.exists(path):
            raise ConfigurationError(f"Configuration file not found: {path}")
        with open(path, "r") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {path}")
        data.update(loaded)
        logger.info(f"Loaded engine configuration from {path}")

    data.update(_env_overrides(environ))
    data.setdefault("embedding_dim", DEFAULT_EMBEDDING_DIM)

    try:
        config = EngineConfig(**data)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    return config.validate_engine()
