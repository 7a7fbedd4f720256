import numpy as np
import pytest

from continual_engine.config import ConfidenceConfig
from continual_engine.confidence import (
    base_capability,
    combine_confidence,
    curriculum_adjustment,
    final_quality,
    is_pattern_match,
    learning_boost,
    learning_quality,
    pattern_boost,
    should_learn,
    success_threshold,
    temperature_noise,
)
from continual_engine.patterns import PatternMatch


@pytest.fixture
def cfg() -> ConfidenceConfig:
    return ConfidenceConfig()


def _match(quality, similarity):
    return PatternMatch(centroid=np.zeros(2), quality=quality, similarity=similarity)


def test_base_capability_grows_with_capacity(cfg):
    assert base_capability(1.5, cfg) == pytest.approx(0.18 + 1.5 / 12)
    assert base_capability(7, cfg) > base_capability(1.5, cfg)


def test_learning_boost_is_capped(cfg):
    assert learning_boost(0, cfg) == 0.0
    assert learning_boost(2, cfg) == pytest.approx(0.056)
    assert learning_boost(100, cfg) == pytest.approx(0.18)


def test_pattern_boost_uses_top_match(cfg):
    assert pattern_boost([], cfg) == 0.0
    assert pattern_boost([_match(0.8, 0.5), _match(1.0, 0.1)], cfg) == pytest.approx(0.8 * 0.5 * 0.15)


def test_pattern_match_requires_similarity_above_threshold(cfg):
    assert not is_pattern_match([], cfg)
    assert not is_pattern_match([_match(0.9, 0.7)], cfg)
    assert is_pattern_match([_match(0.9, 0.71)], cfg)


def test_curriculum_adjustment_favours_easier_levels(cfg):
    assert curriculum_adjustment(0, 2, cfg) == pytest.approx(0.12)
    assert curriculum_adjustment(2, 2, cfg) == 0.0


def test_temperature_noise_is_centered_and_scaled(cfg):
    assert temperature_noise(1.0, cfg, draw=0.5) == 0.0
    assert temperature_noise(1.0, cfg, draw=1.0) == pytest.approx(0.04)
    assert temperature_noise(0.5, cfg, draw=0.0) == pytest.approx(-0.02)


def test_temperature_noise_draws_from_given_rng(cfg):
    a = temperature_noise(1.0, cfg, rng=np.random.default_rng(3))
    b = temperature_noise(1.0, cfg, rng=np.random.default_rng(3))

    assert a == b
    assert abs(a) <= 0.04


def test_combine_confidence_clips(cfg):
    assert combine_confidence([0.5, 0.6], cfg) == pytest.approx(0.92)
    assert combine_confidence([-0.3, 0.1], cfg) == 0.0
    assert combine_confidence([0.2, 0.1], cfg) == pytest.approx(0.3)


def test_success_threshold_rises_with_difficulty_and_falls_with_size(cfg):
    easy = success_threshold(0.1, 1.5, cfg)
    hard = success_threshold(0.9, 1.5, cfg)
    large = success_threshold(0.9, 7.0, cfg)

    assert hard > easy
    assert large < hard
    assert easy == pytest.approx(0.35 + 0.1 * 0.22 - 0.04)


def test_quality_and_learning_rules(cfg):
    assert final_quality(0.8, True, cfg) == 0.8
    assert final_quality(0.8, False, cfg) == pytest.approx(0.48)
    assert learning_quality(0.8, False, cfg) == pytest.approx(0.4)
    assert should_learn(0.2, True, cfg)
    assert should_learn(0.6, False, cfg)
    assert not should_learn(0.4, False, cfg)
