import numpy as np
import pytest

from continual_engine.errors import ConfigurationError
from continual_engine.patterns import PatternBank, cosine_similarity


def _random_trajectories(make_trajectory, rng, count, dim=8):
    return [make_trajectory(float(rng.random()), embedding=rng.random(dim) - 0.5) for _ in range(count)]


def test_cosine_similarity_basics():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
    assert cosine_similarity([0, 0], [1, 1]) == 0.0


def test_extraction_with_too_few_trajectories_keeps_existing_patterns(make_trajectory, rng):
    bank = PatternBank(dim=8, min_trajectories=5, rng=rng)
    bank.extract_patterns(_random_trajectories(make_trajectory, rng, 6), k=3)
    before = bank.get_state()

    count = bank.extract_patterns(_random_trajectories(make_trajectory, rng, 4), k=3)

    assert count == 3
    assert bank.get_state() == before


def test_extraction_on_empty_bank_with_too_few_inputs(make_trajectory, rng):
    bank = PatternBank(dim=8, min_trajectories=5, rng=rng)

    assert bank.extract_patterns(_random_trajectories(make_trajectory, rng, 4)) == 0
    assert bank.pattern_count() == 0


def test_extraction_replaces_set_and_respects_bounds(make_trajectory, rng):
    bank = PatternBank(dim=8, max_patterns=4, min_trajectories=2, rng=rng)

    assert bank.extract_patterns(_random_trajectories(make_trajectory, rng, 10), k=10) == 4
    assert bank.extract_patterns(_random_trajectories(make_trajectory, rng, 3), k=10) == 3
    assert bank.pattern_count() == 3


def test_extraction_selects_distinct_trajectories(make_trajectory, rng):
    bank = PatternBank(dim=8, min_trajectories=2, rng=rng)
    trajectories = _random_trajectories(make_trajectory, rng, 5)

    bank.extract_patterns(trajectories, k=5)

    embeddings = {tuple(c.embedding) for c in bank.centroids}
    assert embeddings == {tuple(t.query_embedding) for t in trajectories}


def test_extraction_prefers_higher_quality(make_trajectory, rng):
    bank = PatternBank(dim=8, min_trajectories=2, rng=rng)
    low = [make_trajectory(0.1, embedding=rng.random(8)) for _ in range(5)]
    best = make_trajectory(0.95, embedding=rng.random(8))

    bank.extract_patterns(low + [best], k=1)

    # 0.95 * 0.5 beats 0.1 * 1.0 for any tie-break draw
    assert bank.centroids[0].quality == pytest.approx(0.95)


def test_find_similar_sorted_descending_with_self_similarity_one(make_trajectory, rng):
    bank = PatternBank(dim=8, min_trajectories=2, rng=rng)
    trajectories = _random_trajectories(make_trajectory, rng, 8)
    bank.extract_patterns(trajectories, k=8)
    query = bank.centroids[3].embedding

    matches = bank.find_similar(query, top_k=8)

    similarities = [m.similarity for m in matches]
    assert similarities == sorted(similarities, reverse=True)
    assert matches[0].similarity == pytest.approx(1.0, abs=1e-6)
    assert np.array_equal(matches[0].centroid, query)


def test_find_similar_limits_results(make_trajectory, rng):
    bank = PatternBank(dim=8, min_trajectories=2, rng=rng)
    bank.extract_patterns(_random_trajectories(make_trajectory, rng, 6), k=6)

    assert len(bank.find_similar(rng.random(8), top_k=3)) == 3
    assert bank.find_similar(rng.random(8), top_k=0) == []


def test_find_similar_on_empty_bank(rng):
    bank = PatternBank(dim=8, rng=rng)

    assert bank.find_similar(rng.random(8)) == []


def test_state_round_trip(make_trajectory, rng):
    bank = PatternBank(dim=8, min_trajectories=2, rng=rng)
    bank.extract_patterns(_random_trajectories(make_trajectory, rng, 5), k=4)

    restored = PatternBank(dim=8)
    restored.load_state(bank.get_state())

    assert restored.get_state() == bank.get_state()


@pytest.mark.parametrize(
    "state",
    [
        {"centroids": [[0.0] * 8], "qualities": []},
        {"centroids": [[0.0] * 7], "qualities": [0.5]},
    ],
)
def test_load_state_rejects_malformed_centroids(state):
    bank = PatternBank(dim=8)

    with pytest.raises(ConfigurationError):
        bank.load_state(state)


def test_load_state_rejects_more_than_max_patterns():
    bank = PatternBank(dim=2, max_patterns=1)

    with pytest.raises(ConfigurationError):
        bank.load_state({"centroids": [[1.0, 0.0], [0.0, 1.0]], "qualities": [0.5, 0.6]})
