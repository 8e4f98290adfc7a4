"""Tests for weighted score fusion."""

import random
from uuid import uuid4

import pytest

from app.ranking.fusion import (
    FusionConfig,
    ScoreEntry,
    WeightedScoreFusion,
    normalize_keyword_scores,
    rank_items,
)


def scores_by_id(entries):
    return {entry.item_id: entry.score for entry in entries}


def test_semantic_only_strong_match():
    result = rank_items({"a": 0.85}, {})
    assert len(result) == 1
    assert result[0].item_id == "a"
    assert result[0].score == pytest.approx(0.595)


def test_semantic_only_just_above_threshold():
    result = rank_items({"a": 0.36}, {})
    assert scores_by_id(result)["a"] == pytest.approx(0.252)


def test_semantic_only_below_threshold_dropped():
    assert rank_items({"a": 0.35}, {}) == []


def test_keyword_only_match():
    result = rank_items({}, {"a": 0.8})
    assert scores_by_id(result)["a"] == pytest.approx(0.3)


def test_keyword_floor_lifts_weak_match_to_threshold():
    # 0.3 * (0.01 / 0.1) + 0.7 * 0.1 = 0.1 -> floored at 0.25
    result = rank_items({"a": 0.1}, {"a": 0.01})
    assert scores_by_id(result)["a"] == pytest.approx(0.25)


def test_zero_keyword_score_still_floored():
    result = rank_items({}, {"a": 0.0})
    assert scores_by_id(result) == {"a": 0.25}


def test_min_normalizer_prevents_inflating_weak_keyword_scores():
    assert normalize_keyword_scores({"a": 0.05}, 0.1) == {"a": pytest.approx(0.5)}
    assert normalize_keyword_scores({"a": 2.0, "b": 1.0}, 0.1) == {"a": 1.0, "b": 0.5}
    assert normalize_keyword_scores({}, 0.1) == {}


def test_combined_signals():
    result = rank_items({"a": 0.9, "b": 0.5}, {"b": 4.0, "c": 2.0})
    scores = scores_by_id(result)
    assert scores["a"] == pytest.approx(0.63)
    assert scores["b"] == pytest.approx(0.3 + 0.35)
    assert scores["c"] == pytest.approx(0.25)
    assert [entry.item_id for entry in result] == ["b", "a", "c"]


def test_every_keyword_match_scores_at_least_threshold():
    rng = random.Random(7)
    semantic = {f"d{i}": rng.uniform(-1.0, 1.0) for i in range(50)}
    keyword = {f"d{i}": rng.uniform(0.0, 20.0) for i in range(0, 80, 3)}
    result = scores_by_id(rank_items(semantic, keyword))
    for item_id in keyword:
        assert result[item_id] >= 0.25
    assert all(score >= 0.25 for score in result.values())


def test_monotonic_in_semantic_score():
    keyword = {"a": 1.0, "other": 3.0}
    previous = None
    for semantic_score in [0.0, 0.2, 0.4, 0.6, 0.8, 1.0]:
        score = scores_by_id(rank_items({"a": semantic_score}, keyword))["a"]
        if previous is not None:
            assert score >= previous
        previous = score


def test_sorted_descending_with_ties_by_id():
    first, second = uuid4(), uuid4()
    result = rank_items({first: 0.5, second: 0.5, "z": 0.9}, {})
    assert result[0].item_id == "z"
    assert [str(entry.item_id) for entry in result[1:]] == sorted([str(first), str(second)])


def test_result_independent_of_input_order():
    semantic = {f"d{i}": (i % 7) / 7 for i in range(30)}
    keyword = {f"d{i}": float(i % 4) for i in range(0, 30, 2)}
    reversed_semantic = dict(reversed(list(semantic.items())))
    reversed_keyword = dict(reversed(list(keyword.items())))
    assert rank_items(semantic, keyword) == rank_items(reversed_semantic, reversed_keyword)


def test_empty_inputs():
    assert rank_items({}, {}) == []


def test_custom_weights():
    fusion = WeightedScoreFusion(FusionConfig(keyword_weight=1.0, similarity_threshold=0.0))
    result = fusion.fuse_results({"a": 0.9}, {"b": 2.0})
    assert result == [ScoreEntry("b", 1.0), ScoreEntry("a", 0.0)]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"keyword_weight": -0.1},
        {"keyword_weight": 1.5},
        {"similarity_threshold": 1.01},
        {"similarity_threshold": -0.5},
        {"min_keyword_normalizer": 0.0},
        {"min_keyword_normalizer": -1.0},
        {"keyword_weight": float("nan")},
    ],
)
def test_invalid_config_rejected(kwargs):
    with pytest.raises(ValueError):
        FusionConfig(**kwargs)


def test_config_from_search_config(search_config):
    config = FusionConfig.from_config(search_config)
    assert config == FusionConfig(0.3, 0.25, 0.1)
