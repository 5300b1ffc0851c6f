import pytest

from survstrat.config import (CLUSTERING_RESTARTS_FINAL, CLUSTERING_RESTARTS_SCAN,
                              PipelineConfig)
from survstrat.errors import ConfigurationError


def test_defaults_are_valid():
    cfg = PipelineConfig().validate()
    assert cfg.top_k == 100
    assert cfg.max_groups == 10
    assert cfg.min_usable_samples == 10
    assert cfg.random_seed is None
    assert CLUSTERING_RESTARTS_FINAL > CLUSTERING_RESTARTS_SCAN


def test_group_threshold_follows_min_usable_by_default():
    assert PipelineConfig(min_usable_samples=15).group_threshold == 15
    assert PipelineConfig(min_group_samples=5).group_threshold == 5


@pytest.mark.parametrize("kwargs", [
    {"top_k": 0},
    {"max_groups": 1},
    {"min_usable_samples": 1},
    {"min_group_samples": 1},
    {"clustering_restarts_scan": 0},
    {"clustering_restarts_scan": 20, "clustering_restarts_final": 20},
    {"random_seed": -1},
    {"penalizer": 0.0},
    {"n_jobs": 0},
    {"time_col": "t", "status_col": "t"},
])
def test_contradictory_options_rejected(kwargs):
    with pytest.raises(ConfigurationError):
        PipelineConfig(**kwargs).validate()


def test_to_dict_round_trips():
    cfg = PipelineConfig(top_k=7, random_seed=3)
    assert PipelineConfig(**cfg.to_dict()) == cfg
