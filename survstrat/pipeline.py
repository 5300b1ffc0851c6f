"""
End-to-end run: screen → rank → elbow clustering → stratified re-test.

Only structural problems abort (ConfigurationError, raised before anything
is computed where possible). Per-feature and per-cluster failures are
carried in the returned tables.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Hashable, Optional

import pandas as pd

from survstrat.clustering import ClusteringResult, elbow_cluster
from survstrat.cohort import validate_inputs
from survstrat.config import PipelineConfig
from survstrat.errors import ConfigurationError
from survstrat.ranking import rank_features, screen_features
from survstrat.stratified import GroupEvaluation, evaluate_stratified

log = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    associations: pd.DataFrame
    ranked: pd.DataFrame
    clustering: ClusteringResult
    feature: Hashable
    evaluation: dict[int, GroupEvaluation]
    config: PipelineConfig


def choose_feature(ranked: pd.DataFrame, matrix: pd.DataFrame,
                   feature: Optional[Hashable] = None) -> Hashable:
    """Caller's feature if given (must exist), else the top-ranked one."""
    if feature is not None:
        if feature not in matrix.columns:
            raise ConfigurationError(f"Requested feature {feature!r} not in expression matrix")
        return feature
    return ranked.loc[0, "feature"]


def run_pipeline(cohort: pd.DataFrame, matrix: pd.DataFrame,
                 config: Optional[PipelineConfig] = None, *,
                 feature: Optional[Hashable] = None) -> PipelineResult:
    config = (config or PipelineConfig()).validate()
    validate_inputs(cohort, matrix, config.time_col, config.status_col)
    if feature is not None and feature not in matrix.columns:
        raise ConfigurationError(f"Requested feature {feature!r} not in expression matrix")
    if config.max_groups > len(cohort):
        raise ConfigurationError(
            f"max_groups={config.max_groups} exceeds cohort size ({len(cohort)})")

    associations = screen_features(
        matrix, cohort,
        min_usable_samples=config.min_usable_samples,
        penalizer=config.penalizer,
        n_jobs=config.n_jobs,
        time_col=config.time_col,
        status_col=config.status_col,
    )
    ranked = rank_features(associations, config.top_k)
    if ranked.empty:
        raise ConfigurationError("No feature produced a usable p-value; nothing to cluster on")

    clustering = elbow_cluster(
        matrix[ranked["feature"].tolist()],
        config.max_groups,
        restarts_scan=config.clustering_restarts_scan,
        restarts_final=config.clustering_restarts_final,
        seed=config.random_seed,
        n_jobs=config.n_jobs,
    )

    chosen = choose_feature(ranked, matrix, feature)
    evaluation = evaluate_stratified(
        chosen, matrix, cohort, clustering.assignment,
        min_group_samples=config.group_threshold,
        time_col=config.time_col,
        status_col=config.status_col,
    )
    return PipelineResult(associations=associations, ranked=ranked,
                          clustering=clustering, feature=chosen,
                          evaluation=evaluation, config=config)
