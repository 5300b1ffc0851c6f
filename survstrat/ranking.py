"""
Feature screen and ranking.

`screen_features` runs the association cascade on every column of the
expression matrix and keeps one row per feature (unavailable ones included).
`rank_features` turns that table into the top-k list used for clustering.
"""

import logging

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from survstrat.association import METHODS, test_association
from survstrat.cohort import survival_arrays
from survstrat.config import (COX_PENALIZER, MIN_USABLE_SAMPLES, N_JOBS,
                              STATUS_COL, TIME_COL, TOP_K)
from survstrat.errors import ConfigurationError

log = logging.getLogger(__name__)

RESULT_COLUMNS = ["feature", "p_value", "method", "n_used", "reason"]


def _screen_one(values: np.ndarray, times: np.ndarray, statuses: np.ndarray,
                feature, min_usable_samples: int, penalizer: float):
    return test_association(values, times, statuses, feature=feature,
                            min_usable_samples=min_usable_samples,
                            penalizer=penalizer)


def screen_features(matrix: pd.DataFrame, cohort: pd.DataFrame, *,
                    min_usable_samples: int = MIN_USABLE_SAMPLES,
                    penalizer: float = COX_PENALIZER,
                    n_jobs: int = N_JOBS,
                    time_col: str = TIME_COL,
                    status_col: str = STATUS_COL) -> pd.DataFrame:
    """
    Association result for every feature, in original column order.
    matrix must be samples × features, already aligned to cohort.
    """
    times, statuses = survival_arrays(cohort, time_col, status_col)
    values = matrix.to_numpy(dtype=float)
    features = list(matrix.columns)
    log.info(f"Screening {len(features):,} features "
             f"(n={len(times)}, min usable={min_usable_samples}, n_jobs={n_jobs})")

    # Index-addressed output: slot i always holds feature i.
    results = [None] * len(features)
    if n_jobs == 1:
        for i, feature in enumerate(features):
            results[i] = _screen_one(values[:, i], times, statuses, feature,
                                     min_usable_samples, penalizer)
    else:
        parallel = Parallel(n_jobs=n_jobs)(
            delayed(_screen_one)(values[:, i], times, statuses, feature,
                                 min_usable_samples, penalizer)
            for i, feature in enumerate(features)
        )
        for i, res in enumerate(parallel):
            results[i] = res

    table = pd.DataFrame(
        [(r.feature, r.p_value, r.method, r.n_used, r.reason) for r in results],
        columns=RESULT_COLUMNS,
    )
    table["p_value"] = table["p_value"].astype(float)

    counts = table["method"].value_counts()
    log.info("  Methods: " + "  ".join(f"{m}={int(counts.get(m, 0))}" for m in METHODS))
    return table


def rank_features(associations: pd.DataFrame, top_k: int = TOP_K) -> pd.DataFrame:
    """
    Drop features without a p-value, sort ascending (stable, so ties keep
    column order) and keep the first top_k. Returns fewer rows when fewer
    features are valid.
    """
    if top_k < 1:
        raise ConfigurationError(f"top_k must be >= 1, got {top_k}")
    valid = associations[associations["p_value"].notna()]
    ranked = (valid.sort_values("p_value", kind="mergesort")
                   .head(top_k)
                   .reset_index(drop=True))
    ranked = ranked[["feature", "p_value", "method", "n_used"]]

    n_dropped = len(associations) - len(valid)
    log.info(f"Ranked {len(valid):,} valid features ({n_dropped:,} unavailable dropped) "
             f"→ top {len(ranked)}")
    if len(ranked):
        log.info(f"  Best: {ranked.loc[0, 'feature']}  p={ranked.loc[0, 'p_value']:.3e}  "
                 f"[{ranked.loc[0, 'method']}]")
    return ranked
