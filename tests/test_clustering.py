"""
Tests for elbow selection and k-means stratification.
"""

import numpy as np
import pandas as pd
import pytest

import survstrat.clustering as clust
from survstrat.clustering import (dense_labels, dispersion_curve, elbow_cluster,
                                  select_elbow)
from survstrat.errors import ConfigurationError

CURVE = [(1, 100), (2, 60), (3, 50), (4, 45), (5, 42)]


def test_elbow_scenario():
    assert select_elbow(CURVE) == 2


def test_elbow_accepts_dataframe():
    df = pd.DataFrame(CURVE, columns=["k", "dispersion"])
    assert select_elbow(df) == 2


@pytest.mark.parametrize("scale", [1e-3, 0.5, 3.7, 1e6])
def test_elbow_scale_invariant(scale):
    scaled = [(k, d * scale) for k, d in CURVE]
    assert select_elbow(scaled) == select_elbow(CURVE)


def test_elbow_tie_goes_to_smallest_k():
    # k=2 and k=4 sit exactly 3 units below the chord
    curve = [(1, 10), (2, 5), (3, 4.5), (4, 1), (5, 2)]
    assert select_elbow(curve) == 2


def test_elbow_needs_two_points():
    with pytest.raises(ConfigurationError):
        select_elbow([(1, 100)])


def test_dense_labels_first_appearance():
    assert dense_labels(np.array([5, 5, 2, 9, 2])).tolist() == [1, 1, 2, 3, 2]


def test_k1_dispersion_is_total_sum_of_squares(blobs):
    data = blobs.to_numpy()
    curve = dispersion_curve(data, 4, n_init=3, seed=0)
    assert curve["k"].tolist() == [1, 2, 3, 4]
    total_ss = ((data - data.mean(axis=0)) ** 2).sum()
    assert curve.loc[0, "dispersion"] == pytest.approx(total_ss, rel=1e-6)
    assert curve["dispersion"].notna().all()


def test_three_blobs_select_three(blobs):
    result = elbow_cluster(blobs, max_groups=8, seed=0)
    assert result.selected_k == 3
    assert len(result.curve) == 8
    sizes = result.assignment.value_counts().sort_index().tolist()
    assert sizes == [10, 10, 10]


def test_assignment_dense_and_total(blobs):
    result = elbow_cluster(blobs, max_groups=6, seed=3)
    assert result.assignment.index.equals(blobs.index)
    labels = set(result.assignment.unique())
    assert labels == set(range(1, result.n_groups + 1))
    assert result.assignment.iloc[0] == 1


def test_same_seed_reproducible(blobs):
    a = elbow_cluster(blobs, max_groups=5, seed=11)
    b = elbow_cluster(blobs, max_groups=5, seed=11)
    pd.testing.assert_series_equal(a.assignment, b.assignment)
    pd.testing.assert_frame_equal(a.curve, b.curve)


def test_missing_seed_is_drawn_and_reusable(blobs):
    first = elbow_cluster(blobs, max_groups=5, seed=None)
    assert isinstance(first.seed, int)
    again = elbow_cluster(blobs, max_groups=5, seed=first.seed)
    pd.testing.assert_series_equal(first.assignment, again.assignment)


def test_non_finite_cells_imputed(blobs):
    data = blobs.copy()
    data.iloc[0, 0] = np.nan
    result = elbow_cluster(data, max_groups=5, seed=0)
    assert result.assignment.notna().all()


@pytest.mark.parametrize("max_groups", [0, 1])
def test_max_groups_below_two_is_fatal(blobs, max_groups):
    with pytest.raises(ConfigurationError):
        elbow_cluster(blobs, max_groups=max_groups, seed=0)


def test_max_groups_above_sample_count_is_fatal(blobs):
    with pytest.raises(ConfigurationError):
        elbow_cluster(blobs.iloc[:4], max_groups=5, seed=0)


def test_final_restarts_must_exceed_scan(blobs):
    with pytest.raises(ConfigurationError):
        elbow_cluster(blobs, max_groups=4, restarts_scan=10, restarts_final=10, seed=0)


def test_unconverged_k_is_retried_with_double_restarts(blobs, monkeypatch):
    real_fit = clust.fit_kmeans
    calls = []

    def first_call_unconverged(data, k, n_init, seed):
        calls.append((k, n_init))
        km, _ = real_fit(data, k, n_init, seed)
        return km, len(calls) > 1

    monkeypatch.setattr(clust, "fit_kmeans", first_call_unconverged)
    curve = dispersion_curve(blobs.to_numpy(), 3, n_init=3, seed=0)
    assert calls == [(1, 3), (1, 6), (2, 3), (3, 3)]
    assert np.isfinite(curve["dispersion"]).all()
    assert curve["converged"].tolist() == [True, True, True]


def test_unconverged_retry_still_records_dispersion(blobs, monkeypatch):
    real_fit = clust.fit_kmeans
    calls = []

    def never_converges(data, k, n_init, seed):
        calls.append((k, n_init))
        km, _ = real_fit(data, k, n_init, seed)
        return km, False

    monkeypatch.setattr(clust, "fit_kmeans", never_converges)
    curve = dispersion_curve(blobs.to_numpy(), 2, n_init=4, seed=0)
    assert calls == [(1, 4), (1, 8), (2, 4), (2, 8)]
    assert np.isfinite(curve["dispersion"]).all()
    assert curve["converged"].tolist() == [False, False]
