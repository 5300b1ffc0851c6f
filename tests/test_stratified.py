"""
Tests for per-cluster survival re-testing.
"""

import numpy as np
import pandas as pd
import pytest

from survstrat.association import median_split_logrank
from survstrat.errors import INSUFFICIENT_DATA, ConfigurationError
from survstrat.stratified import (OK, SKIPPED, evaluate_stratified,
                                  evaluation_table)


@pytest.fixture
def two_groups(cohort_and_matrix):
    cohort, matrix = cohort_and_matrix
    labels = np.where(np.arange(len(cohort)) % 2 == 0, 1, 2)
    return cohort, matrix, pd.Series(labels, index=cohort.index, name="cluster")


def test_each_group_gets_cox_and_logrank(two_groups):
    cohort, matrix, assignment = two_groups
    ev = evaluate_stratified("signal", matrix, cohort, assignment)
    assert sorted(ev) == [1, 2]
    for label, group in ev.items():
        assert group.status == OK
        assert group.n == 30
        assert set(group.cox) >= {"coef", "hazard_ratio", "p", "hr_lower_95", "hr_upper_95"}
        assert 0.0 <= group.cox["p"] <= 1.0
        assert group.cox["hazard_ratio"] > 1.0
        assert 0.0 <= group.logrank["p_value"] <= 1.0


def test_logrank_matches_rank_tier(two_groups):
    cohort, matrix, assignment = two_groups
    ev = evaluate_stratified("signal", matrix, cohort, assignment)
    members = assignment.index[assignment == 1]
    expected, _ = median_split_logrank(matrix.loc[members, "signal"].to_numpy(),
                                       cohort.loc[members, "time"].to_numpy(),
                                       cohort.loc[members, "status"].to_numpy())
    assert ev[1].logrank == expected


def test_small_group_skipped_not_fatal(cohort_and_matrix):
    cohort, matrix = cohort_and_matrix
    labels = np.ones(len(cohort), dtype=int)
    labels[:4] = 2
    assignment = pd.Series(labels, index=cohort.index)
    ev = evaluate_stratified("signal", matrix, cohort, assignment,
                             min_group_samples=10)
    assert ev[2].status == SKIPPED
    assert ev[2].cox is None and ev[2].logrank is None
    assert ev[2].cox_reason == INSUFFICIENT_DATA
    assert ev[2].logrank_reason == INSUFFICIENT_DATA
    assert ev[1].status == OK


def test_zero_variance_feature_reports_insufficient_data(two_groups):
    cohort, matrix, assignment = two_groups
    matrix = matrix.assign(flat=3.0)
    ev = evaluate_stratified("flat", matrix, cohort, assignment)
    for group in ev.values():
        assert group.logrank is None
        assert group.logrank_reason == INSUFFICIENT_DATA


def test_unknown_feature_is_fatal(two_groups):
    cohort, matrix, assignment = two_groups
    with pytest.raises(ConfigurationError):
        evaluate_stratified("nope", matrix, cohort, assignment)


def test_assignment_must_cover_cohort(two_groups):
    cohort, matrix, assignment = two_groups
    with pytest.raises(ConfigurationError):
        evaluate_stratified("signal", matrix, cohort, assignment.iloc[1:])


def test_assignment_order_does_not_matter(two_groups):
    cohort, matrix, assignment = two_groups
    ev_a = evaluate_stratified("signal", matrix, cohort, assignment)
    ev_b = evaluate_stratified("signal", matrix, cohort, assignment.iloc[::-1])
    assert ev_a[1].logrank == ev_b[1].logrank


def test_evaluation_table_one_row_per_cluster(cohort_and_matrix):
    cohort, matrix = cohort_and_matrix
    labels = np.ones(len(cohort), dtype=int)
    labels[:4] = 2
    ev = evaluate_stratified("signal", matrix, cohort,
                             pd.Series(labels, index=cohort.index))
    table = evaluation_table(ev)
    assert table["cluster"].tolist() == [1, 2]
    assert table["status"].tolist() == [OK, SKIPPED]
    assert np.isnan(table.loc[1, "cox_p"])
    assert table.loc[0, "logrank_p"] == pytest.approx(ev[1].logrank["p_value"])


def test_zero_variance_feature_skips_cox(two_groups):
    cohort, matrix, assignment = two_groups
    ev = evaluate_stratified("flat", matrix.assign(flat=3.0), cohort, assignment)
    for group in ev.values():
        assert group.cox is None
        assert group.cox_reason == INSUFFICIENT_DATA


def test_group_without_events_skips_cox(two_groups):
    cohort, matrix, assignment = two_groups
    cohort = cohort.copy()
    cohort.loc[assignment == 2, "status"] = 0
    ev = evaluate_stratified("signal", matrix, cohort, assignment)
    assert ev[2].events == 0
    assert ev[2].cox is None and ev[2].cox_reason == INSUFFICIENT_DATA
    assert ev[2].logrank_reason == INSUFFICIENT_DATA
    assert ev[1].cox is not None
