"""
Boundary checks for the two aligned inputs.

The caller intersects and orders sample IDs; here we only confirm that was
done. Any mismatch is a ConfigurationError, never a silent re-alignment.
"""

import logging

import numpy as np
import pandas as pd

from survstrat.config import STATUS_COL, TIME_COL
from survstrat.errors import ConfigurationError

log = logging.getLogger(__name__)


def validate_cohort(cohort: pd.DataFrame,
                    time_col: str = TIME_COL,
                    status_col: str = STATUS_COL) -> None:
    """Cohort: unique sample index, finite non-negative times, 0/1 status."""
    if len(cohort) == 0:
        raise ConfigurationError("Cohort is empty")
    missing = [c for c in (time_col, status_col) if c not in cohort.columns]
    if missing:
        raise ConfigurationError(f"Cohort is missing column(s): {missing}")
    if cohort.index.has_duplicates:
        dups = cohort.index[cohort.index.duplicated()].unique().tolist()
        raise ConfigurationError(f"Duplicate sample IDs in cohort: {dups[:5]}")

    times  = pd.to_numeric(cohort[time_col], errors="coerce").to_numpy(dtype=float)
    status = pd.to_numeric(cohort[status_col], errors="coerce").to_numpy(dtype=float)
    if not np.isfinite(times).all():
        raise ConfigurationError(f"Non-finite or missing values in '{time_col}'")
    if (times < 0).any():
        raise ConfigurationError(f"Negative survival times in '{time_col}'")
    if not np.isin(status, (0.0, 1.0)).all():
        raise ConfigurationError(f"'{status_col}' must be coded 0 (censored) / 1 (event)")


def validate_inputs(cohort: pd.DataFrame, matrix: pd.DataFrame,
                    time_col: str = TIME_COL,
                    status_col: str = STATUS_COL) -> None:
    """
    Fail fast unless cohort and expression matrix describe the same samples
    in the same order.
    """
    validate_cohort(cohort, time_col, status_col)
    if matrix.shape[1] == 0:
        raise ConfigurationError("Expression matrix has no feature columns")
    if matrix.columns.has_duplicates:
        dups = matrix.columns[matrix.columns.duplicated()].unique().tolist()
        raise ConfigurationError(f"Duplicate feature names: {dups[:5]}")

    if not cohort.index.equals(matrix.index):
        only_cohort = cohort.index.difference(matrix.index)
        only_matrix = matrix.index.difference(cohort.index)
        if len(only_cohort) or len(only_matrix):
            raise ConfigurationError(
                f"Sample sets differ: {len(only_cohort)} only in cohort, "
                f"{len(only_matrix)} only in expression matrix"
            )
        raise ConfigurationError("Cohort and expression matrix sample order differs")

    log.info(f"Inputs aligned: {len(cohort)} samples × {matrix.shape[1]} features, "
             f"{int(cohort[status_col].sum())} events")


def survival_arrays(cohort: pd.DataFrame,
                    time_col: str = TIME_COL,
                    status_col: str = STATUS_COL) -> tuple[np.ndarray, np.ndarray]:
    """(times, statuses) as float arrays in cohort order."""
    return (cohort[time_col].to_numpy(dtype=float),
            cohort[status_col].to_numpy(dtype=float))
