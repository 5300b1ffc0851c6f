"""
association.py
--------------
Per-feature survival association with an ordered fallback cascade.

Cascade
───────
  1.  primary-model    Cox PH (lifelines CoxPHFitter, unpenalised)
  2.  corrected-model  ridge-penalised Cox PH; shrinkage keeps the partial
                       likelihood bounded under (near-)separation
  3.  rank-test        median split (value > median = high) + log-rank,
                       p = 1 − CDF(chi², df=1)

Each tier is a plain function returning a TierOutcome: either a p-value or a
failure tag. The dispatcher walks the list and stops at the first success.
A tier is abandoned on a fitting warning or numerical error, never because
the association is weak.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Callable, Hashable, Optional, Sequence

import numpy as np
import pandas as pd
from lifelines import CoxPHFitter
from lifelines.exceptions import ConvergenceError, ConvergenceWarning
from lifelines.statistics import logrank_test
from scipy.stats import chi2

from survstrat.config import COX_PENALIZER, MIN_USABLE_SAMPLES
from survstrat.errors import EXHAUSTED_FALLBACK, INSUFFICIENT_DATA, NON_CONVERGENCE

log = logging.getLogger(__name__)

PRIMARY_MODEL   = "primary-model"
CORRECTED_MODEL = "corrected-model"
RANK_TEST       = "rank-test"
UNAVAILABLE     = "unavailable"
METHODS = (PRIMARY_MODEL, CORRECTED_MODEL, RANK_TEST, UNAVAILABLE)

# Numerical failures a Cox fit may raise; anything else is a bug and propagates.
FIT_ERRORS = (ConvergenceError, np.linalg.LinAlgError, ValueError,
              ZeroDivisionError, FloatingPointError, OverflowError)

# lifelines' pre-fit separation diagnostic; expected under separation, so not
# a failure for the penalised tier.
SEPARATION_DIAGNOSTIC = r"(?s).*high sample correlation with the duration column"


@dataclass(frozen=True)
class AssociationResult:
    feature: Optional[Hashable]
    p_value: Optional[float]
    method: str
    n_used: int = 0
    reason: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.p_value is not None


@dataclass(frozen=True)
class TierOutcome:
    p_value: Optional[float] = None
    failure: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def checked_p(p) -> Optional[float]:
    """Finite p-values clipped into [0, 1]; NaN/inf become None."""
    try:
        p = float(p)
    except (TypeError, ValueError):
        return None
    if not np.isfinite(p):
        return None
    return float(min(max(p, 0.0), 1.0))


# ──────────────────────────────────────────────────────────────────────────────
# Cox PH helpers
# ──────────────────────────────────────────────────────────────────────────────

def cox_frame(values: np.ndarray, times: np.ndarray,
              statuses: np.ndarray) -> pd.DataFrame:
    return pd.DataFrame({"value": values, "time": times,
                         "status": statuses.astype(int)})


def fit_cox(df: pd.DataFrame, penalizer: float = 0.0,
            ignore: Sequence[str] = ()) -> tuple[CoxPHFitter, list[str]]:
    """
    Fit a one-covariate Cox model on df[value, time, status].
    Returns (fitter, fitting-warning messages). Numerical errors propagate.
    """
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        for pattern in ignore:
            warnings.filterwarnings("ignore", message=pattern)
        cph = CoxPHFitter(penalizer=penalizer)
        cph.fit(df, duration_col="time", event_col="status")
    fit_warnings = [str(w.message).strip() for w in caught
                    if issubclass(w.category, (ConvergenceWarning, RuntimeWarning))]
    return cph, fit_warnings


def _cox_tier(values, times, statuses, penalizer: float,
              ignore: Sequence[str] = ()) -> TierOutcome:
    try:
        cph, fit_warnings = fit_cox(cox_frame(values, times, statuses),
                                    penalizer=penalizer, ignore=ignore)
    except FIT_ERRORS as exc:
        log.debug(f"Cox fit (penalizer={penalizer}) failed: {exc}")
        return TierOutcome(failure=NON_CONVERGENCE)
    if fit_warnings:
        log.debug(f"Cox fit (penalizer={penalizer}) warned: {fit_warnings[0][:120]}")
        return TierOutcome(failure=NON_CONVERGENCE)
    p = checked_p(cph.summary.loc["value", "p"])
    if p is None:
        return TierOutcome(failure=NON_CONVERGENCE)
    return TierOutcome(p_value=p)


def primary_cox(values, times, statuses, penalizer: float) -> TierOutcome:
    return _cox_tier(values, times, statuses, penalizer=0.0)


def corrected_cox(values, times, statuses, penalizer: float) -> TierOutcome:
    return _cox_tier(values, times, statuses, penalizer=penalizer,
                     ignore=(SEPARATION_DIAGNOSTIC,))


# ──────────────────────────────────────────────────────────────────────────────
# Median split + log-rank (shared with the stratified evaluator)
# ──────────────────────────────────────────────────────────────────────────────

def median_split(values: np.ndarray) -> np.ndarray:
    """Boolean mask: True = strictly above the median ("high")."""
    return values > np.median(values)


def median_split_logrank(values: np.ndarray, times: np.ndarray,
                         statuses: np.ndarray) -> tuple[Optional[dict], Optional[str]]:
    """
    Log-rank comparison of high vs low expression at the sample median.
    Returns (result, None) or (None, failure tag). A degenerate split (one
    arm empty, e.g. a constant feature) or no events at all is reported as
    insufficient data instead of a p-value.
    """
    values   = np.asarray(values, dtype=float)
    times    = np.asarray(times, dtype=float)
    statuses = np.asarray(statuses, dtype=float)

    high   = median_split(values)
    n_high = int(high.sum())
    n_low  = int((~high).sum())
    if n_high == 0 or n_low == 0 or statuses.sum() == 0:
        return None, INSUFFICIENT_DATA

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        res = logrank_test(times[high], times[~high],
                           event_observed_A=statuses[high],
                           event_observed_B=statuses[~high])
    stat = float(res.test_statistic)
    if not np.isfinite(stat):
        return None, NON_CONVERGENCE
    p = checked_p(chi2.sf(stat, df=1))
    if p is None:
        return None, NON_CONVERGENCE
    return {
        "test_statistic": stat,
        "p_value": p,
        "n_high": n_high,
        "n_low": n_low,
    }, None


def rank_tier(values, times, statuses, penalizer: float) -> TierOutcome:
    result, failure = median_split_logrank(values, times, statuses)
    if result is None:
        return TierOutcome(failure=failure)
    return TierOutcome(p_value=result["p_value"])


STRATEGIES: list[tuple[str, Callable[..., TierOutcome]]] = [
    (PRIMARY_MODEL,   primary_cox),
    (CORRECTED_MODEL, corrected_cox),
    (RANK_TEST,       rank_tier),
]


# ──────────────────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────────────────

def usable_mask(values, times, statuses) -> np.ndarray:
    return np.isfinite(values) & np.isfinite(times) & np.isfinite(statuses)


def test_association(values, times, statuses, *,
                     feature: Optional[Hashable] = None,
                     min_usable_samples: int = MIN_USABLE_SAMPLES,
                     penalizer: float = COX_PENALIZER) -> AssociationResult:
    """
    Survival association p-value for one feature.

    values, times, statuses are index-aligned sequences (position i = same
    sample). Non-finite positions are dropped; with fewer than
    `min_usable_samples` left no model is fitted and the result is
    (None, "unavailable").
    """
    values   = np.asarray(values, dtype=float)
    times    = np.asarray(times, dtype=float)
    statuses = np.asarray(statuses, dtype=float)
    if not (values.shape == times.shape == statuses.shape):
        raise ValueError("values, times and statuses must have equal length")

    mask = usable_mask(values, times, statuses)
    n_used = int(mask.sum())
    if n_used < min_usable_samples:
        return AssociationResult(feature, None, UNAVAILABLE, n_used, INSUFFICIENT_DATA)

    values, times, statuses = values[mask], times[mask], statuses[mask]
    if statuses.sum() == 0:
        return AssociationResult(feature, None, UNAVAILABLE, n_used, INSUFFICIENT_DATA)

    failure = None
    for method, strategy in STRATEGIES:
        outcome = strategy(values, times, statuses, penalizer)
        if outcome.ok:
            return AssociationResult(feature, outcome.p_value, method, n_used)
        failure = outcome.failure
        log.debug(f"{feature}: {method} → {failure}")

    reason = INSUFFICIENT_DATA if failure == INSUFFICIENT_DATA else EXHAUSTED_FALLBACK
    return AssociationResult(feature, None, UNAVAILABLE, n_used, reason)


# keep pytest from collecting the entry point when imported into test modules
test_association.__test__ = False
