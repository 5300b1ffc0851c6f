"""
Per-cluster survival re-test of a single feature.

Within every cluster the feature gets a raw Cox PH fit (no fallback cascade,
this is reporting rather than discovery) and a median-split log-rank test
computed exactly as in the association cascade's rank tier. Nothing is
aggregated across clusters here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Hashable, Optional

import numpy as np
import pandas as pd

from survstrat.association import (FIT_ERRORS, checked_p, cox_frame, fit_cox,
                                   median_split_logrank, usable_mask)
from survstrat.cohort import survival_arrays
from survstrat.config import MIN_USABLE_SAMPLES, STATUS_COL, TIME_COL
from survstrat.errors import (CONVERGENCE_WARNING, INSUFFICIENT_DATA,
                              NON_CONVERGENCE, ConfigurationError)

log = logging.getLogger(__name__)

OK      = "ok"
SKIPPED = "skipped"


@dataclass
class GroupEvaluation:
    label: int
    n: int
    events: int
    status: str
    cox: Optional[dict] = None
    cox_reason: Optional[str] = None
    logrank: Optional[dict] = None
    logrank_reason: Optional[str] = None


def cox_summary(values: np.ndarray, times: np.ndarray,
                statuses: np.ndarray) -> tuple[Optional[dict], Optional[str]]:
    """Unpenalised one-covariate Cox fit → (summary dict, reason)."""
    if np.ptp(values) == 0 or np.sum(statuses) == 0:
        return None, INSUFFICIENT_DATA
    try:
        cph, fit_warnings = fit_cox(cox_frame(values, times, statuses))
    except FIT_ERRORS as exc:
        log.debug(f"    Cox fit failed: {exc}")
        return None, NON_CONVERGENCE

    row = cph.summary.loc["value"]
    p = checked_p(row["p"])
    if p is None or not np.isfinite(row["coef"]):
        return None, NON_CONVERGENCE
    summary = {
        "coef":          float(row["coef"]),
        "hazard_ratio":  float(row["exp(coef)"]),
        "se":            float(row["se(coef)"]),
        "z":             float(row["z"]),
        "p":             p,
        "hr_lower_95":   float(row["exp(coef) lower 95%"]),
        "hr_upper_95":   float(row["exp(coef) upper 95%"]),
    }
    return summary, (CONVERGENCE_WARNING if fit_warnings else None)


def evaluate_stratified(feature: Hashable, matrix: pd.DataFrame,
                        cohort: pd.DataFrame, assignment: pd.Series, *,
                        min_group_samples: int = MIN_USABLE_SAMPLES,
                        time_col: str = TIME_COL,
                        status_col: str = STATUS_COL) -> dict[int, GroupEvaluation]:
    """
    Cox PH summary + dichotomised log-rank for `feature` inside each cluster
    of `assignment`. Groups smaller than `min_group_samples` are skipped and
    flagged, never fitted.
    """
    if feature not in matrix.columns:
        raise ConfigurationError(f"Feature {feature!r} not in expression matrix")
    if set(assignment.index) != set(cohort.index) or assignment.index.has_duplicates:
        raise ConfigurationError("Cluster assignment does not cover exactly the cohort samples")

    labels = assignment.reindex(cohort.index).to_numpy()
    values = matrix.loc[cohort.index, feature].to_numpy(dtype=float)
    times, statuses = survival_arrays(cohort, time_col, status_col)

    log.info(f"Stratified evaluation of {feature} across "
             f"{len(np.unique(labels))} clusters (min group size={min_group_samples})")
    results: dict[int, GroupEvaluation] = {}
    for label in sorted(np.unique(labels)):
        in_group = (labels == label) & usable_mask(values, times, statuses)
        v, t, s = values[in_group], times[in_group], statuses[in_group]
        n, events = int(in_group.sum()), int(s.sum())

        if n < min_group_samples:
            log.warning(f"  Cluster {label}: n={n} < {min_group_samples} — skipped")
            results[int(label)] = GroupEvaluation(
                int(label), n, events, SKIPPED,
                cox_reason=INSUFFICIENT_DATA, logrank_reason=INSUFFICIENT_DATA)
            continue

        cox, cox_reason = cox_summary(v, t, s)
        logrank, logrank_reason = median_split_logrank(v, t, s)
        results[int(label)] = GroupEvaluation(
            int(label), n, events, OK,
            cox=cox, cox_reason=cox_reason,
            logrank=logrank, logrank_reason=logrank_reason)

        cox_str = (f"HR={cox['hazard_ratio']:.3f} p={cox['p']:.3e}"
                   if cox else f"Cox {cox_reason}")
        lr_str = (f"log-rank p={logrank['p_value']:.3e}"
                  if logrank else f"log-rank {logrank_reason}")
        log.info(f"  Cluster {label}: n={n} events={events}  {cox_str}  {lr_str}")
    return results


def evaluation_table(evaluation: dict[int, GroupEvaluation]) -> pd.DataFrame:
    """One row per cluster, flat columns, for the reporting layer."""
    rows = []
    for label, ev in sorted(evaluation.items()):
        cox = ev.cox or {}
        lr  = ev.logrank or {}
        rows.append({
            "cluster":         label,
            "n":               ev.n,
            "events":          ev.events,
            "status":          ev.status,
            "cox_coef":        cox.get("coef", np.nan),
            "cox_hr":          cox.get("hazard_ratio", np.nan),
            "cox_hr_lower_95": cox.get("hr_lower_95", np.nan),
            "cox_hr_upper_95": cox.get("hr_upper_95", np.nan),
            "cox_p":           cox.get("p", np.nan),
            "cox_reason":      ev.cox_reason,
            "logrank_stat":    lr.get("test_statistic", np.nan),
            "logrank_p":       lr.get("p_value", np.nan),
            "n_high":          lr.get("n_high", np.nan),
            "n_low":           lr.get("n_low", np.nan),
            "logrank_reason":  ev.logrank_reason,
        })
    return pd.DataFrame(rows)
