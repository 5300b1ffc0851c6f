"""
clustering.py
-------------
k-means on the top-ranked features with the group count picked at the
elbow of the dispersion curve.

Pipeline
────────
  1.  Scan k = 1..max_groups: KMeans(n_init=restarts_scan), record inertia_
      (within-group sum of squares) → DispersionCurve
  2.  Elbow: perpendicular distance of each (k, dispersion) point to the
      chord joining the first and last points; largest distance wins,
      ties go to the smallest k
  3.  Final KMeans at the elbow k with restarts_final (> restarts_scan),
      same seed; labels relabelled 1..g by order of first appearance

Design decisions
────────────────
  - One seed drives every KMeans call. When none is given one is drawn,
    logged and returned, so a run can always be repeated.
  - A fit that raises sklearn's ConvergenceWarning is retried once with
    twice the restarts; the retry's inertia is recorded either way.
  - Non-finite cells are replaced by the feature median before clustering.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning

from survstrat.config import (CLUSTERING_RESTARTS_FINAL, CLUSTERING_RESTARTS_SCAN,
                              MAX_GROUPS, N_JOBS)
from survstrat.errors import ConfigurationError

log = logging.getLogger(__name__)


@dataclass
class ClusteringResult:
    assignment: pd.Series      # sample → label 1..g
    curve: pd.DataFrame        # k, dispersion, converged
    selected_k: int
    seed: int

    @property
    def n_groups(self) -> int:
        return int(self.assignment.nunique())


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

def resolve_seed(seed: Optional[int]) -> int:
    """Return seed unchanged, or draw a fresh one that fits KMeans' random_state."""
    if seed is not None:
        return int(seed)
    drawn = int(np.random.SeedSequence().entropy % (2 ** 32))
    log.info(f"No random seed supplied — drew seed={drawn}")
    return drawn


def impute_feature_median(data: np.ndarray) -> np.ndarray:
    """Replace non-finite cells by the column median; all-missing columns → 0."""
    data = np.array(data, dtype=float)
    bad = ~np.isfinite(data)
    if not bad.any():
        return data
    log.warning(f"  {int(bad.sum())} non-finite cells median-imputed before clustering")
    data[bad] = np.nan
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        med = np.nanmedian(data, axis=0)
    med = np.where(np.isfinite(med), med, 0.0)
    rows, cols = np.nonzero(bad)
    data[rows, cols] = med[cols]
    return data


def fit_kmeans(data: np.ndarray, k: int, n_init: int,
               seed: int) -> tuple[KMeans, bool]:
    """KMeans fit; returns (model, converged)."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConvergenceWarning)
        km = KMeans(n_clusters=k, n_init=n_init, random_state=seed)
        km.fit(data)
    converged = not any(issubclass(w.category, ConvergenceWarning) for w in caught)
    return km, converged


def _scan_one(data: np.ndarray, k: int, n_init: int, seed: int) -> tuple[float, bool]:
    km, converged = fit_kmeans(data, k, n_init, seed)
    if not converged:
        km, converged = fit_kmeans(data, k, 2 * n_init, seed)
    return float(km.inertia_), converged


def dense_labels(raw: np.ndarray) -> np.ndarray:
    """Relabel to 1..g, numbered by order of first appearance."""
    _, first_idx, inverse = np.unique(raw, return_index=True, return_inverse=True)
    order = np.argsort(first_idx)
    rank = np.empty_like(order)
    rank[order] = np.arange(len(order))
    return rank[np.ravel(inverse)] + 1


# ──────────────────────────────────────────────────────────────────────────────
# Dispersion curve + elbow
# ──────────────────────────────────────────────────────────────────────────────

def dispersion_curve(data: np.ndarray, max_groups: int = MAX_GROUPS, *,
                     n_init: int = CLUSTERING_RESTARTS_SCAN,
                     seed: int = 0,
                     n_jobs: int = N_JOBS) -> pd.DataFrame:
    """Total within-group dispersion for k = 1..max_groups."""
    ks = list(range(1, max_groups + 1))
    dispersion = np.full(len(ks), np.nan)
    converged = np.zeros(len(ks), dtype=bool)

    if n_jobs == 1:
        scanned = [_scan_one(data, k, n_init, seed) for k in ks]
    else:
        scanned = Parallel(n_jobs=n_jobs)(
            delayed(_scan_one)(data, k, n_init, seed) for k in ks
        )
    for i, (inertia, ok) in enumerate(scanned):
        dispersion[i] = inertia
        converged[i] = ok

    for k, d, ok in zip(ks, dispersion, converged):
        log.info(f"  k={k:2d}  dispersion={d:.4f}" + ("" if ok else "  (not converged)"))
    return pd.DataFrame({"k": ks, "dispersion": dispersion, "converged": converged})


def chord_distances(ks: np.ndarray, dispersion: np.ndarray) -> np.ndarray:
    """Perpendicular distance of each (k, dispersion) point to the end-point chord."""
    x1, y1 = ks[0], dispersion[0]
    x2, y2 = ks[-1], dispersion[-1]
    num = np.abs((y2 - y1) * ks - (x2 - x1) * dispersion + x2 * y1 - y2 * x1)
    return num / np.hypot(x2 - x1, y2 - y1)


def select_elbow(curve) -> int:
    """
    Elbow k of a dispersion curve (DataFrame with k/dispersion columns, or a
    sequence of (k, dispersion) pairs).
    """
    if isinstance(curve, pd.DataFrame):
        pts = curve[["k", "dispersion"]].to_numpy(dtype=float)
    else:
        pts = np.asarray(curve, dtype=float).reshape(-1, 2)
    if len(pts) < 2:
        raise ConfigurationError("Elbow selection needs at least two candidate k")
    pts = pts[np.argsort(pts[:, 0], kind="mergesort")]
    if not np.isfinite(pts).all():
        raise ConfigurationError("Dispersion curve contains non-finite values")

    dist = chord_distances(pts[:, 0], pts[:, 1])
    best = np.flatnonzero(np.isclose(dist, dist.max(), rtol=1e-9, atol=0.0))
    return int(pts[best[0], 0])


# ──────────────────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────────────────

def elbow_cluster(matrix: pd.DataFrame, max_groups: int = MAX_GROUPS, *,
                  restarts_scan: int = CLUSTERING_RESTARTS_SCAN,
                  restarts_final: int = CLUSTERING_RESTARTS_FINAL,
                  seed: Optional[int] = None,
                  n_jobs: int = N_JOBS) -> ClusteringResult:
    """
    Cluster samples (rows of matrix, restricted to the ranked features) at
    the elbow group count.
    """
    if max_groups < 2:
        raise ConfigurationError(
            f"max_groups must be >= 2 for elbow selection, got {max_groups}")
    if matrix.shape[1] == 0:
        raise ConfigurationError("No features to cluster on")
    if max_groups > matrix.shape[0]:
        raise ConfigurationError(
            f"max_groups={max_groups} exceeds the number of samples ({matrix.shape[0]})")
    if restarts_final <= restarts_scan:
        raise ConfigurationError("restarts_final must exceed restarts_scan")

    seed = resolve_seed(seed)
    data = impute_feature_median(matrix.to_numpy(dtype=float))
    log.info(f"Elbow scan: {data.shape[0]} samples × {data.shape[1]} features, "
             f"k=1..{max_groups}, restarts={restarts_scan}, seed={seed}")

    curve = dispersion_curve(data, max_groups, n_init=restarts_scan,
                             seed=seed, n_jobs=n_jobs)
    selected_k = select_elbow(curve)
    log.info(f"  Elbow at k={selected_k}")

    km, converged = fit_kmeans(data, selected_k, restarts_final, seed)
    if not converged:
        log.warning(f"  Final KMeans (k={selected_k}) reported a convergence warning")
    labels = dense_labels(km.labels_)
    assignment = pd.Series(labels, index=matrix.index, name="cluster")
    log.info("  Cluster sizes: "
             + str(assignment.value_counts().sort_index().to_dict()))
    return ClusteringResult(assignment=assignment, curve=curve,
                            selected_k=selected_k, seed=seed)
