import numpy as np
import pandas as pd
import pytest


def make_cohort(n=60, n_noise=5, seed=0, effect=1.5, censor_frac=0.2):
    """
    Synthetic cohort: feature "signal" drives the hazard, "noise_*" do not.
    Returns (cohort, matrix) aligned on the same sample IDs.
    """
    rng = np.random.default_rng(seed)
    ids = [f"S{i:03d}" for i in range(n)]
    signal = rng.normal(size=n)
    times = 100.0 * rng.exponential(scale=np.exp(-effect * signal))
    status = (rng.random(n) > censor_frac).astype(int)
    cohort = pd.DataFrame({"time": times, "status": status}, index=ids)

    cols = {"signal": signal}
    for j in range(n_noise):
        cols[f"noise_{j}"] = rng.normal(size=n)
    matrix = pd.DataFrame(cols, index=ids)
    return cohort, matrix


def make_blobs(n_per=10, centers=((0, 0), (10, 0), (0, 10)), sd=0.5, seed=0):
    """Well-separated 2-D groups as a samples × features frame."""
    rng = np.random.default_rng(seed)
    pts = np.vstack([rng.normal(loc=c, scale=sd, size=(n_per, 2)) for c in centers])
    ids = [f"P{i:03d}" for i in range(len(pts))]
    return pd.DataFrame(pts, index=ids, columns=["g1", "g2"])


@pytest.fixture
def strong_twelve():
    """
    12 uncensored samples; expression falls as survival time rises, with a
    handful of local swaps so the ordering is strong but not perfect.
    """
    times = np.arange(1, 13, dtype=float)
    values = np.array([5.0, 3.2, 4.1, 2.5, 3.0, 1.2, 2.2, 0.4, 1.5, -0.3, 0.8, -1.0])
    statuses = np.ones(12)
    return values, times, statuses


@pytest.fixture
def cohort_and_matrix():
    return make_cohort()


@pytest.fixture
def blobs():
    return make_blobs()
