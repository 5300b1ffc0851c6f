"""
Shared plumbing for the numbered driver scripts: paths, logging, CLI
options, and the input loader that aligns clinical and expression tables
before anything reaches the survstrat core.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

import numpy as np
import pandas as pd

from survstrat.config import (CLUSTERING_RESTARTS_FINAL, CLUSTERING_RESTARTS_SCAN,
                              COX_PENALIZER, MAX_GROUPS, MIN_USABLE_SAMPLES,
                              N_JOBS, TOP_K, PipelineConfig)

ROOT      = Path(__file__).resolve().parents[1]
PROCESSED = ROOT / "data" / "processed"
TABLE_OUT = ROOT / "results" / "tables"
FIG_ROOT  = ROOT / "results" / "figures"
LOG_DIR   = ROOT / "logs"

CLINICAL_PARQUET   = PROCESSED / "clinical_preprocessed.parquet"
EXPRESSION_PARQUET = PROCESSED / "rna_preprocessed.parquet"   # genes × patients
ASSOCIATIONS_TSV   = TABLE_OUT / "feature_associations.tsv"
TOP_FEATURES_TSV   = TABLE_OUT / "top_features.tsv"
ASSIGNMENTS_OUT    = PROCESSED / "cluster_assignments.parquet"
CURVE_TSV          = TABLE_OUT / "dispersion_curve.tsv"

# Clinical column names as written by preprocessing
CLIN_TIME_COL  = "os_time"
CLIN_EVENT_COL = "os_event"


def setup_logging(step: str) -> logging.Logger:
    LOG_DIR.mkdir(exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(LOG_DIR / f"{step}.log"),
            logging.StreamHandler(sys.stdout),
        ],
    )
    return logging.getLogger(step)


def build_arg_parser(description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("--top-k", type=int, default=TOP_K)
    parser.add_argument("--max-groups", type=int, default=MAX_GROUPS)
    parser.add_argument("--min-usable-samples", type=int, default=MIN_USABLE_SAMPLES)
    parser.add_argument("--min-group-samples", type=int, default=None)
    parser.add_argument("--restarts-scan", type=int, default=CLUSTERING_RESTARTS_SCAN)
    parser.add_argument("--restarts-final", type=int, default=CLUSTERING_RESTARTS_FINAL)
    parser.add_argument("--random-seed", type=int, default=None)
    parser.add_argument("--penalizer", type=float, default=COX_PENALIZER)
    parser.add_argument("--n-jobs", type=int, default=N_JOBS)
    return parser


def config_from_args(args: argparse.Namespace,
                     log: logging.Logger) -> PipelineConfig:
    seed = args.random_seed
    env_seed = os.getenv("RANDOM_SEED")
    if seed is None and env_seed:
        try:
            seed = int(env_seed)
        except ValueError:
            log.error(f"RANDOM_SEED={env_seed!r} is not an integer")
            sys.exit(1)
    return PipelineConfig(
        top_k=args.top_k,
        max_groups=args.max_groups,
        min_usable_samples=args.min_usable_samples,
        min_group_samples=args.min_group_samples,
        clustering_restarts_scan=args.restarts_scan,
        clustering_restarts_final=args.restarts_final,
        random_seed=seed,
        penalizer=args.penalizer,
        n_jobs=args.n_jobs,
    ).validate()


def load_inputs(log: logging.Logger) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Load clinical + expression parquets and return (cohort, matrix):
    cohort indexed by patient with time/status, matrix patients × genes,
    both restricted to the shared patients in the same order.
    """
    for path in (CLINICAL_PARQUET, EXPRESSION_PARQUET):
        if not path.exists():
            log.error(f"{path} not found — run preprocessing first")
            sys.exit(1)

    clin = pd.read_parquet(CLINICAL_PARQUET)
    expr = pd.read_parquet(EXPRESSION_PARQUET).T    # → patients × genes
    log.info(f"  Clinical: {clin.shape}   Expression (patients × genes): {expr.shape}")

    surv = clin[[CLIN_TIME_COL, CLIN_EVENT_COL]].apply(pd.to_numeric, errors="coerce")
    surv = surv[np.isfinite(surv).all(axis=1)]
    n_dropped = len(clin) - len(surv)
    if n_dropped:
        log.info(f"  Dropped {n_dropped} patients with missing time/event")

    common = surv.index.intersection(expr.index)
    cohort = pd.DataFrame({
        "time":   surv.loc[common, CLIN_TIME_COL].astype(float),
        "status": surv.loc[common, CLIN_EVENT_COL].astype(int),
    })
    matrix = expr.loc[common].astype(float)
    log.info(f"  Aligned cohort: {len(common)} patients, "
             f"{int(cohort['status'].sum())} events, {matrix.shape[1]:,} genes")
    return cohort, matrix


def read_top_features(log: logging.Logger, path: Path = TOP_FEATURES_TSV) -> pd.DataFrame:
    """Ranked table written by Step 01; exits if it is missing or empty."""
    if not path.exists():
        log.error(f"{path} not found — run 01_survival_screen.py first")
        sys.exit(1)
    top = pd.read_csv(path, sep="\t")
    if top.empty:
        log.error(f"{path} lists no features — rerun 01_survival_screen.py")
        sys.exit(1)
    return top
