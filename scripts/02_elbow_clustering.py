"""
02_elbow_clustering.py
----------------------
k-means stratification of patients on the top-ranked survival genes, with
the number of clusters chosen at the elbow of the dispersion curve.

Pipeline
────────
  1.  Load aligned cohort + expression and the top-k genes from Step 01
  2.  KMeans for k=1..max_groups (restarts_scan restarts each) →
      within-cluster sum of squares per k
  3.  Elbow = point furthest from the chord joining k=1 and k=max_groups
  4.  Final KMeans at the elbow k (restarts_final restarts, same seed)

Outputs
───────
  data/processed/
    cluster_assignments.parquet   patients × {cluster}
  results/tables/
    dispersion_curve.tsv          k, dispersion, converged
  results/figures/clustering/
    elbow_curve.pdf               dispersion vs k, chord and elbow marked

Run from project root:
  python scripts/02_elbow_clustering.py [--max-groups 10] [--random-seed 42]
"""

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from common import (ASSIGNMENTS_OUT, CURVE_TSV, FIG_ROOT, TABLE_OUT,
                    build_arg_parser, config_from_args, load_inputs,
                    read_top_features, setup_logging)
from survstrat.clustering import chord_distances, elbow_cluster

FIG_OUT = FIG_ROOT / "clustering"

log = setup_logging("02_elbow_clustering")


def elbow_plot(curve: pd.DataFrame, selected_k: int, out_path) -> None:
    """Dispersion vs k with the end-point chord and the chosen elbow."""
    ks = curve["k"].to_numpy(dtype=float)
    wk = curve["dispersion"].to_numpy(dtype=float)
    dist = chord_distances(ks, wk)

    fig, ax = plt.subplots(figsize=(5.5, 4))
    ax.plot(ks, wk, "o-", color="tab:blue", lw=1.5, ms=5, label="Within-cluster SS")
    ax.plot([ks[0], ks[-1]], [wk[0], wk[-1]], ls="--", color="grey", lw=1.0,
            label="Chord")
    i = int(np.flatnonzero(ks == selected_k)[0])
    ax.scatter([ks[i]], [wk[i]], s=90, color="tab:red", zorder=5,
               label=f"Elbow k={selected_k} (d={dist[i]:.2f})")
    ax.set_xlabel("Number of clusters (k)")
    ax.set_ylabel("Total within-cluster dispersion")
    ax.set_xticks(ks)
    ax.set_title("k-selection: elbow of the dispersion curve")
    ax.legend(loc="upper right", fontsize=8)
    plt.tight_layout()
    fig.savefig(out_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    log.info(f"  Elbow figure saved → {out_path}")


if __name__ == "__main__":
    args = build_arg_parser("Elbow k-means stratification").parse_args()
    cfg = config_from_args(args, log)
    FIG_OUT.mkdir(parents=True, exist_ok=True)
    TABLE_OUT.mkdir(parents=True, exist_ok=True)

    log.info("╔══════════════════════════════════════════════════════════╗")
    log.info("║        STEP 2: ELBOW K-MEANS ON TOP SURVIVAL GENES       ║")
    log.info("╚══════════════════════════════════════════════════════════╝")
    log.info(f"max_groups={cfg.max_groups}  restarts scan/final="
             f"{cfg.clustering_restarts_scan}/{cfg.clustering_restarts_final}  "
             f"seed={cfg.random_seed}")

    log.info("")
    log.info("Loading data...")
    cohort, matrix = load_inputs(log)
    top = read_top_features(log)
    genes = [g for g in top["feature"].astype(str) if g in matrix.columns]
    log.info(f"  Top genes from Step 01: {len(top)}  (present in matrix: {len(genes)})")

    log.info("")
    log.info("=" * 60)
    log.info("DISPERSION SCAN + ELBOW")
    log.info("=" * 60)
    result = elbow_cluster(
        matrix[genes],
        cfg.max_groups,
        restarts_scan=cfg.clustering_restarts_scan,
        restarts_final=cfg.clustering_restarts_final,
        seed=cfg.random_seed,
        n_jobs=cfg.n_jobs,
    )

    log.info("")
    log.info("=" * 60)
    log.info("SAVING OUTPUTS")
    log.info("=" * 60)
    assignments = result.assignment.to_frame()
    assignments.index.name = "patient_id"
    assignments.to_parquet(ASSIGNMENTS_OUT)
    log.info(f"  Cluster assignments saved → {ASSIGNMENTS_OUT}")
    result.curve.to_csv(CURVE_TSV, sep="\t", index=False, float_format="%.4f")
    log.info(f"  Dispersion curve saved → {CURVE_TSV}")
    elbow_plot(result.curve, result.selected_k, FIG_OUT / "elbow_curve.pdf")

    log.info("")
    log.info(f"  Selected k = {result.selected_k}   seed = {result.seed}")
    log.info(f"  Cluster sizes: "
             f"{result.assignment.value_counts().sort_index().to_dict()}")
    log.info(f"\n✓ Next: python scripts/03_stratified_survival.py")
