"""
03_stratified_survival.py
-------------------------
Re-tests one gene's survival association inside each elbow cluster.

Pipeline
────────
  1.  Load aligned cohort + expression, Step 02 cluster assignments and the
      Step 01 top genes
  2.  Gene: --feature if given, else the top-ranked gene from Step 01
  3.  Per cluster: Cox PH on the gene + median-split (high/low) log-rank
  4.  Kaplan-Meier panel, one subplot per cluster, high vs low expression

Design decisions
────────────────
  - Clusters below the minimum group size are reported as skipped, not
    dropped from the table.
  - Per-cluster p-values are not combined; this is descriptive.

Outputs
───────
  results/tables/
    stratified_survival.tsv       one row per cluster
  results/figures/stratified/
    km_{gene}_by_cluster.pdf      KM high vs low expression per cluster

Run from project root:
  python scripts/03_stratified_survival.py [--feature ENSG00000141510.16]
"""

import sys
from math import ceil

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from lifelines import KaplanMeierFitter

from common import (ASSIGNMENTS_OUT, FIG_ROOT, TABLE_OUT, build_arg_parser,
                    config_from_args, load_inputs, read_top_features,
                    setup_logging)
from survstrat.association import median_split
from survstrat.errors import ConfigurationError
from survstrat.stratified import evaluate_stratified, evaluation_table

FIG_OUT = FIG_ROOT / "stratified"
KM_COLORS = {"high": "#D65F5F", "low": "#4878D0"}

log = setup_logging("03_stratified_survival")


def km_panel(cohort: pd.DataFrame, values: pd.Series, assignment: pd.Series,
             table: pd.DataFrame, gene: str, out_path) -> None:
    """KM curves (high vs low expression at the cluster median) per cluster."""
    labels = sorted(assignment.unique())
    ncols = min(3, len(labels))
    nrows = ceil(len(labels) / ncols)
    fig, axes = plt.subplots(nrows, ncols, figsize=(4.2 * ncols, 3.6 * nrows),
                             squeeze=False)
    p_by_cluster = table.set_index("cluster")["logrank_p"]

    for ax, label in zip(axes.flat, labels):
        members = assignment.index[assignment == label]
        sub = cohort.loc[members].assign(value=values.loc[members])
        sub = sub[np.isfinite(sub["value"])]
        high = median_split(sub["value"].to_numpy(dtype=float))
        for arm, mask in (("high", high), ("low", ~high)):
            if not mask.any():
                continue
            kmf = KaplanMeierFitter()
            kmf.fit(sub["time"][mask], event_observed=sub["status"][mask],
                    label=f"{arm} (n={int(mask.sum())})")
            kmf.plot_survival_function(ax=ax, ci_show=False, color=KM_COLORS[arm])
        p = p_by_cluster.get(label, np.nan)
        p_str = "p = N/A" if np.isnan(p) else (
            f"p = {p:.4f}" if p >= 0.0001 else "p < 0.0001")
        ax.set_title(f"Cluster {label} (n={len(members)})\nLog-rank {p_str}",
                     fontsize=10)
        ax.set_xlabel("Time (days)")
        ax.set_ylabel("Survival probability")
        ax.set_ylim(0, 1.05)
        ax.legend(loc="lower left", fontsize=7)
    for ax in list(axes.flat)[len(labels):]:
        ax.axis("off")

    fig.suptitle(f"{gene}: high vs low expression within clusters", fontsize=11)
    plt.tight_layout()
    fig.savefig(out_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    log.info(f"  KM panel saved → {out_path}")


if __name__ == "__main__":
    parser = build_arg_parser("Per-cluster survival re-test of one gene")
    parser.add_argument("--feature", type=str, default=None,
                        help="Gene to re-test (default: top-ranked from Step 01).")
    args = parser.parse_args()
    cfg = config_from_args(args, log)
    FIG_OUT.mkdir(parents=True, exist_ok=True)
    TABLE_OUT.mkdir(parents=True, exist_ok=True)

    log.info("╔══════════════════════════════════════════════════════════╗")
    log.info("║       STEP 3: STRATIFIED SURVIVAL WITHIN CLUSTERS       ║")
    log.info("╚══════════════════════════════════════════════════════════╝")

    if not ASSIGNMENTS_OUT.exists():
        log.error(f"{ASSIGNMENTS_OUT} not found — run 02_elbow_clustering.py first")
        sys.exit(1)

    log.info("")
    log.info("Loading data...")
    cohort, matrix = load_inputs(log)
    assignment = pd.read_parquet(ASSIGNMENTS_OUT)["cluster"]
    gene = args.feature or str(read_top_features(log).loc[0, "feature"])
    if gene not in matrix.columns:
        raise ConfigurationError(f"Gene {gene!r} not in expression matrix")
    log.info(f"  Gene: {gene}"
             + ("  (caller-supplied)" if args.feature else "  (top-ranked in Step 01)"))

    log.info("")
    log.info("=" * 60)
    log.info("PER-CLUSTER COX + LOG-RANK")
    log.info("=" * 60)
    evaluation = evaluate_stratified(gene, matrix, cohort, assignment,
                                     min_group_samples=cfg.group_threshold)
    table = evaluation_table(evaluation)
    table.insert(0, "feature", gene)

    out = TABLE_OUT / "stratified_survival.tsv"
    table.to_csv(out, sep="\t", index=False, float_format="%.6g")
    log.info(f"  Table saved → {out}")
    safe = "".join(c if c.isalnum() or c in "._-" else "_" for c in gene)
    km_panel(cohort, matrix[gene], assignment, table, gene,
             FIG_OUT / f"km_{safe}_by_cluster.pdf")

    n_skipped = int((table["status"] == "skipped").sum())
    log.info("")
    log.info(f"  Clusters evaluated: {len(table) - n_skipped}   skipped: {n_skipped}")
    log.info("✓ Done")
