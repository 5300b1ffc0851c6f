"""
01_survival_screen.py
---------------------
Per-gene survival association screen over the aligned expression cohort.

Pipeline
────────
  1.  Load clinical (os_time, os_event) and RNA expression parquets,
      intersect patient IDs, drop patients lacking time or event
  2.  For every gene: Cox PH → penalised Cox → median-split log-rank,
      stopping at the first tier that fits cleanly
  3.  Rank genes by p-value (stable), keep the top-k

Design decisions
────────────────
  - Genes that could not be tested stay in the full table with method
    "unavailable" and the failure reason; only the top-k table drops them.
  - No multiple-testing correction; the p-values are for ranking.

Outputs
───────
  results/tables/
    feature_associations.tsv   one row per gene (p_value, method, n_used, reason)
    top_features.tsv           top-k genes used for clustering (Step 02)

Run from project root:
  python scripts/01_survival_screen.py [--top-k 100] [--n-jobs -1]
"""

from common import (ASSOCIATIONS_TSV, TABLE_OUT, TOP_FEATURES_TSV,
                    build_arg_parser, config_from_args, load_inputs,
                    setup_logging)
from survstrat.cohort import validate_inputs
from survstrat.ranking import rank_features, screen_features

log = setup_logging("01_survival_screen")


if __name__ == "__main__":
    args = build_arg_parser("Per-gene survival association screen").parse_args()
    cfg = config_from_args(args, log)
    TABLE_OUT.mkdir(parents=True, exist_ok=True)

    log.info("╔══════════════════════════════════════════════════════════╗")
    log.info("║          STEP 1: PER-GENE SURVIVAL ASSOCIATION          ║")
    log.info("╚══════════════════════════════════════════════════════════╝")
    log.info(f"top_k={cfg.top_k}  min_usable_samples={cfg.min_usable_samples}  "
             f"penalizer={cfg.penalizer}  n_jobs={cfg.n_jobs}")

    log.info("")
    log.info("Loading data...")
    cohort, matrix = load_inputs(log)
    validate_inputs(cohort, matrix)

    log.info("")
    log.info("=" * 60)
    log.info("ASSOCIATION SCREEN")
    log.info("=" * 60)
    associations = screen_features(
        matrix, cohort,
        min_usable_samples=cfg.min_usable_samples,
        penalizer=cfg.penalizer,
        n_jobs=cfg.n_jobs,
    )
    ranked = rank_features(associations, cfg.top_k)

    associations.to_csv(ASSOCIATIONS_TSV, sep="\t", index=False)
    log.info(f"  Full table saved → {ASSOCIATIONS_TSV}")
    ranked.to_csv(TOP_FEATURES_TSV, sep="\t", index=False)
    log.info(f"  Top-{len(ranked)} table saved → {TOP_FEATURES_TSV}")

    n_sig = int((ranked["p_value"] < 0.05).sum())
    log.info("")
    log.info(f"  {n_sig}/{len(ranked)} top genes with nominal p < 0.05")
    for row in ranked.head(10).itertuples():
        log.info(f"    {str(row.feature):<24s} p={row.p_value:.3e}  [{row.method}]")
    log.info(f"\n✓ Next: python scripts/02_elbow_clustering.py")
