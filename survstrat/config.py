"""
Pipeline options.

Defaults live as module constants; `PipelineConfig` groups them for one run
and checks they are mutually consistent before anything is computed.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional

from survstrat.errors import ConfigurationError

# ──────────────────────────────────────────────────────────────────────────────
# Defaults
# ──────────────────────────────────────────────────────────────────────────────
TOP_K                     = 100
MAX_GROUPS                = 10     # k = 1..MAX_GROUPS scanned for the elbow
MIN_USABLE_SAMPLES        = 10
CLUSTERING_RESTARTS_SCAN  = 10
CLUSTERING_RESTARTS_FINAL = 50     # must exceed the scan restarts
COX_PENALIZER             = 0.1    # ridge strength for the corrected Cox tier
N_JOBS                    = 1

TIME_COL   = "time"
STATUS_COL = "status"


@dataclass
class PipelineConfig:
    top_k: int = TOP_K
    max_groups: int = MAX_GROUPS
    min_usable_samples: int = MIN_USABLE_SAMPLES
    min_group_samples: Optional[int] = None
    clustering_restarts_scan: int = CLUSTERING_RESTARTS_SCAN
    clustering_restarts_final: int = CLUSTERING_RESTARTS_FINAL
    random_seed: Optional[int] = None
    penalizer: float = COX_PENALIZER
    n_jobs: int = N_JOBS
    time_col: str = TIME_COL
    status_col: str = STATUS_COL

    @property
    def group_threshold(self) -> int:
        """Minimum group size for stratified evaluation."""
        if self.min_group_samples is None:
            return self.min_usable_samples
        return self.min_group_samples

    def validate(self) -> "PipelineConfig":
        if self.top_k < 1:
            raise ConfigurationError(f"top_k must be >= 1, got {self.top_k}")
        if self.max_groups < 2:
            raise ConfigurationError(
                f"max_groups must be >= 2 for elbow selection, got {self.max_groups}"
            )
        if self.min_usable_samples < 2:
            raise ConfigurationError(
                f"min_usable_samples must be >= 2, got {self.min_usable_samples}"
            )
        if self.min_group_samples is not None and self.min_group_samples < 2:
            raise ConfigurationError(
                f"min_group_samples must be >= 2, got {self.min_group_samples}"
            )
        if self.clustering_restarts_scan < 1:
            raise ConfigurationError("clustering_restarts_scan must be >= 1")
        if self.clustering_restarts_final <= self.clustering_restarts_scan:
            raise ConfigurationError(
                "clustering_restarts_final "
                f"({self.clustering_restarts_final}) must exceed "
                f"clustering_restarts_scan ({self.clustering_restarts_scan})"
            )
        if self.random_seed is not None and self.random_seed < 0:
            raise ConfigurationError(f"random_seed must be >= 0, got {self.random_seed}")
        if not self.penalizer > 0:
            raise ConfigurationError(f"penalizer must be > 0, got {self.penalizer}")
        if self.n_jobs == 0:
            raise ConfigurationError("n_jobs must be non-zero (joblib semantics)")
        if self.time_col == self.status_col:
            raise ConfigurationError("time_col and status_col must differ")
        return self

    def to_dict(self) -> dict:
        return asdict(self)
