"""
Error taxonomy.

Only structural misconfiguration is raised. Per-feature and per-group
problems are recorded in the results as one of the failure tags below, so a
consumer can tell "not significant" apart from "could not be computed".
"""

INSUFFICIENT_DATA  = "insufficient-data"
NON_CONVERGENCE    = "non-convergence"
EXHAUSTED_FALLBACK = "exhausted-fallback"

# Fit finished but lifelines warned; the summary is still reported.
CONVERGENCE_WARNING = "convergence-warning"


class ConfigurationError(ValueError):
    """Misaligned inputs or contradictory options. Aborts the whole run."""
