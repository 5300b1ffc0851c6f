"""
survstrat — survival-association screening of expression features, elbow
k-means stratification on the top hits, and per-cluster re-testing.
"""

from survstrat.association import AssociationResult, test_association
from survstrat.clustering import ClusteringResult, elbow_cluster, select_elbow
from survstrat.config import PipelineConfig
from survstrat.errors import ConfigurationError
from survstrat.pipeline import PipelineResult, run_pipeline
from survstrat.ranking import rank_features, screen_features
from survstrat.stratified import GroupEvaluation, evaluate_stratified, evaluation_table

__version__ = "0.1.0"
