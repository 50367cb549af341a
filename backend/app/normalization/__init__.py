"""Near-duplicate detection and bulk normalization of jurisprudence terms."""

from .canonical import CanonicalSelector, ClusterOrder, TieBreakRule, sort_clusters
from .clustering import ClusterFinder
from .engine import ClusteringEngine, ClusteringOutcome, EngineConfig
from .executor import NormalizationExecutor, validate_request
from .graph import GraphBuilder, SimilarityGraph, select_terms
from .scheduler import DEFAULT_SESSION, AnalysisScheduler, AnalysisTicket, ScheduledAnalysis
from .service import MergeOutcome, NormalizationService, build_default_service
from .similarity import SimilarityEngine, distance, similarity, strip_diacritics
from .suggestions import suggest_similar

__all__ = [
    "DEFAULT_SESSION",
    "AnalysisScheduler",
    "AnalysisTicket",
    "CanonicalSelector",
    "ClusterFinder",
    "ClusterOrder",
    "ClusteringEngine",
    "ClusteringOutcome",
    "EngineConfig",
    "GraphBuilder",
    "MergeOutcome",
    "NormalizationExecutor",
    "NormalizationService",
    "ScheduledAnalysis",
    "SimilarityEngine",
    "SimilarityGraph",
    "TieBreakRule",
    "build_default_service",
    "distance",
    "select_terms",
    "similarity",
    "sort_clusters",
    "strip_diacritics",
    "suggest_similar",
    "validate_request",
]
