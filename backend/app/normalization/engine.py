"""Clustering engine composing graph construction, components and canonical selection."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

from backend.app.cancellation import CancellationToken, check_cancelled
from backend.app.config import NormalizationConfig
from backend.app.contracts import Cluster, Term
from backend.app.errors import ValidationError

from .canonical import CanonicalSelector, TieBreakRule, parse_tie_break
from .clustering import ClusterFinder
from .graph import GraphBuilder, select_terms
from .similarity import SimilarityEngine

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Defaults for a clustering run; per-call arguments override them."""

    cap: int = 3000
    threshold: float = 0.85
    tie_break: TieBreakRule = TieBreakRule.LEXICOGRAPHIC
    fold_diacritics: bool = False
    length_bucketing: bool = True

    def __post_init__(self) -> None:
        if self.cap < 1:
            msg = f"cap must be a positive integer, got {self.cap}"
            raise ValidationError(msg)
        if not 0.0 <= self.threshold <= 1.0:
            msg = f"threshold must lie within [0, 1], got {self.threshold}"
            raise ValidationError(msg)
        object.__setattr__(self, "tie_break", parse_tie_break(self.tie_break))

    @classmethod
    def from_settings(cls, settings: NormalizationConfig) -> "EngineConfig":
        """Build engine defaults from the ``normalization`` config section."""

        return cls(
            cap=settings.default_cap,
            threshold=settings.default_threshold,
            tie_break=parse_tie_break(settings.tie_break),
            fold_diacritics=settings.fold_diacritics,
            length_bucketing=settings.length_bucketing,
        )

    def with_overrides(self, *, cap: Optional[int] = None, threshold: Optional[float] = None) -> "EngineConfig":
        updates = {}
        if cap is not None:
            updates["cap"] = cap
        if threshold is not None:
            updates["threshold"] = threshold
        return replace(self, **updates) if updates else self


@dataclass(frozen=True)
class ClusteringOutcome:
    """Terms that survived the cap and the clusters found among them."""

    terms: Sequence[Term]
    clusters: List[Cluster]
    edge_count: int


class ClusteringEngine:
    """Single clustering implementation shared by every caller."""

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self._config = config or EngineConfig()
        self._similarity = SimilarityEngine(fold_diacritics=self._config.fold_diacritics)
        self._graph_builder = GraphBuilder(
            self._similarity, length_bucketing=self._config.length_bucketing
        )
        self._finder = ClusterFinder()
        self._selector = CanonicalSelector(self._similarity, tie_break=self._config.tie_break)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def similarity(self) -> SimilarityEngine:
        return self._similarity

    def run(
        self,
        terms: Sequence[Term],
        *,
        threshold: Optional[float] = None,
        cap: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ClusteringOutcome:
        """Cap ``terms``, link similar pairs and return the duplicate clusters.

        Args:
            terms: Candidate terms, in any order.
            threshold: Similarity threshold; defaults to the engine config.
            cap: Maximum number of terms compared; defaults to the engine config.
            cancel_token: Optional token checked between phases and rows.

        Returns:
            ClusteringOutcome: Selected terms and their non-singleton clusters.
        """

        settings = self._config.with_overrides(cap=cap, threshold=threshold)
        selected = select_terms(terms, settings.cap)
        graph = self._graph_builder.build(selected, settings.threshold, cancel_token=cancel_token)
        groups = self._finder.find(graph, cancel_token=cancel_token)
        check_cancelled(cancel_token)
        clusters = self._selector.select_all(selected, groups)
        LOGGER.info(
            "Clustered %d of %d terms into %d clusters (threshold=%.2f, cap=%d)",
            len(selected),
            len(terms),
            len(clusters),
            settings.threshold,
            settings.cap,
        )
        return ClusteringOutcome(terms=selected, clusters=clusters, edge_count=graph.edge_count)
