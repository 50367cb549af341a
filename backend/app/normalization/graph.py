"""Similarity graph construction over a bounded term list."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from backend.app.cancellation import CancellationToken, check_cancelled
from backend.app.contracts import Term
from backend.app.errors import ValidationError

from .similarity import SimilarityEngine

LOGGER = logging.getLogger(__name__)


def term_sort_key(term: Term) -> Tuple[int, str]:
    """Ordering used to cap term lists: frequency descending, then key."""

    return (-term.frequency, term.key)


def select_terms(terms: Iterable[Term], cap: int) -> List[Term]:
    """Return the deterministic top ``cap`` terms.

    Terms sharing a key are merged by summing their frequencies before the
    cap is applied, so the selection does not depend on input order.

    Args:
        terms: Candidate terms as returned by the catalog.
        cap: Maximum number of terms to keep.

    Returns:
        List[Term]: At most ``cap`` terms ordered by frequency then key.

    Raises:
        ValidationError: If ``cap`` is not positive.
    """

    if cap < 1:
        msg = f"cap must be a positive integer, got {cap}"
        raise ValidationError(msg)
    merged: Dict[str, int] = {}
    for term in terms:
        merged[term.key] = merged.get(term.key, 0) + term.frequency
    ordered = sorted(
        (Term(key=key, frequency=frequency) for key, frequency in merged.items()),
        key=term_sort_key,
    )
    return ordered[:cap]


@dataclass(slots=True)
class SimilarityGraph:
    """Sparse undirected graph linking similar terms by index."""

    terms: Sequence[Term]
    adjacency: List[List[int]]
    scores: Dict[Tuple[int, int], float] = field(default_factory=dict)

    @property
    def edge_count(self) -> int:
        return len(self.scores)

    def neighbors(self, index: int) -> List[int]:
        return self.adjacency[index]

    def score(self, i: int, j: int) -> Optional[float]:
        """Return the similarity recorded for the edge ``(i, j)`` if present."""

        key = (i, j) if i < j else (j, i)
        return self.scores.get(key)


class GraphBuilder:
    """Link every pair of terms whose similarity reaches the threshold.

    Pairs are compared on their folded keys, but two terms are only linked
    when their raw keys differ, so case-only variants still surface as
    normalization candidates.
    """

    def __init__(
        self,
        engine: Optional[SimilarityEngine] = None,
        *,
        length_bucketing: bool = True,
    ) -> None:
        self._engine = engine or SimilarityEngine()
        self._length_bucketing = length_bucketing

    def build(
        self,
        terms: Sequence[Term],
        threshold: float,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SimilarityGraph:
        """Build the adjacency lists for ``terms``.

        Args:
            terms: Already capped term list; indices refer to this sequence.
            threshold: Minimum similarity for an edge, in ``[0, 1]``.
            cancel_token: Optional token checked once per outer row.

        Returns:
            SimilarityGraph: Adjacency lists plus per-edge scores.

        Raises:
            ValidationError: If ``threshold`` lies outside ``[0, 1]``.
            AnalysisCancelled: If ``cancel_token`` is cancelled mid-build.
        """

        if not 0.0 <= threshold <= 1.0:
            msg = f"threshold must lie within [0, 1], got {threshold}"
            raise ValidationError(msg)
        folded = [self._engine.fold(term.key) for term in terms]
        adjacency: List[List[int]] = [[] for _ in terms]
        graph = SimilarityGraph(terms=terms, adjacency=adjacency)
        if self._length_bucketing:
            pairs = self._bucketed_pairs(folded, threshold, cancel_token)
        else:
            pairs = self._all_pairs(len(folded), cancel_token)
        for i, j in pairs:
            if terms[i].key == terms[j].key:
                continue
            score = self._engine.folded_similarity(folded[i], folded[j])
            if score >= threshold:
                adjacency[i].append(j)
                adjacency[j].append(i)
                graph.scores[(i, j) if i < j else (j, i)] = score
        for neighbors in adjacency:
            neighbors.sort()
        LOGGER.debug(
            "Built similarity graph with %d terms and %d edges (threshold=%.2f)",
            len(terms),
            graph.edge_count,
            threshold,
        )
        return graph

    @staticmethod
    def _all_pairs(size: int, cancel_token: Optional[CancellationToken]) -> Iterable[Tuple[int, int]]:
        for i in range(size):
            check_cancelled(cancel_token)
            for j in range(i + 1, size):
                yield i, j

    def _bucketed_pairs(
        self,
        folded: Sequence[str],
        threshold: float,
        cancel_token: Optional[CancellationToken],
    ) -> Iterable[Tuple[int, int]]:
        buckets: Dict[int, List[int]] = {}
        for index, text in enumerate(folded):
            buckets.setdefault(len(text), []).append(index)
        lengths = sorted(buckets)
        for position, length in enumerate(lengths):
            members = buckets[length]
            for offset, i in enumerate(members):
                check_cancelled(cancel_token)
                for j in members[offset + 1 :]:
                    yield i, j
            for longer in lengths[position + 1 :]:
                if longer - length > self._engine.max_length_gap(longer, threshold):
                    break
                for i in members:
                    for j in buckets[longer]:
                        yield i, j
