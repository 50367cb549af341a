"""Canonical term selection for near-duplicate clusters."""
from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from backend.app.contracts import Cluster, Irregularity, Term
from backend.app.errors import ValidationError

from .similarity import SimilarityEngine


class TieBreakRule(str, Enum):
    """Rule ordering cluster members that share the highest frequency."""

    LEXICOGRAPHIC = "lexicographic"
    CASE_INSENSITIVE = "case_insensitive"
    LONGEST = "longest"


class ClusterOrder(str, Enum):
    """Presentation order for a list of clusters."""

    TOTAL_FREQUENCY = "total_frequency"
    SIZE = "size"
    CANONICAL = "canonical"


_MemberKey = Callable[[Term], Tuple]

_MEMBER_KEYS: Dict[TieBreakRule, _MemberKey] = {
    TieBreakRule.LEXICOGRAPHIC: lambda term: (-term.frequency, term.key),
    TieBreakRule.CASE_INSENSITIVE: lambda term: (-term.frequency, term.key.lower(), term.key),
    TieBreakRule.LONGEST: lambda term: (-term.frequency, -len(term.key), term.key),
}


def parse_tie_break(value: "TieBreakRule | str") -> TieBreakRule:
    """Coerce a configuration value into a :class:`TieBreakRule`."""

    try:
        return TieBreakRule(value)
    except ValueError as exc:
        allowed = ", ".join(rule.value for rule in TieBreakRule)
        msg = f"Unknown tie-break rule '{value}' (expected one of: {allowed})"
        raise ValidationError(msg) from exc


class CanonicalSelector:
    """Pick the most frequent member of each cluster as its canonical form."""

    def __init__(
        self,
        engine: Optional[SimilarityEngine] = None,
        *,
        tie_break: "TieBreakRule | str" = TieBreakRule.LEXICOGRAPHIC,
    ) -> None:
        self._engine = engine or SimilarityEngine()
        self._tie_break = parse_tie_break(tie_break)

    @property
    def tie_break(self) -> TieBreakRule:
        return self._tie_break

    def select(self, members: Iterable[Term]) -> Cluster:
        """Build a cluster with its canonical term and annotated irregulars.

        Args:
            members: Terms of one connected component; at least two.

        Returns:
            Cluster: Canonical term plus irregulars ordered like the members.

        Raises:
            ValueError: If fewer than two members are supplied.
        """

        ordered = sorted(members, key=_MEMBER_KEYS[self._tie_break])
        if len(ordered) < 2:
            msg = "a cluster needs at least two members"
            raise ValueError(msg)
        canonical = ordered[0]
        irregulars = [
            Irregularity(
                term=term,
                similarity=self._engine.similarity(canonical.key, term.key),
                is_alternative=term.frequency == canonical.frequency,
            )
            for term in ordered[1:]
        ]
        return Cluster(canonical=canonical, irregulars=irregulars)

    def select_all(self, terms: Sequence[Term], groups: Iterable[Sequence[int]]) -> List[Cluster]:
        """Convert index groups produced by the cluster finder into clusters."""

        return [self.select(terms[index] for index in group) for group in groups]


def sort_clusters(
    clusters: Iterable[Cluster],
    order: "ClusterOrder | str" = ClusterOrder.TOTAL_FREQUENCY,
) -> List[Cluster]:
    """Return clusters in a deterministic presentation order."""

    resolved = ClusterOrder(order)
    if resolved is ClusterOrder.TOTAL_FREQUENCY:
        key = lambda cluster: (-cluster.total_frequency, -cluster.size, cluster.canonical.key)
    elif resolved is ClusterOrder.SIZE:
        key = lambda cluster: (-cluster.size, -cluster.total_frequency, cluster.canonical.key)
    else:
        key = lambda cluster: (cluster.canonical.key.lower(), cluster.canonical.key)
    return sorted(clusters, key=key)
