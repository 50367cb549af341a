"""Nearest-term suggestion for values typed into the document editor."""
from __future__ import annotations

from typing import Iterable, Optional

from .similarity import SimilarityEngine

_FOLDING_ENGINE = SimilarityEngine(fold_diacritics=True)


def suggest_similar(
    value: str,
    suggestions: Iterable[str],
    *,
    min_similarity: float = 0.85,
) -> Optional[str]:
    """Return the known term closest to ``value`` when it looks like a variant.

    Comparison ignores case and diacritics. Suggestions that already contain
    the typed value are skipped, as are exact matches, since the operator is
    then picking an existing term rather than mistyping one. Ties keep the
    first suggestion seen.

    Args:
        value: Raw value typed by the operator.
        suggestions: Known vocabulary for the field.
        min_similarity: Minimum similarity for a suggestion to be offered.

    Returns:
        Optional[str]: The closest suggestion, or ``None``.
    """

    folded_value = _FOLDING_ENGINE.fold(value.strip())
    if not folded_value:
        return None
    best: Optional[str] = None
    best_distance: Optional[int] = None
    for suggestion in suggestions:
        folded_suggestion = _FOLDING_ENGINE.fold(suggestion)
        if folded_value in folded_suggestion:
            continue
        current = _FOLDING_ENGINE.folded_distance(folded_value, folded_suggestion)
        if best_distance is None or current < best_distance:
            best, best_distance = suggestion, current
    if best is None or best_distance is None or best_distance == 0:
        return None
    score = _FOLDING_ENGINE.folded_similarity(folded_value, _FOLDING_ENGINE.fold(best))
    return best if score >= min_similarity else None
