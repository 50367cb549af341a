"""Edit-distance similarity between vocabulary terms."""
from __future__ import annotations

import math
import unicodedata
from dataclasses import dataclass

from rapidfuzz.distance import Levenshtein


def strip_diacritics(text: str) -> str:
    """Remove combining marks after canonical decomposition.

    Args:
        text: Input string, possibly accented.

    Returns:
        str: The string with diacritics removed (``"Acórdão"`` -> ``"Acordao"``).
    """

    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return unicodedata.normalize("NFC", stripped)


@dataclass(frozen=True, slots=True)
class SimilarityEngine:
    """Case-insensitive Levenshtein distance and normalized similarity.

    ``fold_diacritics`` additionally compares strings with their accents
    removed, so ``"Acórdão"`` and ``"Acordao"`` become identical.
    """

    fold_diacritics: bool = False

    def fold(self, text: str) -> str:
        """Return the comparison form of ``text``."""

        folded = text.lower()
        if self.fold_diacritics:
            folded = strip_diacritics(folded)
        return folded

    def distance(self, a: str, b: str) -> int:
        """Return the edit distance between the folded forms of ``a`` and ``b``."""

        return self.folded_distance(self.fold(a), self.fold(b))

    def similarity(self, a: str, b: str) -> float:
        """Return ``1 - distance / max(len)`` in ``[0, 1]``; ``1`` for two empty strings."""

        return self.folded_similarity(self.fold(a), self.fold(b))

    @staticmethod
    def folded_distance(a: str, b: str) -> int:
        """Edit distance on strings that are already folded."""

        return int(Levenshtein.distance(a, b))

    @classmethod
    def folded_similarity(cls, a: str, b: str) -> float:
        """Similarity on strings that are already folded."""

        longest = max(len(a), len(b))
        if longest == 0:
            return 1.0
        return 1.0 - cls.folded_distance(a, b) / longest

    @staticmethod
    def max_length_gap(length: int, threshold: float) -> int:
        """Return the largest length difference that can still reach ``threshold``.

        The edit distance between two strings is at least the difference of
        their lengths, so a pair whose longer side has ``length`` characters
        cannot score ``threshold`` once the gap exceeds
        ``floor((1 - threshold) * length)``.

        Args:
            length: Length of the longer folded string.
            threshold: Minimum similarity of interest.

        Returns:
            int: Maximum admissible length gap.
        """

        if threshold <= 0:
            return length
        # (1 - 0.9) * 10 evaluates to 0.9999999999999998.
        return max(0, math.floor((1.0 - threshold) * length + 1e-9))


_DEFAULT_ENGINE = SimilarityEngine()


def distance(a: str, b: str) -> int:
    """Case-insensitive Levenshtein distance using the default engine."""

    return _DEFAULT_ENGINE.distance(a, b)


def similarity(a: str, b: str) -> float:
    """Normalized similarity using the default engine."""

    return _DEFAULT_ENGINE.similarity(a, b)
