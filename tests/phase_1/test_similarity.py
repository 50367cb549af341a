"""Tests for the edit-distance similarity engine."""
from __future__ import annotations

import pytest

from backend.app.normalization.similarity import (
    SimilarityEngine,
    distance,
    similarity,
    strip_diacritics,
)

WORDS = ["Acordão", "Acórdão", "ACORDÃO", "Despacho", "Decisão", "", "a"]


@pytest.mark.parametrize("word", WORDS)
def test_similarity_of_a_term_with_itself_is_one(word: str) -> None:
    assert similarity(word, word) == 1.0
    assert distance(word, word) == 0


def test_similarity_is_symmetric_and_bounded() -> None:
    for left in WORDS:
        for right in WORDS:
            score = similarity(left, right)
            assert 0.0 <= score <= 1.0
            assert score == similarity(right, left)


def test_distance_is_case_insensitive() -> None:
    assert distance("Acordão", "ACORDÃO") == 0
    assert similarity("Acordão", "acordão") == 1.0
    assert distance("Acordão", "Acórdão") == 1


def test_similarity_uses_longest_length() -> None:
    assert similarity("Acordão", "Acórdão") == pytest.approx(1 - 1 / 7)
    assert similarity("abc", "") == 0.0
    assert similarity("", "") == 1.0


def test_diacritic_folding_is_opt_in() -> None:
    folding = SimilarityEngine(fold_diacritics=True)
    assert folding.similarity("Acordão", "Acórdão") == 1.0
    assert SimilarityEngine().similarity("Acordão", "Acórdão") < 1.0
    assert strip_diacritics("Decisão Sumária") == "Decisao Sumaria"


@pytest.mark.parametrize(
    ("length", "threshold", "expected"),
    [(10, 0.9, 1), (7, 0.85, 1), (20, 0.85, 3), (5, 1.0, 0), (4, 0.0, 4)],
)
def test_max_length_gap(length: int, threshold: float, expected: int) -> None:
    assert SimilarityEngine.max_length_gap(length, threshold) == expected
