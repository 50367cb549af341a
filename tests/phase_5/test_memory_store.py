"""Tests for the in-memory document store and term catalog."""
from __future__ import annotations

import pytest

from backend.app.cancellation import CancellationToken
from backend.app.contracts import FilterSet, GenericField, Term
from backend.app.errors import AnalysisCancelled, DocumentNotFoundError
from backend.app.store.memory import InMemoryDocumentStore, InMemoryTermCatalog


def _value(*show: str) -> GenericField:
    return GenericField(Show=list(show), Index=list(show), Original=list(show))


@pytest.fixture(name="store")
def fixture_store() -> InMemoryDocumentStore:
    store = InMemoryDocumentStore()
    store.add("a", {"Decisão": _value("Acordão", "Acordão")}, year=2001)
    store.add("b", {"Decisão": _value("Acordão"), "Descritores": _value("Usucapião")}, year=2010)
    store.add("c", {"Decisão": _value("Despacho")}, year=2020)
    store.add("d", {"Descritores": _value("Posse")})
    return store


def test_catalog_counts_documents_per_value(store: InMemoryDocumentStore) -> None:
    catalog = InMemoryTermCatalog(store)
    assert catalog.fetch("Decisão") == [
        Term(key="Acordão", frequency=2),
        Term(key="Despacho", frequency=1),
    ]
    assert catalog.fetch("Relator") == []


def test_catalog_applies_filters_and_size(store: InMemoryDocumentStore) -> None:
    catalog = InMemoryTermCatalog(store, max_terms=1)
    assert catalog.fetch("Decisão") == [Term(key="Acordão", frequency=2)]
    recent = InMemoryTermCatalog(store).fetch("Decisão", FilterSet(min_year=2005, max_year=2015))
    assert recent == [Term(key="Acordão", frequency=1)]
    searched = InMemoryTermCatalog(store).fetch("Decisão", FilterSet(query="usucap"))
    assert searched == [Term(key="Acordão", frequency=1)]


def test_catalog_honours_cancellation(store: InMemoryDocumentStore) -> None:
    token = CancellationToken()
    token.cancel("superseded")
    with pytest.raises(AnalysisCancelled, match="superseded"):
        InMemoryTermCatalog(store).fetch("Decisão", cancel_token=token)


def test_lookup_is_exact_and_bounded(store: InMemoryDocumentStore) -> None:
    lookup = store.find_by_field_value("Decisão", "Acordão", limit=1)
    assert [document.id for document in lookup.documents] == ["a"]
    assert lookup.total == 2
    assert lookup.truncated
    assert store.find_by_field_value("Decisão", "acordão", limit=10).total == 0
    assert store.count_by_field_value("Decisão", "Acordão") == 2


def test_update_missing_document_raises(store: InMemoryDocumentStore) -> None:
    store.remove("c")
    with pytest.raises(DocumentNotFoundError):
        store.update_field("c", "Decisão", _value("Despacho"))
    store.update_field("d", "Descritores", _value("Posse Velha"))
    assert store.get("d", "Descritores").show == ["Posse Velha"]
    assert store.get("missing", "Descritores") is None


def test_get_field_reads_current_value(store: InMemoryDocumentStore) -> None:
    assert store.get_field("c", "Decisão").show == ["Despacho"]
    assert store.get_field("d", "Decisão") is None
    with pytest.raises(DocumentNotFoundError):
        store.get_field("missing", "Decisão")
