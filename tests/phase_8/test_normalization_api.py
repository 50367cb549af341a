"""Tests for the normalization HTTP endpoints."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from backend.app.config import load_config
from backend.app.contracts import GenericField
from backend.app.errors import StoreError
from backend.app.main import create_app
from backend.app.normalization.service import NormalizationService
from backend.app.store.memory import InMemoryDocumentStore, InMemoryTermCatalog


def _value(*show: str) -> GenericField:
    return GenericField(Show=list(show), Index=list(show), Original=list(show))


class FlakyStore(InMemoryDocumentStore):
    """In-memory store whose writes fail for selected documents."""

    def __init__(self, failing: set[str]) -> None:
        super().__init__()
        self.failing = failing

    def update_field(self, document_id: str, field: str, value: GenericField) -> None:
        if document_id in self.failing:
            raise StoreError(f"Elasticsearch returned 503 for document {document_id}", status_code=503)
        super().update_field(document_id, field, value)


def _populate(store: InMemoryDocumentStore) -> InMemoryDocumentStore:
    for index in range(3):
        store.add(f"a{index}", {"Decisão": _value("Acordão")}, year=2010 + index)
    store.add("b0", {"Decisão": _value("Acórdão")}, year=2014)
    store.add("b1", {"Decisão": _value("Acórdão")}, year=2015)
    store.add("c0", {"Decisão": _value("Despacho")}, year=2016)
    return store


def _client_for(store: InMemoryDocumentStore, catalog=None) -> TestClient:
    config = load_config()
    service = NormalizationService(
        catalog=catalog or InMemoryTermCatalog(store),
        store=store,
        config=config,
    )
    return TestClient(create_app(config=config, service=service))


@pytest.fixture(name="store")
def fixture_store() -> InMemoryDocumentStore:
    return _populate(InMemoryDocumentStore())


@pytest.fixture(name="client")
def fixture_client(store: InMemoryDocumentStore):
    with _client_for(store) as client:
        yield client


def test_health_reports_store_backend(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["store_backend"] == "memory"


def test_fields_endpoint(client: TestClient) -> None:
    response = client.get("/api/normalization/fields")
    assert response.status_code == 200
    assert [item["key"] for item in response.json()] == ["Descritores", "Meio Processual", "Decisão"]


def test_clusters_endpoint_returns_variants(client: TestClient) -> None:
    response = client.get("/api/normalization/clusters", params={"field": "Decisão"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["threshold"] == 0.85
    assert payload["sequence"] == 1
    assert len(payload["clusters"]) == 1
    cluster = payload["clusters"][0]
    assert cluster["canonical"] == {"key": "Acordão", "frequency": 3}
    assert cluster["irregulars"][0]["term"] == {"key": "Acórdão", "frequency": 2}
    assert cluster["irregulars"][0]["similarity"] == pytest.approx(1 - 1 / 7)
    assert cluster["size"] == 2
    assert cluster["total_frequency"] == 5


@pytest.mark.parametrize(
    "params",
    [
        {"field": "Decisão", "threshold": 0.5},
        {"field": "Relator"},
        {"field": "Decisão", "minYear": 2020, "maxYear": 2010},
    ],
)
def test_clusters_endpoint_rejects_invalid_parameters(client: TestClient, params) -> None:
    response = client.get("/api/normalization/clusters", params=params)
    assert response.status_code == 400


def test_terms_and_rare_values(client: TestClient) -> None:
    terms = client.get("/api/normalization/terms", params={"field": "Decisão", "limit": 2})
    assert terms.status_code == 200
    assert [item["key"] for item in terms.json()] == ["Acordão", "Acórdão"]
    filtered = client.get("/api/normalization/terms", params={"field": "Decisão", "minYear": 2015})
    assert {item["key"] for item in filtered.json()} == {"Acórdão", "Despacho"}
    rare = client.get("/api/normalization/rare-values", params={"field": "Decisão"})
    assert rare.status_code == 200
    assert rare.json() == [{"key": "Despacho", "frequency": 1}]


def test_suggestion_endpoint(client: TestClient) -> None:
    response = client.get("/api/normalization/suggestion", params={"field": "Decisão", "value": "Despachu"})
    assert response.status_code == 200
    assert response.json() == {"value": "Despachu", "suggestion": "Despacho"}


def test_preview_counts_affected_documents(client: TestClient, store) -> None:
    response = client.post(
        "/api/normalization/preview",
        json={"field": "Decisão", "fromValue": "Acórdão", "toValue": "Acordão"},
    )
    assert response.status_code == 200
    assert response.json()["affected_count"] == 2
    assert store.get("b0", "Decisão").show == ["Acórdão"]


def test_apply_requires_confirmation(client: TestClient, store) -> None:
    response = client.post(
        "/api/normalization/apply",
        json={"field": "Decisão", "fromValue": "Acórdão", "toValue": "Acordão"},
    )
    assert response.status_code == 400
    assert store.get("b0", "Decisão").show == ["Acórdão"]


def test_apply_rejects_missing_parameters(client: TestClient) -> None:
    response = client.post("/api/normalization/apply", json={"field": "Decisão", "confirmed": True})
    assert response.status_code == 400
    assert "Missing required parameters" in response.json()["detail"]


def test_apply_rewrites_and_refreshes(client: TestClient, store) -> None:
    response = client.post(
        "/api/normalization/apply",
        json={
            "field": "Decisão",
            "fromValue": "Acórdão",
            "toValue": "Acordão",
            "confirmed": True,
            "filters": {"minYear": 2000},
        },
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["result"]["success"] is True
    assert payload["result"]["updated_count"] == 2
    assert payload["refreshed"]["clusters"] == []
    assert store.get("b1", "Decisão").show == ["Acordão"]
    assert store.get("b1", "Decisão").original == ["Acórdão"]


def test_partial_failure_returns_multi_status() -> None:
    store = _populate(FlakyStore({"b1"}))
    with _client_for(store) as client:
        response = client.post(
            "/api/normalization/apply",
            json={"field": "Decisão", "fromValue": "Acórdão", "toValue": "Acordão", "confirmed": True},
        )
    assert response.status_code == 207
    result = response.json()["result"]
    assert result["success"] is False
    assert result["updated_count"] == 1
    assert result["failed_ids"] == ["b1"]


def test_store_errors_map_to_bad_gateway(store) -> None:
    class BrokenCatalog:
        def fetch(self, field, filters=None, *, size=None, cancel_token=None):
            raise StoreError("Elasticsearch request to /jurisprudencia.12.0/_search failed: timed out")

    with _client_for(store, catalog=BrokenCatalog()) as client:
        response = client.get("/api/normalization/clusters", params={"field": "Decisão"})
    assert response.status_code == 502
    assert "timed out" in response.json()["detail"]


@pytest.mark.parametrize("extra", [{"cap": 999999}, {"threshold": 0.5}])
def test_apply_rejects_invalid_refresh_parameters_before_writing(client: TestClient, store, extra) -> None:
    payload = {"field": "Decisão", "fromValue": "Acórdão", "toValue": "Acordão", "confirmed": True}
    response = client.post("/api/normalization/apply", json={**payload, **extra})
    assert response.status_code == 400
    assert store.get("b0", "Decisão").show == ["Acórdão"]
    assert store.get("b1", "Decisão").show == ["Acórdão"]


def test_failed_refresh_still_reports_the_merge(store) -> None:
    class BrokenCatalog:
        def fetch(self, field, filters=None, *, size=None, cancel_token=None):
            raise StoreError("catalog down")

    with _client_for(store, catalog=BrokenCatalog()) as client:
        response = client.post(
            "/api/normalization/apply",
            json={"field": "Decisão", "fromValue": "Acórdão", "toValue": "Acordão", "confirmed": True},
        )
    assert response.status_code == 200
    payload = response.json()
    assert payload["result"]["success"] is True
    assert payload["result"]["updated_count"] == 2
    assert len(payload["result"]["per_document_results"]) == 2
    assert payload["refreshed"] is None
    assert payload["refresh_error"] == "catalog down"
    assert store.get("b1", "Decisão").show == ["Acordão"]


def test_analysis_sequences_are_tracked_per_client(client: TestClient) -> None:
    def sequence_for(client_id: str) -> int:
        response = client.get(
            "/api/normalization/clusters",
            params={"field": "Decisão"},
            headers={"X-Client-Id": client_id},
        )
        assert response.status_code == 200
        return response.json()["sequence"]

    assert sequence_for("operator-a") == 1
    assert sequence_for("operator-b") == 1
    assert sequence_for("operator-a") == 2
    scheduler = client.app.state.analysis_scheduler
    assert scheduler.current_sequence("operator-a") == 2
    assert scheduler.current_sequence("operator-b") == 1
    assert scheduler.current_sequence() == 0
