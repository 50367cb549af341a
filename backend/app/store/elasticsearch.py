"""Elasticsearch-backed term catalog and document store using the REST API."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError

from backend.app.config import StoreConfig
from backend.app.contracts import DocumentLookup, FilterSet, GenericField, StoredDocument, Term
from backend.app.errors import DocumentNotFoundError, StoreError
from backend.app.cancellation import CancellationToken, check_cancelled

LOGGER = logging.getLogger(__name__)

_KEYWORD_SUFFIX = ".keyword"


def create_elasticsearch_client(config: StoreConfig) -> httpx.Client:
    """Create an ``httpx.Client`` bound to the configured cluster.

    Args:
        config: Store settings with ``base_url`` and optional credentials.

    Returns:
        httpx.Client: Client with base URL, timeout and basic auth applied.
    """

    if not config.base_url:
        msg = "Elasticsearch base URL is not configured"
        raise StoreError(msg)
    auth: Optional[httpx.BasicAuth] = None
    if config.username:
        auth = httpx.BasicAuth(config.username, config.password or "")
    return httpx.Client(
        base_url=config.base_url,
        timeout=config.timeout_seconds,
        auth=auth,
        headers={"Content-Type": "application/json"},
    )


def build_filter_query(filters: Optional[FilterSet], year_field: str) -> Dict[str, Any]:
    """Translate a :class:`FilterSet` into an Elasticsearch query clause."""

    if filters is None or filters.is_empty:
        return {"match_all": {}}
    clauses: List[Dict[str, Any]] = []
    if filters.min_year is not None or filters.max_year is not None:
        bounds: Dict[str, Any] = {"format": "yyyy"}
        if filters.min_year is not None:
            bounds["gte"] = str(filters.min_year)
        if filters.max_year is not None:
            bounds["lte"] = str(filters.max_year)
        clauses.append({"range": {year_field: bounds}})
    if filters.query:
        clauses.append({"simple_query_string": {"query": filters.query}})
    return {"bool": {"filter": clauses}}


class _ElasticsearchBase:
    """Shared request plumbing for the Elasticsearch adapters."""

    def __init__(
        self,
        client: httpx.Client,
        *,
        index: str,
        field_mapping: Mapping[str, str],
    ) -> None:
        self._client = client
        self._index = index
        self._field_mapping = dict(field_mapping)

    def _store_path(self, field: str) -> str:
        try:
            return self._field_mapping[field]
        except KeyError as exc:
            msg = f"No store mapping configured for field '{field}'"
            raise StoreError(msg) from exc

    def _request(
        self, method: str, path: str, payload: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        url = f"/{quote(self._index, safe='.')}/{path}"
        try:
            if payload is None:
                response = self._client.request(method, url)
            else:
                response = self._client.request(method, url, json=dict(payload))
        except httpx.HTTPError as exc:
            LOGGER.error("Elasticsearch request failed", extra={"url": url, "error": str(exc)})
            raise StoreError(f"Elasticsearch request to {url} failed: {exc}") from exc
        if response.status_code == httpx.codes.NOT_FOUND:
            raise StoreError(f"Elasticsearch returned 404 for {url}", status_code=404)
        if response.status_code >= 400:
            detail = self._error_detail(response)
            LOGGER.error(
                "Elasticsearch returned an error",
                extra={"url": url, "status_code": response.status_code, "detail": detail},
            )
            raise StoreError(
                f"Elasticsearch returned {response.status_code} for {url}: {detail}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise StoreError(f"Elasticsearch returned a non-JSON payload for {url}") from exc
        if not isinstance(body, dict):
            raise StoreError(f"Elasticsearch returned an unexpected payload for {url}")
        return body

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:500]
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            return str(error.get("reason") or error.get("type") or error)
        if error:
            return str(error)
        return response.text[:500]


class ElasticsearchTermCatalog(_ElasticsearchBase):
    """Term catalog backed by a ``terms`` aggregation."""

    def __init__(
        self,
        client: httpx.Client,
        *,
        index: str,
        field_mapping: Mapping[str, str],
        max_terms: int = 10000,
        year_field: str = "Data",
    ) -> None:
        super().__init__(client, index=index, field_mapping=field_mapping)
        self._max_terms = max_terms
        self._year_field = year_field

    def fetch(
        self,
        field: str,
        filters: Optional[FilterSet] = None,
        *,
        size: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[Term]:
        check_cancelled(cancel_token)
        limit = min(size or self._max_terms, self._max_terms)
        payload = {
            "size": 0,
            "query": build_filter_query(filters, self._year_field),
            "aggs": {
                "unique_values": {
                    "terms": {
                        "field": f"{self._store_path(field)}{_KEYWORD_SUFFIX}",
                        "size": limit,
                    }
                }
            },
        }
        body = self._request("POST", "_search", payload)
        check_cancelled(cancel_token)
        buckets = body.get("aggregations", {}).get("unique_values", {}).get("buckets")
        if not isinstance(buckets, list):
            raise StoreError("Invalid aggregation result: missing terms buckets")
        terms: List[Term] = []
        for bucket in buckets:
            try:
                terms.append(Term(key=str(bucket["key"]), frequency=int(bucket["doc_count"])))
            except (KeyError, TypeError, ValueError, PydanticValidationError) as exc:
                raise StoreError(f"Invalid aggregation bucket: {bucket!r}") from exc
        LOGGER.info("Fetched %d terms for %s", len(terms), field)
        return terms


class ElasticsearchDocumentStore(_ElasticsearchBase):
    """Document store issuing ``term`` lookups and partial ``_update`` calls."""

    def __init__(
        self,
        client: httpx.Client,
        *,
        index: str,
        field_mapping: Mapping[str, str],
        refresh: bool = True,
    ) -> None:
        super().__init__(client, index=index, field_mapping=field_mapping)
        self._refresh = refresh

    def find_by_field_value(self, field: str, value: str, *, limit: int) -> DocumentLookup:
        payload = {
            "query": self._term_query(field, value),
            "size": limit,
            "track_total_hits": True,
            "_source": [field],
        }
        body = self._request("POST", "_search", payload)
        hits = body.get("hits")
        if not isinstance(hits, dict) or not isinstance(hits.get("hits"), list):
            raise StoreError("Invalid search result: missing hits")
        documents = [self._hit_to_document(hit, field) for hit in hits["hits"]]
        total = self._total_hits(hits.get("total"), len(documents))
        return DocumentLookup(documents=documents, total=total)

    def count_by_field_value(self, field: str, value: str) -> int:
        body = self._request("POST", "_count", {"query": self._term_query(field, value)})
        count = body.get("count")
        if not isinstance(count, int):
            raise StoreError("Invalid count result")
        return count

    def get_field(self, document_id: str, field: str) -> Optional[GenericField]:
        path = f"_doc/{quote(document_id, safe='')}?_source_includes={quote(field, safe='')}"
        try:
            body = self._request("GET", path)
        except StoreError as exc:
            if exc.status_code == 404:
                raise DocumentNotFoundError(document_id) from exc
            raise
        if body.get("found") is False:
            raise DocumentNotFoundError(document_id)
        source = body.get("_source", {})
        if not isinstance(source, dict):
            raise StoreError(f"Invalid document payload for {document_id}")
        raw_value = source.get(field)
        if raw_value is None:
            return None
        return self._parse_field(document_id, field, raw_value)

    def update_field(self, document_id: str, field: str, value: GenericField) -> None:
        path = f"_update/{quote(document_id, safe='')}"
        if self._refresh:
            path += "?refresh=true"
        try:
            self._request("POST", path, {"doc": {field: value.to_document()}})
        except StoreError as exc:
            if exc.status_code == 404:
                raise DocumentNotFoundError(document_id) from exc
            raise

    def _term_query(self, field: str, value: str) -> Dict[str, Any]:
        return {"term": {f"{self._store_path(field)}{_KEYWORD_SUFFIX}": value}}

    @staticmethod
    def _total_hits(raw_total: object, fallback: int) -> int:
        if isinstance(raw_total, dict):
            value = raw_total.get("value")
            if isinstance(value, int):
                return value
        if isinstance(raw_total, int):
            return raw_total
        return fallback

    @classmethod
    def _hit_to_document(cls, hit: Mapping[str, Any], field: str) -> StoredDocument:
        document_id = hit.get("_id")
        source = hit.get("_source")
        if not document_id or not isinstance(source, dict):
            raise StoreError(f"Invalid search hit: {hit!r}")
        value = cls._parse_field(str(document_id), field, source.get(field))
        return StoredDocument(id=str(document_id), field_value=value)

    @staticmethod
    def _parse_field(document_id: str, field: str, raw_value: object) -> GenericField:
        if not isinstance(raw_value, dict):
            raise StoreError(f"Document {document_id} has invalid field structure for {field}")
        try:
            return GenericField.model_validate(raw_value)
        except PydanticValidationError as exc:
            raise StoreError(f"Document {document_id} has invalid field structure for {field}") from exc
