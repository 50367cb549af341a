"""In-process document store and term catalog used for local runs and tests."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, Iterable, List, Mapping, Optional

from backend.app.contracts import DocumentLookup, FilterSet, GenericField, StoredDocument, Term
from backend.app.errors import DocumentNotFoundError
from backend.app.cancellation import CancellationToken, check_cancelled

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class MemoryDocument:
    """Mutable document record kept by :class:`InMemoryDocumentStore`."""

    id: str
    fields: Dict[str, GenericField] = field(default_factory=dict)
    year: Optional[int] = None

    def matches(self, filters: Optional[FilterSet]) -> bool:
        if filters is None or filters.is_empty:
            return True
        if filters.min_year is not None and (self.year is None or self.year < filters.min_year):
            return False
        if filters.max_year is not None and (self.year is None or self.year > filters.max_year):
            return False
        if filters.query:
            needle = filters.query.lower()
            haystack = (value.lower() for entry in self.fields.values() for value in entry.show)
            if not any(needle in value for value in haystack):
                return False
        return True


class InMemoryDocumentStore:
    """Thread-safe dictionary-backed document store."""

    def __init__(self, documents: Optional[Iterable[MemoryDocument]] = None) -> None:
        self._lock = Lock()
        self._documents: Dict[str, MemoryDocument] = {}
        for document in documents or []:
            self._documents[document.id] = document

    def add(
        self,
        document_id: str,
        fields: Mapping[str, GenericField],
        *,
        year: Optional[int] = None,
    ) -> None:
        """Insert or replace a document."""

        with self._lock:
            self._documents[document_id] = MemoryDocument(id=document_id, fields=dict(fields), year=year)

    def remove(self, document_id: str) -> None:
        with self._lock:
            self._documents.pop(document_id, None)

    def get(self, document_id: str, field_name: str) -> Optional[GenericField]:
        with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                return None
            return document.fields.get(field_name)

    def find_by_field_value(self, field: str, value: str, *, limit: int) -> DocumentLookup:
        with self._lock:
            matches = [
                StoredDocument(id=document.id, field_value=document.fields[field])
                for document in sorted(self._documents.values(), key=lambda item: item.id)
                if field in document.fields and value in document.fields[field].show
            ]
        return DocumentLookup(documents=matches[: max(limit, 0)], total=len(matches))

    def count_by_field_value(self, field: str, value: str) -> int:
        with self._lock:
            return sum(
                1
                for document in self._documents.values()
                if field in document.fields and value in document.fields[field].show
            )

    def get_field(self, document_id: str, field: str) -> Optional[GenericField]:
        with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)
            return document.fields.get(field)

    def update_field(self, document_id: str, field: str, value: GenericField) -> None:
        with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)
            document.fields[field] = value
        LOGGER.debug("Updated %s on document %s", field, document_id)

    def term_frequencies(self, field: str, filters: Optional[FilterSet] = None) -> Dict[str, int]:
        """Count documents per ``Show`` value of ``field``."""

        counts: Dict[str, int] = {}
        with self._lock:
            for document in self._documents.values():
                entry = document.fields.get(field)
                if entry is None or not document.matches(filters):
                    continue
                for key in set(entry.show):
                    counts[key] = counts.get(key, 0) + 1
        return counts


class InMemoryTermCatalog:
    """Term catalog aggregating ``Show`` values of an in-memory store."""

    def __init__(self, store: InMemoryDocumentStore, *, max_terms: int = 10000) -> None:
        self._store = store
        self._max_terms = max_terms

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
        counts = self._store.term_frequencies(field, filters)
        terms = [Term(key=key, frequency=count) for key, count in counts.items()]
        terms.sort(key=lambda term: (-term.frequency, term.key))
        return terms[:limit]
