"""Interfaces of the term catalog and document store collaborators."""
from __future__ import annotations

from typing import List, Optional

from typing_extensions import Protocol

from backend.app.contracts import DocumentLookup, FilterSet, GenericField, Term
from backend.app.cancellation import CancellationToken


class TermCatalogProtocol(Protocol):
    """Source of ranked term frequencies for a metadata field."""

    def fetch(
        self,
        field: str,
        filters: Optional[FilterSet] = None,
        *,
        size: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[Term]:
        """Return terms for ``field`` ordered by descending frequency."""


class DocumentStoreProtocol(Protocol):
    """Document store holding the generic field values rewritten by merges."""

    def find_by_field_value(self, field: str, value: str, *, limit: int) -> DocumentLookup:
        """Return documents whose ``field`` projection holds exactly ``value``."""

    def count_by_field_value(self, field: str, value: str) -> int:
        """Return how many documents hold ``value`` in ``field``."""

    def get_field(self, document_id: str, field: str) -> Optional[GenericField]:
        """Return the current ``field`` value of one document, ``None`` when unset.

        Raises:
            DocumentNotFoundError: If the document no longer exists.
        """

    def update_field(self, document_id: str, field: str, value: GenericField) -> None:
        """Replace the ``field`` value of one document.

        Raises:
            DocumentNotFoundError: If the document no longer exists.
            StoreError: If the write failed for any other reason.
        """
