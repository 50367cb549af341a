"""Bulk rewrite of one term into another across the document store."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Tuple

from backend.app.cancellation import CancellationToken
from backend.app.contracts import (
    DocumentUpdateResult,
    NormalizationRequest,
    NormalizationResult,
    StoredDocument,
)
from backend.app.errors import DocumentNotFoundError, StoreError, ValidationError
from backend.app.store.catalog import DocumentStoreProtocol

LOGGER = logging.getLogger(__name__)

NO_MATCHES_MESSAGE = "No documents found to update"


def validate_request(
    field: object,
    from_value: object,
    to_value: object,
    known_fields: Iterable[str],
) -> NormalizationRequest:
    """Validate raw normalization parameters before anything touches the store.

    Args:
        field: Logical field name.
        from_value: Term to replace.
        to_value: Replacement term.
        known_fields: Fields that may be normalized.

    Returns:
        NormalizationRequest: The validated request.

    Raises:
        ValidationError: If a parameter is missing, blank, identical or unknown.
    """

    missing = [
        name
        for name, value in (("field", field), ("fromValue", from_value), ("toValue", to_value))
        if not isinstance(value, str) or not value.strip()
    ]
    if missing:
        msg = f"Missing required parameters: {', '.join(missing)}"
        raise ValidationError(msg)
    allowed = list(known_fields)
    if field not in allowed:  # type: ignore[operator]
        msg = f"Invalid field '{field}' (available: {', '.join(allowed)})"
        raise ValidationError(msg)
    if from_value == to_value:
        msg = "fromValue and toValue must differ"
        raise ValidationError(msg)
    return NormalizationRequest(field=field, from_value=from_value, to_value=to_value)


class NormalizationExecutor:
    """Rewrite ``Show``/``Index`` occurrences of a term, one document at a time.

    Writes are independent: a failure on one document never rolls back the
    others, and every outcome is reported so the failures can be retried.
    Each document is re-read right before its write, so a value edited away
    after the lookup is skipped instead of overwritten. The re-read and the
    write are not atomic; an edit landing between them is still overwritten.
    """

    def __init__(
        self,
        store: DocumentStoreProtocol,
        *,
        known_fields: Iterable[str],
        lookup_limit: int = 10000,
        max_concurrent_writes: int = 4,
    ) -> None:
        if lookup_limit < 1:
            msg = "lookup_limit must be positive"
            raise ValueError(msg)
        if max_concurrent_writes < 1:
            msg = "max_concurrent_writes must be positive"
            raise ValueError(msg)
        self._store = store
        self._known_fields = tuple(known_fields)
        self._lookup_limit = lookup_limit
        self._max_concurrent_writes = max_concurrent_writes

    @property
    def known_fields(self) -> Tuple[str, ...]:
        return self._known_fields

    def validate(self, field: object, from_value: object, to_value: object) -> NormalizationRequest:
        return validate_request(field, from_value, to_value, self._known_fields)

    def normalize(
        self,
        field: object,
        from_value: object,
        to_value: object,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> NormalizationResult:
        """Replace ``from_value`` with ``to_value`` in every matching document.

        Args:
            field: Logical field to rewrite.
            from_value: Exact value currently stored.
            to_value: Value that replaces it.
            cancel_token: Optional token; writes not yet started when it is
                cancelled are reported as skipped.

        Returns:
            NormalizationResult: Aggregate and per-document outcome.

        Raises:
            ValidationError: If the request is invalid; nothing is written.
            StoreError: If the lookup itself fails; nothing is written.
        """

        request = self.validate(field, from_value, to_value)
        return self.execute(request, cancel_token=cancel_token)

    def execute(
        self,
        request: NormalizationRequest,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> NormalizationResult:
        """Run an already validated request."""

        LOGGER.info(
            "Normalizing %s: '%s' -> '%s'", request.field, request.from_value, request.to_value
        )
        lookup = self._store.find_by_field_value(
            request.field, request.from_value, limit=self._lookup_limit
        )
        complete = not lookup.truncated
        if not complete:
            LOGGER.warning(
                "Lookup for '%s' on %s matched %d documents; only %d will be rewritten",
                request.from_value,
                request.field,
                lookup.total,
                len(lookup.documents),
            )
        if not lookup.documents:
            return NormalizationResult(
                field=request.field,
                from_value=request.from_value,
                to_value=request.to_value,
                success=complete,
                updated_count=0,
                complete=complete,
                message=NO_MATCHES_MESSAGE,
            )

        outcomes = self._write_all(request, lookup.documents, cancel_token)
        updated = sum(1 for outcome in outcomes if outcome.status == "updated")
        failed = [outcome for outcome in outcomes if outcome.status == "failed"]
        cancelled = [
            outcome for outcome in outcomes if outcome.status == "skipped" and outcome.error == "cancelled"
        ]
        success = complete and not failed and not cancelled
        message = self._summarise(updated, failed, cancelled, complete, lookup.total)
        if success:
            LOGGER.info("Normalization updated %d documents", updated)
        else:
            LOGGER.warning("Normalization finished partially: %s", message)
        return NormalizationResult(
            field=request.field,
            from_value=request.from_value,
            to_value=request.to_value,
            success=success,
            updated_count=updated,
            complete=complete,
            per_document_results=outcomes,
            message=message,
        )

    def _write_all(
        self,
        request: NormalizationRequest,
        documents: List[StoredDocument],
        cancel_token: Optional[CancellationToken],
    ) -> List[DocumentUpdateResult]:
        workers = min(self._max_concurrent_writes, len(documents))
        if workers <= 1:
            return [self._write_one(request, document, cancel_token) for document in documents]
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="normalization-writer") as pool:
            return list(
                pool.map(lambda document: self._write_one(request, document, cancel_token), documents)
            )

    def _write_one(
        self,
        request: NormalizationRequest,
        document: StoredDocument,
        cancel_token: Optional[CancellationToken],
    ) -> DocumentUpdateResult:
        if cancel_token is not None and cancel_token.cancelled:
            return DocumentUpdateResult(document_id=document.id, status="skipped", error="cancelled")
        try:
            current = self._store.get_field(document.id, request.field)
            if current is None or not current.contains(request.from_value):
                LOGGER.info("Document %s changed since the lookup; skipping it", document.id)
                return DocumentUpdateResult(
                    document_id=document.id,
                    status="skipped",
                    error=f"'{request.from_value}' no longer present",
                )
            updated_value = current.replace(request.from_value, request.to_value)
            self._store.update_field(document.id, request.field, updated_value)
        except DocumentNotFoundError as exc:
            LOGGER.warning("Document %s disappeared before its update", document.id)
            return DocumentUpdateResult(document_id=document.id, status="not_found", error=str(exc))
        except StoreError as exc:
            LOGGER.error("Failed to update document %s: %s", document.id, exc)
            return DocumentUpdateResult(document_id=document.id, status="failed", error=str(exc))
        except Exception as exc:  # noqa: BLE001 - one document must not abort the batch
            LOGGER.exception("Unexpected error while updating document %s", document.id)
            return DocumentUpdateResult(
                document_id=document.id, status="failed", error=str(exc) or type(exc).__name__
            )
        return DocumentUpdateResult(document_id=document.id, status="updated")

    @staticmethod
    def _summarise(
        updated: int,
        failed: List[DocumentUpdateResult],
        cancelled: List[DocumentUpdateResult],
        complete: bool,
        total: int,
    ) -> str:
        parts = [f"{updated} documents updated"]
        if failed:
            parts.append(f"{len(failed)} failed")
        if cancelled:
            parts.append(f"{len(cancelled)} cancelled")
        if not complete:
            parts.append(f"lookup truncated: {total} documents matched")
        return ", ".join(parts)
