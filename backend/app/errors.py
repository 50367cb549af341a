"""Error taxonomy shared by the normalization engine and its collaborators."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from backend.app.contracts import NormalizationResult


class NormalizationError(RuntimeError):
    """Base class for all errors raised by the normalization engine."""


class ValidationError(NormalizationError):
    """Raised when a request is rejected before any store call is issued."""


class NotFoundError(NormalizationError):
    """Raised when a lookup yields no matching documents."""


class DocumentNotFoundError(NotFoundError):
    """Raised by a document store when a document disappeared before its write."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class StoreError(NormalizationError):
    """Raised when the catalog or document store is unreachable or malformed.

    The original diagnostic message is preserved so operators can tell
    "no data" apart from "system broken".
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PartialFailure(NormalizationError):
    """Raised when some document writes failed while others succeeded."""

    def __init__(self, result: "NormalizationResult") -> None:
        failed = len(result.failed_ids)
        message = (
            f"Normalization of '{result.from_value}' -> '{result.to_value}' on {result.field} "
            f"finished partially: {result.updated_count} updated, {failed} failed"
        )
        if not result.complete:
            message += " (lookup truncated)"
        super().__init__(message)
        self.result = result


class AnalysisCancelled(NormalizationError):
    """Raised when an in-flight analysis is superseded by a newer request."""
