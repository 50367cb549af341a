"""Immutable data contracts for the term normalization backend."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from typing_extensions import Literal


class _FrozenBaseModel(BaseModel):
    """Base model enforcing immutability after creation."""

    model_config = ConfigDict(frozen=True)


class Term(_FrozenBaseModel):
    """Distinct observed value of a metadata field with its document frequency."""

    key: str
    frequency: int = Field(..., ge=0, description="Number of documents carrying the value.")


class Irregularity(_FrozenBaseModel):
    """Non-canonical cluster member proposed for merging."""

    term: Term
    similarity: float = Field(..., ge=0.0, le=1.0)
    is_alternative: bool = Field(
        False,
        description="True when the member is as frequent as the canonical term.",
    )


class Cluster(_FrozenBaseModel):
    """Group of near-duplicate terms with its proposed canonical form."""

    canonical: Term
    irregulars: List[Irregularity] = Field(..., min_length=1)

    @property
    def members(self) -> List[Term]:
        """Return the canonical term followed by every irregular."""

        return [self.canonical, *(item.term for item in self.irregulars)]

    @property
    def size(self) -> int:
        return 1 + len(self.irregulars)

    @property
    def total_frequency(self) -> int:
        return sum(term.frequency for term in self.members)


class FilterSet(_FrozenBaseModel):
    """Filters narrowing the documents whose terms are aggregated."""

    min_year: Optional[int] = Field(None, ge=0)
    max_year: Optional[int] = Field(None, ge=0)
    query: Optional[str] = None

    @field_validator("max_year")
    @classmethod
    def _ensure_ordered_years(cls, value: Optional[int], info: ValidationInfo) -> Optional[int]:
        """Validate that the year range is not inverted.

        Args:
            value: The proposed upper bound.
            info: Validation context containing other field values.

        Returns:
            Optional[int]: The validated upper bound.

        Raises:
            ValueError: If the upper bound precedes the lower bound.
        """
        start = info.data.get("min_year")
        if value is not None and start is not None and value < start:
            raise ValueError("max_year must not precede min_year")
        return value

    @property
    def is_empty(self) -> bool:
        return self.min_year is None and self.max_year is None and not self.query


class GenericField(_FrozenBaseModel):
    """Parallel representations of a document metadata field.

    ``Original`` is provenance data and is never rewritten. ``Show`` and
    ``Index`` are derived projections and the only parts a merge may touch.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    show: List[str] = Field(default_factory=list, alias="Show")
    index: List[str] = Field(default_factory=list, alias="Index")
    original: List[str] = Field(default_factory=list, alias="Original")

    def contains(self, value: str) -> bool:
        """Return whether ``value`` is present in a normalizable projection."""

        return value in self.show or value in self.index

    def replace(self, from_value: str, to_value: str) -> "GenericField":
        """Return a copy with ``from_value`` replaced in ``Show`` and ``Index``."""

        return GenericField(
            Show=[to_value if item == from_value else item for item in self.show],
            Index=[to_value if item == from_value else item for item in self.index],
            Original=list(self.original),
        )

    def to_document(self) -> dict:
        """Serialise using the store's capitalised field names."""

        return self.model_dump(by_alias=True)


class StoredDocument(_FrozenBaseModel):
    """Document returned by a store lookup with the current field value."""

    id: str = Field(..., min_length=1)
    field_value: GenericField


class DocumentLookup(_FrozenBaseModel):
    """Result of a field value lookup, possibly truncated by the store limit."""

    documents: List[StoredDocument] = Field(default_factory=list)
    total: int = Field(0, ge=0)

    @property
    def truncated(self) -> bool:
        return self.total > len(self.documents)


class NormalizationRequest(_FrozenBaseModel):
    """Operator-issued command to rewrite one term into another."""

    field: str
    from_value: str
    to_value: str


DocumentStatus = Literal["updated", "not_found", "failed", "skipped"]


class DocumentUpdateResult(_FrozenBaseModel):
    """Outcome of the write issued for a single document."""

    document_id: str
    status: DocumentStatus
    error: Optional[str] = None


class NormalizationResult(_FrozenBaseModel):
    """Aggregate outcome of a normalization run."""

    field: str
    from_value: str
    to_value: str
    success: bool
    updated_count: int = Field(0, ge=0)
    complete: bool = True
    per_document_results: List[DocumentUpdateResult] = Field(default_factory=list)
    message: Optional[str] = None

    @property
    def failed_ids(self) -> List[str]:
        """Return document identifiers whose write should be retried."""

        return [
            item.document_id
            for item in self.per_document_results
            if item.status == "failed" or (item.status == "skipped" and item.error == "cancelled")
        ]

    @property
    def partial(self) -> bool:
        return not self.success and (self.updated_count > 0 or not self.complete)

    def raise_for_partial(self) -> "NormalizationResult":
        """Raise :class:`PartialFailure` unless every write succeeded."""

        from backend.app.errors import PartialFailure

        if not self.success:
            raise PartialFailure(self)
        return self


class MergePreview(_FrozenBaseModel):
    """Confirmation payload shown to the operator before a merge."""

    field: str
    from_value: str
    to_value: str
    affected_count: int = Field(..., ge=0)
    truncated: bool = False


class FieldDescriptor(_FrozenBaseModel):
    """Metadata field that can be analysed and normalized."""

    key: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)


class AnalysisReport(_FrozenBaseModel):
    """Clusters detected for a field together with the inputs that produced them."""

    field: str
    threshold: float = Field(..., ge=0.0, le=1.0)
    cap: int = Field(..., ge=1)
    filters: FilterSet = Field(default_factory=FilterSet)
    terms_available: int = Field(0, ge=0)
    terms_considered: int = Field(0, ge=0)
    clusters: List[Cluster] = Field(default_factory=list)

    @property
    def truncated(self) -> bool:
        return self.terms_available > self.terms_considered
