"""Orchestration entry points used by the UI layer."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from backend.app.cancellation import CancellationToken, check_cancelled
from backend.app.config import AppConfig, load_config
from backend.app.contracts import (
    AnalysisReport,
    FieldDescriptor,
    FilterSet,
    MergePreview,
    NormalizationRequest,
    NormalizationResult,
    Term,
)
from backend.app.errors import NormalizationError, ValidationError
from backend.app.store.catalog import DocumentStoreProtocol, TermCatalogProtocol

from .canonical import ClusterOrder, sort_clusters
from .engine import ClusteringEngine, EngineConfig
from .executor import NormalizationExecutor
from .suggestions import suggest_similar

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeOutcome:
    """Result of an applied merge plus the refreshed analysis, when requested.

    ``refresh_error`` is set when the merge was written but the follow-up
    analysis failed; ``result`` still describes the applied rewrite.
    """

    result: NormalizationResult
    refreshed: Optional[AnalysisReport] = None
    refresh_error: Optional[str] = None


class NormalizationService:
    """Analyse a field for near-duplicate terms and apply confirmed merges.

    The service holds no analysis state: every call receives its field,
    filters, threshold and cap explicitly and recomputes from the catalog.
    """

    def __init__(
        self,
        *,
        catalog: TermCatalogProtocol,
        store: DocumentStoreProtocol,
        config: Optional[AppConfig] = None,
        engine: Optional[ClusteringEngine] = None,
        executor: Optional[NormalizationExecutor] = None,
    ) -> None:
        self._config = config or load_config()
        settings = self._config.normalization
        self._catalog = catalog
        self._store = store
        self._engine = engine or ClusteringEngine(EngineConfig.from_settings(settings))
        self._fields = [
            FieldDescriptor(key=entry.key, label=entry.label) for entry in self._config.fields
        ]
        self._executor = executor or NormalizationExecutor(
            store,
            known_fields=[field.key for field in self._fields],
            lookup_limit=settings.lookup_limit,
            max_concurrent_writes=settings.max_concurrent_writes,
        )

    @property
    def config(self) -> AppConfig:
        return self._config

    def list_fields(self) -> List[FieldDescriptor]:
        """Return the metadata fields that can be analysed and normalized."""

        return list(self._fields)

    def list_terms(
        self,
        field: str,
        filters: Optional[FilterSet] = None,
        *,
        limit: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[Term]:
        """Return the raw term list for ``field`` without clustering."""

        self._require_field(field)
        if limit is not None and limit < 1:
            msg = "limit must be a positive integer"
            raise ValidationError(msg)
        return self._catalog.fetch(field, filters or FilterSet(), size=limit, cancel_token=cancel_token)

    def analyze_field(
        self,
        field: str,
        filters: Optional[FilterSet] = None,
        threshold: Optional[float] = None,
        cap: Optional[int] = None,
        *,
        order: "ClusterOrder | str" = ClusterOrder.TOTAL_FREQUENCY,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AnalysisReport:
        """Detect near-duplicate clusters for ``field``.

        Args:
            field: Logical field to analyse.
            filters: Optional document filters applied to the term aggregation.
            threshold: Similarity threshold within the configured bounds.
            cap: Maximum number of terms compared.
            order: Presentation order of the returned clusters.
            cancel_token: Optional token propagated into the catalog and the
                pairwise comparison.

        Returns:
            AnalysisReport: Clusters plus the parameters that produced them.

        Raises:
            ValidationError: If the field, threshold or cap is invalid.
            StoreError: If the catalog cannot be read.
            AnalysisCancelled: If ``cancel_token`` is cancelled.
        """

        self._require_field(field)
        resolved_threshold = self._resolve_threshold(threshold)
        resolved_cap = self._resolve_cap(cap)
        resolved_filters = filters or FilterSet()
        terms = self._catalog.fetch(field, resolved_filters, cancel_token=cancel_token)
        check_cancelled(cancel_token)
        outcome = self._engine.run(
            terms,
            threshold=resolved_threshold,
            cap=resolved_cap,
            cancel_token=cancel_token,
        )
        return AnalysisReport(
            field=field,
            threshold=resolved_threshold,
            cap=resolved_cap,
            filters=resolved_filters,
            terms_available=len(terms),
            terms_considered=len(outcome.terms),
            clusters=sort_clusters(outcome.clusters, order),
        )

    def rare_values(
        self,
        field: str,
        filters: Optional[FilterSet] = None,
        *,
        max_count: Optional[int] = None,
    ) -> List[Term]:
        """Return terms used by at most ``max_count`` documents, rarest first."""

        self._require_field(field)
        threshold = max_count if max_count is not None else self._config.normalization.rare_value_max_count
        if threshold < 1:
            msg = "max_count must be a positive integer"
            raise ValidationError(msg)
        terms = self._catalog.fetch(field, filters or FilterSet())
        rare = [term for term in terms if term.frequency <= threshold]
        rare.sort(key=lambda term: (term.frequency, term.key))
        return rare

    def suggest(self, field: str, value: str, *, filters: Optional[FilterSet] = None) -> Optional[str]:
        """Suggest an existing term of ``field`` close to a freshly typed ``value``."""

        self._require_field(field)
        vocabulary = (term.key for term in self._catalog.fetch(field, filters or FilterSet()))
        return suggest_similar(
            value,
            vocabulary,
            min_similarity=self._config.normalization.suggestion_min_similarity,
        )

    def validate_request(self, field: object, from_value: object, to_value: object) -> NormalizationRequest:
        """Validate raw merge parameters; raises :class:`ValidationError`."""

        return self._executor.validate(field, from_value, to_value)

    def preview_merge(self, field: object, from_value: object, to_value: object) -> MergePreview:
        """Return the ``from -> to`` confirmation payload without writing anything."""

        request = self.validate_request(field, from_value, to_value)
        affected = self._store.count_by_field_value(request.field, request.from_value)
        limit = self._config.normalization.lookup_limit
        return MergePreview(
            field=request.field,
            from_value=request.from_value,
            to_value=request.to_value,
            affected_count=affected,
            truncated=affected > limit,
        )

    def apply_merge(
        self,
        request: NormalizationRequest,
        *,
        confirmed: bool,
        refresh: bool = True,
        refresh_filters: Optional[FilterSet] = None,
        refresh_threshold: Optional[float] = None,
        refresh_cap: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> MergeOutcome:
        """Apply an operator-confirmed merge and optionally re-analyse the field.

        Args:
            request: Field and values to merge.
            confirmed: Must be ``True``; the rewrite is irreversible.
            refresh: Recompute the field analysis after the write so callers
                never keep clusters computed before the merge.
            refresh_filters: Filters for the refreshed analysis.
            refresh_threshold: Threshold for the refreshed analysis.
            refresh_cap: Cap for the refreshed analysis.
            cancel_token: Optional token forwarded to the executor.

        Returns:
            MergeOutcome: The normalization result and refreshed analysis. A
                failed refresh is reported in ``refresh_error`` instead of
                raising, since the rewrite has already been applied.

        Raises:
            ValidationError: If the merge is not confirmed, the request is
                invalid or the refresh threshold or cap is out of bounds.
                Nothing is written in that case.
            StoreError: If the document lookup fails.
        """

        if not confirmed:
            msg = "Merges must be explicitly confirmed before any document is rewritten"
            raise ValidationError(msg)
        if refresh:
            refresh_threshold = self._resolve_threshold(refresh_threshold)
            refresh_cap = self._resolve_cap(refresh_cap)
        result = self._executor.normalize(
            request.field,
            request.from_value,
            request.to_value,
            cancel_token=cancel_token,
        )
        refreshed: Optional[AnalysisReport] = None
        refresh_error: Optional[str] = None
        if refresh:
            try:
                refreshed = self.analyze_field(
                    request.field,
                    refresh_filters,
                    refresh_threshold,
                    refresh_cap,
                )
            except NormalizationError as exc:
                LOGGER.warning(
                    "Merge of '%s' into '%s' on %s applied, but the refresh failed: %s",
                    request.from_value,
                    request.to_value,
                    request.field,
                    exc,
                )
                refresh_error = str(exc)
        return MergeOutcome(result=result, refreshed=refreshed, refresh_error=refresh_error)

    def _require_field(self, field: str) -> None:
        known = [descriptor.key for descriptor in self._fields]
        if not field or field not in known:
            msg = f"Invalid field '{field}' (available: {', '.join(known)})"
            raise ValidationError(msg)

    def _resolve_threshold(self, threshold: Optional[float]) -> float:
        settings = self._config.normalization
        value = settings.default_threshold if threshold is None else float(threshold)
        if not settings.min_threshold <= value <= settings.max_threshold:
            msg = (
                f"threshold must lie within [{settings.min_threshold:.2f}, "
                f"{settings.max_threshold:.2f}], got {value}"
            )
            raise ValidationError(msg)
        return value

    def _resolve_cap(self, cap: Optional[int]) -> int:
        settings = self._config.normalization
        value = settings.default_cap if cap is None else int(cap)
        if not 1 <= value <= settings.max_cap:
            msg = f"cap must lie within [1, {settings.max_cap}], got {value}"
            raise ValidationError(msg)
        return value


def build_default_service(config: Optional[AppConfig] = None) -> NormalizationService:
    """Create a service wired to the configured store backend."""

    from backend.app.store import build_store

    resolved = config or load_config()
    catalog, store = build_store(resolved)
    return NormalizationService(catalog=catalog, store=store, config=resolved)

