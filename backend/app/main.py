"""FastAPI application factory for the term normalization backend."""
from __future__ import annotations

import logging
from typing import Dict, List, NoReturn, Optional

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from backend.app.config import AppConfig, load_config
from backend.app.contracts import (
    AnalysisReport,
    DocumentUpdateResult,
    FieldDescriptor,
    FilterSet,
    Irregularity,
    MergePreview,
    NormalizationResult,
    Term,
)
from backend.app.errors import (
    NormalizationError,
    NotFoundError,
    PartialFailure,
    StoreError,
    ValidationError,
)
from backend.app.normalization import (
    DEFAULT_SESSION,
    AnalysisScheduler,
    ClusterOrder,
    NormalizationService,
    build_default_service,
)
from backend.app.store import check_store_health

LOGGER = logging.getLogger(__name__)

SUPERSEDED_DETAIL = "Analysis superseded by a newer request"


class MergeRequestPayload(BaseModel):
    """Request payload naming the term to replace and its replacement."""

    model_config = ConfigDict(populate_by_name=True)

    field: Optional[str] = None
    from_value: Optional[str] = Field(None, alias="fromValue")
    to_value: Optional[str] = Field(None, alias="toValue")


class FiltersPayload(BaseModel):
    """Document filters used when refreshing the analysis after a merge."""

    model_config = ConfigDict(populate_by_name=True)

    min_year: Optional[int] = Field(None, alias="minYear")
    max_year: Optional[int] = Field(None, alias="maxYear")
    query: Optional[str] = None


class ApplyMergePayload(MergeRequestPayload):
    """Confirmed merge plus the parameters of the refreshed analysis."""

    confirmed: bool = False
    refresh: bool = True
    threshold: Optional[float] = None
    cap: Optional[int] = None
    filters: Optional[FiltersPayload] = None


class ClusterPayload(BaseModel):
    """Cluster as shown to operators."""

    canonical: Term
    irregulars: List[Irregularity]
    size: int
    total_frequency: int


class AnalysisResponse(BaseModel):
    """Clusters detected for a field."""

    field: str
    threshold: float
    cap: int
    terms_available: int
    terms_considered: int
    truncated: bool
    clusters: List[ClusterPayload]
    sequence: Optional[int] = None


class NormalizationResponse(BaseModel):
    """Outcome of an applied merge."""

    field: str
    from_value: str
    to_value: str
    success: bool
    updated_count: int
    complete: bool
    message: Optional[str]
    failed_ids: List[str]
    per_document_results: List[DocumentUpdateResult]


class ApplyMergeResponse(BaseModel):
    """Merge outcome plus the analysis recomputed after it."""

    result: NormalizationResponse
    refreshed: Optional[AnalysisResponse] = None
    refresh_error: Optional[str] = None


class SuggestionResponse(BaseModel):
    """Closest existing term for a freshly typed value."""

    value: str
    suggestion: Optional[str]


def create_app(
    config: AppConfig | None = None,
    service: Optional[NormalizationService] = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        config: Optional pre-loaded configuration. If omitted, the default
            configuration defined in config.yaml is used.
        service: Optional normalization service. When omitted the factory
            builds one against the configured store backend.

    Returns:
        FastAPI: Configured FastAPI application.
    """

    resolved_config = config or (service.config if service is not None else load_config())
    app = FastAPI(title="Jurisprudence Term Normalization API", version=resolved_config.version)
    app.state.app_config = resolved_config

    allowed_origins = resolved_config.api.allowed_origins
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    normalization_service = service or build_default_service(resolved_config)
    scheduler = AnalysisScheduler(
        normalization_service,
        max_workers=resolved_config.api.analysis_worker_count,
    )
    app.state.normalization_service = normalization_service
    app.state.analysis_scheduler = scheduler

    @app.on_event("shutdown")
    def _stop_scheduler() -> None:
        scheduler.shutdown(wait=False)

    @app.get("/health", tags=["system"], summary="Service health probe")
    def health() -> Dict[str, str]:
        """Return service health information, including the store when remote."""

        payload: Dict[str, str] = {
            "status": "ok",
            "version": resolved_config.version,
            "store_backend": resolved_config.store.backend,
        }
        store_config = resolved_config.store
        if store_config.backend == "elasticsearch" and store_config.base_url:
            result = check_store_health(store_config.base_url, timeout=store_config.timeout_seconds)
            payload["store_status"] = result.cluster_status or "unreachable"
            if not result.ok:
                payload["status"] = "degraded"
        return payload

    @app.get(
        "/api/normalization/fields",
        tags=["normalization"],
        summary="Fields that can be normalized",
    )
    def list_fields() -> List[FieldDescriptor]:
        return normalization_service.list_fields()

    @app.get(
        "/api/normalization/terms",
        tags=["normalization"],
        summary="Raw term frequencies for a field",
    )
    def list_terms(
        field: str = Query(..., min_length=1),
        limit: Optional[int] = Query(None, ge=1),
        min_year: Optional[int] = Query(None, alias="minYear"),
        max_year: Optional[int] = Query(None, alias="maxYear"),
        query: Optional[str] = Query(None, alias="q"),
    ) -> List[Term]:
        filters = _build_filters(min_year, max_year, query)
        try:
            return normalization_service.list_terms(field, filters, limit=limit)
        except NormalizationError as exc:
            _raise_http_error(exc)

    @app.get(
        "/api/normalization/clusters",
        tags=["normalization"],
        summary="Near-duplicate clusters for a field",
    )
    def list_clusters(
        field: str = Query(..., min_length=1),
        threshold: Optional[float] = Query(None),
        cap: Optional[int] = Query(None),
        order: ClusterOrder = Query(ClusterOrder.TOTAL_FREQUENCY),
        min_year: Optional[int] = Query(None, alias="minYear"),
        max_year: Optional[int] = Query(None, alias="maxYear"),
        query: Optional[str] = Query(None, alias="q"),
        client_id: Optional[str] = Header(None, alias="X-Client-Id"),
    ) -> AnalysisResponse:
        """Run an analysis through the scheduler.

        Older in-flight requests carrying the same ``X-Client-Id`` are
        cancelled; requests without the header share one default session.
        """

        filters = _build_filters(min_year, max_year, query)
        session = (client_id or "").strip() or DEFAULT_SESSION
        ticket = scheduler.submit(field, filters, threshold, cap, order=order, session=session)
        try:
            report = ticket.result()
        except NormalizationError as exc:
            _raise_http_error(exc)
        if report is None:
            raise HTTPException(status_code=409, detail=SUPERSEDED_DETAIL)
        return _analysis_response(report, sequence=ticket.sequence)

    @app.get(
        "/api/normalization/rare-values",
        tags=["normalization"],
        summary="Terms used by very few documents",
    )
    def rare_values(
        field: str = Query(..., min_length=1),
        max_count: Optional[int] = Query(None, alias="maxCount"),
        min_year: Optional[int] = Query(None, alias="minYear"),
        max_year: Optional[int] = Query(None, alias="maxYear"),
        query: Optional[str] = Query(None, alias="q"),
    ) -> List[Term]:
        filters = _build_filters(min_year, max_year, query)
        try:
            return normalization_service.rare_values(field, filters, max_count=max_count)
        except NormalizationError as exc:
            _raise_http_error(exc)

    @app.get(
        "/api/normalization/suggestion",
        tags=["normalization"],
        summary="Closest existing term for a typed value",
    )
    def suggestion(
        field: str = Query(..., min_length=1),
        value: str = Query(..., min_length=1),
    ) -> SuggestionResponse:
        try:
            suggested = normalization_service.suggest(field, value)
        except NormalizationError as exc:
            _raise_http_error(exc)
        return SuggestionResponse(value=value, suggestion=suggested)

    @app.post(
        "/api/normalization/preview",
        tags=["normalization"],
        summary="Count the documents a merge would rewrite",
    )
    def preview_merge(payload: MergeRequestPayload) -> MergePreview:
        try:
            return normalization_service.preview_merge(
                payload.field, payload.from_value, payload.to_value
            )
        except NormalizationError as exc:
            _raise_http_error(exc)

    @app.post(
        "/api/normalization/apply",
        tags=["normalization"],
        summary="Apply a confirmed merge",
        responses={207: {"description": "Some documents could not be updated"}},
    )
    def apply_merge(payload: ApplyMergePayload):
        """Rewrite ``fromValue`` into ``toValue`` and return the refreshed clusters."""

        filters = None
        if payload.filters is not None:
            filters = _build_filters(
                payload.filters.min_year, payload.filters.max_year, payload.filters.query
            )
        try:
            request = normalization_service.validate_request(
                payload.field, payload.from_value, payload.to_value
            )
            outcome = normalization_service.apply_merge(
                request,
                confirmed=payload.confirmed,
                refresh=payload.refresh,
                refresh_filters=filters,
                refresh_threshold=payload.threshold,
                refresh_cap=payload.cap,
            )
        except NormalizationError as exc:
            _raise_http_error(exc)
        response = ApplyMergeResponse(
            result=_normalization_response(outcome.result),
            refreshed=_analysis_response(outcome.refreshed) if outcome.refreshed else None,
            refresh_error=outcome.refresh_error,
        )
        try:
            outcome.result.raise_for_partial()
        except PartialFailure as exc:
            LOGGER.warning("%s", exc)
            return JSONResponse(status_code=207, content=response.model_dump(mode="json"))
        return response

    return app


def _build_filters(
    min_year: Optional[int],
    max_year: Optional[int],
    query: Optional[str],
) -> FilterSet:
    try:
        return FilterSet(min_year=min_year, max_year=max_year, query=query or None)
    except PydanticValidationError as exc:
        raise HTTPException(status_code=400, detail=_first_error(exc)) from exc


def _first_error(exc: PydanticValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    return str(errors[0].get("msg", exc))


def _raise_http_error(exc: NormalizationError) -> NoReturn:
    """Translate a normalization error into the matching HTTP status."""

    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, StoreError):
        LOGGER.error("Store failure: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    LOGGER.exception("Unexpected normalization failure")
    raise HTTPException(status_code=500, detail=str(exc)) from exc


def _analysis_response(report: AnalysisReport, *, sequence: Optional[int] = None) -> AnalysisResponse:
    return AnalysisResponse(
        field=report.field,
        threshold=report.threshold,
        cap=report.cap,
        terms_available=report.terms_available,
        terms_considered=report.terms_considered,
        truncated=report.truncated,
        clusters=[
            ClusterPayload(
                canonical=cluster.canonical,
                irregulars=list(cluster.irregulars),
                size=cluster.size,
                total_frequency=cluster.total_frequency,
            )
            for cluster in report.clusters
        ],
        sequence=sequence,
    )


def _normalization_response(result: NormalizationResult) -> NormalizationResponse:
    return NormalizationResponse(
        field=result.field,
        from_value=result.from_value,
        to_value=result.to_value,
        success=result.success,
        updated_count=result.updated_count,
        complete=result.complete,
        message=result.message,
        failed_ids=result.failed_ids,
        per_document_results=list(result.per_document_results),
    )
