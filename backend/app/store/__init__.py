"""Term catalog and document store adapters."""
from __future__ import annotations

import logging
from typing import Tuple

from backend.app.config import AppConfig

from .catalog import DocumentStoreProtocol, TermCatalogProtocol
from .elasticsearch import (
    ElasticsearchDocumentStore,
    ElasticsearchTermCatalog,
    build_filter_query,
    create_elasticsearch_client,
)
from .health import StoreHealthResult, check_store_health
from .memory import InMemoryDocumentStore, InMemoryTermCatalog, MemoryDocument

LOGGER = logging.getLogger(__name__)


def build_store(config: AppConfig) -> Tuple[TermCatalogProtocol, DocumentStoreProtocol]:
    """Instantiate the catalog and document store selected in ``config.store``."""

    store_config = config.store
    if store_config.backend == "elasticsearch":
        client = create_elasticsearch_client(store_config)
        mapping = config.field_mapping()
        LOGGER.info("Using Elasticsearch store at %s (index=%s)", store_config.base_url, store_config.index)
        catalog = ElasticsearchTermCatalog(
            client,
            index=store_config.index,
            field_mapping=mapping,
            max_terms=store_config.max_terms,
            year_field=store_config.year_field,
        )
        store = ElasticsearchDocumentStore(
            client,
            index=store_config.index,
            field_mapping=mapping,
            refresh=store_config.refresh_on_update,
        )
        return catalog, store
    LOGGER.warning("Using in-memory document store; merges will not persist")
    memory_store = InMemoryDocumentStore()
    return InMemoryTermCatalog(memory_store, max_terms=store_config.max_terms), memory_store


__all__ = [
    "DocumentStoreProtocol",
    "ElasticsearchDocumentStore",
    "ElasticsearchTermCatalog",
    "InMemoryDocumentStore",
    "InMemoryTermCatalog",
    "MemoryDocument",
    "StoreHealthResult",
    "TermCatalogProtocol",
    "build_filter_query",
    "build_store",
    "check_store_health",
    "create_elasticsearch_client",
]
