"""Connectivity probe for the Elasticsearch cluster behind the document store."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

HEALTHY_STATUSES = frozenset({"green", "yellow"})


@dataclass(frozen=True)
class StoreHealthResult:
    """Structured information about a cluster health probe."""

    ok: bool
    status_code: Optional[int]
    cluster_status: Optional[str]
    detail: str
    latency_ms: Optional[float]
    payload: Optional[dict[str, Any]]


def check_store_health(
    base_url: str,
    *,
    timeout: float = 5.0,
    client: Optional[httpx.Client] = None,
) -> StoreHealthResult:
    """Query ``/_cluster/health`` and report whether the cluster can serve requests.

    Args:
        base_url: Elasticsearch base URL (e.g. ``"http://localhost:9200"``).
        timeout: Request timeout in seconds when creating an internal client.
        client: Optional pre-configured ``httpx.Client`` (useful for testing).

    Returns:
        StoreHealthResult: Outcome of the probe. A ``red`` cluster is reported
            as not ok even though the request itself succeeded.
    """

    url = f"{base_url.rstrip('/')}/_cluster/health"
    should_close = client is None
    session = client or httpx.Client(timeout=timeout)
    start_time = time.monotonic()

    try:
        response = session.get(url)
        latency_ms = (time.monotonic() - start_time) * 1000
        if response.status_code != httpx.codes.OK:
            logger.warning(
                "Cluster health check failed with status",
                extra={"url": url, "status_code": response.status_code, "latency_ms": latency_ms},
            )
            return StoreHealthResult(
                ok=False,
                status_code=response.status_code,
                cluster_status=None,
                detail=f"Cluster health endpoint returned {response.status_code}",
                latency_ms=latency_ms,
                payload=None,
            )
        try:
            payload = response.json()
        except ValueError:
            payload = None
        cluster_status = payload.get("status") if isinstance(payload, dict) else None
        ok = cluster_status in HEALTHY_STATUSES
        if ok:
            logger.info(
                "Cluster health check succeeded",
                extra={"url": url, "cluster_status": cluster_status, "latency_ms": latency_ms},
            )
        else:
            logger.warning(
                "Cluster reported an unhealthy status",
                extra={"url": url, "cluster_status": cluster_status},
            )
        return StoreHealthResult(
            ok=ok,
            status_code=response.status_code,
            cluster_status=cluster_status,
            detail=f"Cluster status is {cluster_status or 'unknown'}",
            latency_ms=latency_ms,
            payload=payload if isinstance(payload, dict) else None,
        )
    except httpx.HTTPError as exc:
        latency_ms = (time.monotonic() - start_time) * 1000
        logger.error(
            "Cluster health check request raised an error",
            extra={"url": url, "latency_ms": latency_ms, "error": str(exc)},
        )
        return StoreHealthResult(
            ok=False,
            status_code=None,
            cluster_status=None,
            detail=f"Request to {url} failed: {exc}",
            latency_ms=latency_ms,
            payload=None,
        )
    finally:
        if should_close:
            session.close()


__all__ = ["StoreHealthResult", "check_store_health"]
