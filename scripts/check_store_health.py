#!/usr/bin/env python3
"""CLI utility to verify that the Elasticsearch cluster behind the store is reachable."""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from backend.app.config import load_config
from backend.app.store.health import check_store_health


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments for the store health check.

    Returns:
        argparse.Namespace: Parsed command line arguments.
    """
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "base_url",
        nargs="?",
        default=None,
        help="Elasticsearch base URL (default: store.base_url from config.yaml)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=5.0,
        help="Request timeout in seconds (default: 5.0)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the CLI health check utility.

    Returns:
        int: Exit status code where ``0`` indicates success.
    """
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    args = parse_args(argv)

    base_url = args.base_url or load_config().store.base_url
    if not base_url:
        print("No Elasticsearch URL given and store.base_url is not configured", file=sys.stderr)
        return 2

    result = check_store_health(base_url, timeout=args.timeout)

    if result.ok:
        print(
            "Store health check succeeded",
            f"cluster_status={result.cluster_status}",
            f"latency_ms={result.latency_ms:.2f}" if result.latency_ms is not None else "latency_ms=unknown",
        )
        return 0

    print("Store health check failed:", result.detail, file=sys.stderr)
    if result.status_code is not None:
        print(f"Status code: {result.status_code}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
