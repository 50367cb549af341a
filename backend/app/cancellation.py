"""Cooperative cancellation shared by analysis and bulk rewrites."""
from __future__ import annotations

from threading import Event
from typing import Optional

from backend.app.errors import AnalysisCancelled


class CancellationToken:
    """Flag checked by long-running work to stop early once superseded."""

    def __init__(self) -> None:
        self._event = Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation; the first reason given is kept."""

        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self) -> None:
        """Raise :class:`AnalysisCancelled` when cancellation was requested."""

        if self._event.is_set():
            raise AnalysisCancelled(self._reason or "cancelled")


def check_cancelled(token: Optional[CancellationToken]) -> None:
    """Raise when ``token`` is set; tolerate a missing token."""

    if token is not None:
        token.raise_if_cancelled()
