"""Background analysis runs where only the most recent request of a session is published."""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, List, Optional

from backend.app.cancellation import CancellationToken
from backend.app.contracts import AnalysisReport, FilterSet
from backend.app.errors import AnalysisCancelled, NormalizationError

from .canonical import ClusterOrder
from .service import NormalizationService

LOGGER = logging.getLogger(__name__)

DEFAULT_SESSION = "default"

ReportListener = Callable[["ScheduledAnalysis"], None]


@dataclass(frozen=True)
class ScheduledAnalysis:
    """Analysis report tagged with the session and sequence number of its request."""

    session: str
    sequence: int
    report: AnalysisReport


@dataclass(frozen=True)
class AnalysisTicket:
    """Handle returned by :meth:`AnalysisScheduler.submit`.

    ``future`` resolves to the report when the request is still the latest
    one of its session on completion, and to ``None`` when a newer request
    of the same session superseded it.
    """

    session: str
    sequence: int
    token: CancellationToken
    future: "Future[Optional[AnalysisReport]]"

    def result(self, timeout: Optional[float] = None) -> Optional[AnalysisReport]:
        return self.future.result(timeout=timeout)


@dataclass
class _SessionState:
    sequence: int = 0
    active: Optional[CancellationToken] = None
    latest: Optional[ScheduledAnalysis] = None


class AnalysisScheduler:
    """Run ``analyze_field`` calls on a worker pool, last request wins per session.

    Sessions identify one operator's view. A new request cancels only the
    in-flight analysis of its own session; other sessions are unaffected.
    """

    def __init__(self, service: NormalizationService, *, max_workers: int = 2) -> None:
        if max_workers < 1:
            msg = "max_workers must be positive"
            raise ValueError(msg)
        self._service = service
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="analysis-worker",
        )
        self._lock = Lock()
        self._sessions: Dict[str, _SessionState] = {}
        self._listeners: List[ReportListener] = []

    def current_sequence(self, session: str = DEFAULT_SESSION) -> int:
        with self._lock:
            state = self._sessions.get(session)
            return state.sequence if state is not None else 0

    def latest(self, session: str = DEFAULT_SESSION) -> Optional[ScheduledAnalysis]:
        """Return the most recently published analysis of ``session``, if any."""

        with self._lock:
            state = self._sessions.get(session)
            return state.latest if state is not None else None

    def add_listener(self, listener: ReportListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def submit(
        self,
        field: str,
        filters: Optional[FilterSet] = None,
        threshold: Optional[float] = None,
        cap: Optional[int] = None,
        *,
        order: "ClusterOrder | str" = ClusterOrder.TOTAL_FREQUENCY,
        session: str = DEFAULT_SESSION,
    ) -> AnalysisTicket:
        """Queue an analysis and cancel the one queued before it in the same session.

        Args:
            field: Logical field to analyse.
            filters: Optional document filters.
            threshold: Similarity threshold; validated by the service.
            cap: Maximum number of terms compared.
            order: Presentation order of the clusters.
            session: Identifier of the operator view issuing the request.

        Returns:
            AnalysisTicket: Session, sequence number, token and future of the request.
        """

        token = CancellationToken()
        with self._lock:
            state = self._sessions.setdefault(session, _SessionState())
            state.sequence += 1
            sequence = state.sequence
            previous = state.active
            state.active = token
        if previous is not None:
            previous.cancel(f"superseded by request {sequence} of session {session}")
        future = self._executor.submit(
            self._run, session, sequence, token, field, filters, threshold, cap, order
        )
        return AnalysisTicket(session=session, sequence=sequence, token=token, future=future)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            active = [state.active for state in self._sessions.values() if state.active is not None]
            for state in self._sessions.values():
                state.active = None
        for token in active:
            token.cancel("scheduler shutdown")
        self._executor.shutdown(wait=wait)

    def _run(
        self,
        session: str,
        sequence: int,
        token: CancellationToken,
        field: str,
        filters: Optional[FilterSet],
        threshold: Optional[float],
        cap: Optional[int],
        order: "ClusterOrder | str",
    ) -> Optional[AnalysisReport]:
        try:
            report = self._service.analyze_field(
                field,
                filters,
                threshold,
                cap,
                order=order,
                cancel_token=token,
            )
        except AnalysisCancelled:
            LOGGER.debug("Analysis request %s/%d cancelled: %s", session, sequence, token.reason)
            return None
        except NormalizationError as exc:
            if self._is_current(session, sequence):
                LOGGER.warning("Analysis request %s/%d rejected: %s", session, sequence, exc)
                raise
            LOGGER.debug("Discarding failure of stale analysis request %s/%d", session, sequence)
            return None
        except Exception:
            if self._is_current(session, sequence):
                LOGGER.exception("Analysis request %s/%d failed", session, sequence)
                raise
            LOGGER.debug("Discarding failure of stale analysis request %s/%d", session, sequence)
            return None
        with self._lock:
            state = self._sessions[session]
            if sequence != state.sequence:
                LOGGER.debug(
                    "Discarding stale analysis request %s/%d (latest is %d)",
                    session,
                    sequence,
                    state.sequence,
                )
                return None
            published = ScheduledAnalysis(session=session, sequence=sequence, report=report)
            state.latest = published
            if state.active is token:
                state.active = None
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(published)
            except Exception:  # noqa: BLE001 - listeners must not break the worker
                LOGGER.exception("Analysis listener failed for request %s/%d", session, sequence)
        return report

    def _is_current(self, session: str, sequence: int) -> bool:
        with self._lock:
            state = self._sessions.get(session)
            return state is not None and sequence == state.sequence
