"""Tests for the last-request-wins analysis scheduler."""
from __future__ import annotations

from threading import Event
from typing import List

import pytest

from backend.app.cancellation import check_cancelled
from backend.app.config import load_config
from backend.app.contracts import AnalysisReport, Term
from backend.app.errors import ValidationError
from backend.app.normalization.scheduler import AnalysisScheduler, ScheduledAnalysis
from backend.app.normalization.service import NormalizationService
from backend.app.store.memory import InMemoryDocumentStore

WAIT = 5


def _report(field: str) -> AnalysisReport:
    return AnalysisReport(field=field, threshold=0.85, cap=10)


class BlockingService:
    """Service stub whose ``slow`` analysis waits until released."""

    def __init__(self) -> None:
        self.started = Event()
        self.release = Event()

    def analyze_field(self, field, filters=None, threshold=None, cap=None, *, order=None, cancel_token=None):
        if field == "slow":
            self.started.set()
            self.release.wait(WAIT)
        if field == "invalid":
            raise ValidationError("Invalid field 'invalid'")
        return _report(field)


def test_latest_request_wins() -> None:
    service = BlockingService()
    scheduler = AnalysisScheduler(service, max_workers=2)  # type: ignore[arg-type]
    published: List[ScheduledAnalysis] = []
    scheduler.add_listener(published.append)
    try:
        first = scheduler.submit("slow")
        assert service.started.wait(WAIT)
        second = scheduler.submit("Decisão")

        assert second.result(WAIT).field == "Decisão"
        service.release.set()
        assert first.result(WAIT) is None
        assert first.token.cancelled
        assert not second.token.cancelled
        assert (first.sequence, second.sequence) == (1, 2)
        assert scheduler.latest().sequence == 2
        assert [item.sequence for item in published] == [2]
    finally:
        service.release.set()
        scheduler.shutdown()


def test_superseded_analysis_stops_early() -> None:
    started = Event()
    release = Event()

    class SlowCatalog:
        def fetch(self, field, filters=None, *, size=None, cancel_token=None):
            started.set()
            release.wait(WAIT)
            check_cancelled(cancel_token)
            return [Term(key="Acordão", frequency=2), Term(key="Acórdão", frequency=1)]

    service = NormalizationService(catalog=SlowCatalog(), store=InMemoryDocumentStore(), config=load_config())
    scheduler = AnalysisScheduler(service, max_workers=2)
    try:
        first = scheduler.submit("Decisão")
        assert started.wait(WAIT)
        second = scheduler.submit("Decisão", threshold=0.9)
        release.set()
        assert first.result(WAIT) is None
        report = second.result(WAIT)
        assert report is not None
        assert report.threshold == 0.9
        assert scheduler.latest().report == report
    finally:
        release.set()
        scheduler.shutdown()


def test_errors_of_the_latest_request_propagate() -> None:
    scheduler = AnalysisScheduler(BlockingService(), max_workers=1)  # type: ignore[arg-type]
    try:
        ticket = scheduler.submit("invalid")
        with pytest.raises(ValidationError):
            ticket.result(WAIT)
        assert scheduler.latest() is None
    finally:
        scheduler.shutdown()


def test_failing_listener_does_not_lose_the_report() -> None:
    scheduler = AnalysisScheduler(BlockingService(), max_workers=1)  # type: ignore[arg-type]

    def broken_listener(_: ScheduledAnalysis) -> None:
        raise RuntimeError("listener failed")

    scheduler.add_listener(broken_listener)
    try:
        assert scheduler.submit("Decisão").result(WAIT).field == "Decisão"
        assert scheduler.current_sequence() == 1
        assert scheduler.current_sequence("other") == 0
    finally:
        scheduler.shutdown()


def test_invalid_worker_count_is_rejected() -> None:
    with pytest.raises(ValueError):
        AnalysisScheduler(BlockingService(), max_workers=0)  # type: ignore[arg-type]


def test_sessions_do_not_supersede_each_other() -> None:
    service = BlockingService()
    scheduler = AnalysisScheduler(service, max_workers=2)  # type: ignore[arg-type]
    published: List[ScheduledAnalysis] = []
    scheduler.add_listener(published.append)
    try:
        first = scheduler.submit("slow", session="operator-a")
        assert service.started.wait(WAIT)
        second = scheduler.submit("Decisão", session="operator-b")

        assert second.result(WAIT).field == "Decisão"
        service.release.set()
        report = first.result(WAIT)
        assert report is not None
        assert report.field == "slow"
        assert not first.token.cancelled
        assert (first.sequence, second.sequence) == (1, 1)
        assert scheduler.latest("operator-a").report.field == "slow"
        assert scheduler.latest("operator-b").report.field == "Decisão"
        assert scheduler.latest() is None
        assert sorted(item.session for item in published) == ["operator-a", "operator-b"]
    finally:
        service.release.set()
        scheduler.shutdown()


def test_newer_request_only_cancels_its_own_session() -> None:
    service = BlockingService()
    scheduler = AnalysisScheduler(service, max_workers=3)  # type: ignore[arg-type]
    try:
        other = scheduler.submit("slow", session="operator-b")
        assert service.started.wait(WAIT)
        stale = scheduler.submit("slow", session="operator-a")
        fresh = scheduler.submit("Descritores", session="operator-a")

        assert fresh.result(WAIT).field == "Descritores"
        assert stale.token.cancelled
        assert not other.token.cancelled
        service.release.set()
        assert other.result(WAIT).field == "slow"
        assert stale.result(WAIT) is None
        assert scheduler.current_sequence("operator-a") == 2
        assert scheduler.current_sequence("operator-b") == 1
    finally:
        service.release.set()
        scheduler.shutdown()
