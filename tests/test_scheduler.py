from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

import requests

from npm_statistic.config_store import UpdateSettings
from npm_statistic.scheduler import FetchScheduler, PackageState

FIXTURES = Path(__file__).parent / "fixtures"
PAGE = (FIXTURES / "left-pad.html").read_text(encoding="utf-8")


def _settings(**kw: Any) -> UpdateSettings:
    base: dict[str, Any] = {"max_open": 2, "attempts": 4, "timeout": 2.0, "retry_interval": 0.01}
    base.update(kw)
    return UpdateSettings(**base)


class FakeFetch:
    """fetch(name, timeout) с подменяемым поведением; считает вызовы и реальную параллельность."""

    def __init__(self, behavior: Optional[Callable[[str, int], tuple[int, str]]] = None) -> None:
        self.behavior = behavior or (lambda name, n: (200, PAGE))
        self.calls: list[str] = []
        self.cancel_of: dict[tuple[str, int], threading.Event] = {}
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self, name: str, timeout: float, cancel: threading.Event) -> tuple[int, str]:
        with self._lock:
            self.calls.append(name)
            n = self.calls.count(name)
            self.cancel_of[(name, n)] = cancel
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            return self.behavior(name, n)
        finally:
            with self._lock:
                self.active -= 1


class Saved:
    def __init__(self) -> None:
        self.shots: dict[str, dict[str, Any]] = {}

    def __call__(self, name: str, snapshot: dict[str, Any]) -> None:
        self.shots[name] = snapshot


def _slow(delay: float) -> Callable[[str, int], tuple[int, str]]:
    def behavior(name: str, n: int) -> tuple[int, str]:
        time.sleep(delay)
        return 200, PAGE
    return behavior


def test_every_package_succeeds_and_is_recorded():
    names = [f"pkg{i}" for i in range(5)]
    fetch, saved = FakeFetch(_slow(0.02)), Saved()

    report = FetchScheduler(fetch, saved, _settings()).run(names)

    assert sorted(report.succeeded) == names
    assert report.left == 0
    assert report.requests == 5
    assert sorted(saved.shots) == names
    assert saved.shots["pkg0"]["name"] == "left-pad"
    assert saved.shots["pkg0"]["httpStatus"] == 200


def test_open_requests_never_exceed_cap():
    names = [f"pkg{i}" for i in range(12)]
    fetch = FakeFetch(_slow(0.03))

    report = FetchScheduler(fetch, Saved(), _settings(max_open=3)).run(names)

    assert len(report.succeeded) == 12
    assert report.peak_open <= 3
    assert fetch.peak <= 3


def test_timeouts_spend_the_whole_attempt_budget(caplog):
    caplog.set_level(logging.DEBUG)

    def always_timeout(name: str, n: int) -> tuple[int, str]:
        raise requests.Timeout("read timed out")

    fetch, saved = FakeFetch(always_timeout), Saved()
    scheduler = FetchScheduler(fetch, saved, _settings(attempts=3))

    report = scheduler.run(["slowpoke"])

    assert len(fetch.calls) == 4  # первая попытка + 3 повтора
    assert report.states == {"slowpoke": PackageState.SKIPPED}
    assert report.left == 1
    assert scheduler.ctx is not None and scheduler.ctx.attempts["slowpoke"] == -1
    assert saved.shots == {}

    msgs = [r.getMessage() for r in caplog.records]
    assert "slowpoke: aborted by timeout, 2 attempts left" in msgs
    assert "slowpoke: aborted by timeout, 0 attempts left" in msgs
    assert "slowpoke: no attempts left, skip package" in msgs


def test_budget_is_per_package():
    def flaky(name: str, n: int) -> tuple[int, str]:
        if name == "bad":
            raise requests.Timeout()
        return 200, PAGE

    scheduler = FetchScheduler(FakeFetch(flaky), Saved(), _settings(attempts=2))
    report = scheduler.run(["good", "bad"])

    assert report.states == {"good": PackageState.SUCCEEDED, "bad": PackageState.SKIPPED}
    assert report.left == 1
    assert scheduler.ctx is not None
    assert scheduler.ctx.attempts == {"good": 2, "bad": -1}


def test_deadline_aborts_hanging_request_and_retries():
    def hangs_once(name: str, n: int) -> tuple[int, str]:
        if n == 1:
            # висит, пока планировщик не снимет запрос по дедлайну
            assert fetch.cancel_of[(name, n)].wait(5)
            raise requests.Timeout("aborted")
        return 200, PAGE

    fetch, saved = FakeFetch(hangs_once), Saved()
    scheduler = FetchScheduler(fetch, saved, _settings(timeout=0.1))
    report = scheduler.run(["pkg"])

    assert report.states == {"pkg": PackageState.SUCCEEDED}
    assert report.left == 0
    assert len(fetch.calls) == 2
    assert scheduler.ctx is not None and scheduler.ctx.attempts["pkg"] == 3
    assert "pkg" in saved.shots


def test_network_error_is_logged_and_resolved_by_deadline(caplog):
    caplog.set_level(logging.DEBUG)

    def refuses_once(name: str, n: int) -> tuple[int, str]:
        if n == 1:
            raise requests.ConnectionError("connection refused")
        return 200, PAGE

    fetch = FakeFetch(refuses_once)
    scheduler = FetchScheduler(fetch, Saved(), _settings(timeout=0.1))
    report = scheduler.run(["pkg"])

    assert report.states == {"pkg": PackageState.SUCCEEDED}
    assert len(fetch.calls) == 2
    assert scheduler.ctx is not None and scheduler.ctx.attempts["pkg"] == 3
    msgs = [r.getMessage() for r in caplog.records]
    assert any(m.startswith("pkg: request error: connection refused") for m in msgs)
    assert "pkg: aborted by timeout, 3 attempts left" in msgs


def test_waiting_package_is_dropped_when_slot_never_frees(caplog):
    caplog.set_level(logging.DEBUG)
    fetch = FakeFetch(_slow(0.3))
    scheduler = FetchScheduler(fetch, Saved(), _settings(max_open=1, schedule_retries=3))

    report = scheduler.run(["first", "second"])

    assert report.states == {"first": PackageState.SUCCEEDED, "second": PackageState.DROPPED}
    assert report.left == 1
    assert fetch.calls == ["first"]
    assert scheduler.ctx is not None and scheduler.ctx.attempts["second"] == 4
    assert "second: no free slot after 3 checks, drop scheduling" in [r.getMessage() for r in caplog.records]


def test_waiting_package_gets_slot_when_it_frees():
    fetch = FakeFetch(_slow(0.05))
    report = FetchScheduler(fetch, Saved(), _settings(max_open=1)).run(["a", "b", "c"])

    assert sorted(report.succeeded) == ["a", "b", "c"]
    assert report.peak_open == 1


def test_progress_line_reports_open_and_left(caplog):
    caplog.set_level(logging.INFO)
    FetchScheduler(FakeFetch(), Saved(), _settings(max_open=1)).run(["only"])

    progress = [r.getMessage() for r in caplog.records if r.getMessage().startswith("only: 200")]
    assert len(progress) == 1
    assert progress[0].endswith("{open: 0, left: 0}")


def test_store_failure_does_not_stop_other_packages(caplog):
    caplog.set_level(logging.DEBUG)
    saved = Saved()

    def on_snapshot(name: str, snapshot: dict[str, Any]) -> None:
        if name == "broken":
            raise OSError("disk full")
        saved(name, snapshot)

    report = FetchScheduler(FakeFetch(), on_snapshot, _settings()).run(["broken", "fine"])

    assert report.left == 0
    assert sorted(saved.shots) == ["fine"]
    assert "broken: cannot save snapshot: disk full" in [r.getMessage() for r in caplog.records]


def test_no_active_packages_is_a_noop(caplog):
    caplog.set_level(logging.INFO)
    fetch = FakeFetch()

    report = FetchScheduler(fetch, Saved(), _settings()).run([])

    assert report.states == {}
    assert report.requests == 0
    assert fetch.calls == []
    assert "no active packages" in [r.getMessage() for r in caplog.records]


def test_timed_out_request_keeps_its_slot_until_worker_returns():
    # fetch не реагирует на cancel и спит дольше дедлайна
    fetch = FakeFetch(_slow(0.3))
    settings = _settings(max_open=1, attempts=2, timeout=0.1, retry_interval=0.05, schedule_retries=100)

    report = FetchScheduler(fetch, Saved(), settings).run(["a", "b"])

    assert fetch.peak <= 1
    assert report.peak_open <= 1
    assert report.states == {"a": PackageState.SKIPPED, "b": PackageState.SKIPPED}
    assert all(c.is_set() for c in fetch.cancel_of.values())
    assert fetch.active == 0  # run() дождался всех рабочих потоков


def test_cancelled_fetch_frees_slot_for_retry():
    def hangs_until_cancelled(name: str, n: int) -> tuple[int, str]:
        if n == 1:
            fetch.cancel_of[(name, n)].wait(5)
            raise requests.Timeout("aborted")
        return 200, PAGE

    fetch = FakeFetch(hangs_until_cancelled)
    report = FetchScheduler(fetch, Saved(), _settings(max_open=1, timeout=0.1, schedule_retries=200)).run(["a", "b"])

    assert sorted(report.succeeded) == ["a", "b"]
    assert fetch.peak <= 1
    assert len(fetch.calls) == 4
