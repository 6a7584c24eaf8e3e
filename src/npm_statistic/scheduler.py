from __future__ import annotations

"""
scheduler.py — планировщик update: N пакетов, потолок одновременных запросов, таймауты, повторы.

Жизненный цикл пакета:

    PENDING -> ATTEMPTING -> SUCCEEDED
                    |
                    +--> RETRYING -> ATTEMPTING ...   (таймаут, бюджет ещё есть)
                    +--> SKIPPED                       (таймаут, бюджет исчерпан)
    PENDING/RETRYING -> WAITING -> ... -> DROPPED      (слот так и не освободился)

Модель исполнения:
- ВСЁ состояние прогона (RunContext) живёт в одном потоке — цикле событий run().
- Блокирующий GET выполняется в рабочем потоке; поток ничего не трогает,
  только кладёт ровно одно событие (response | timeout | error) в очередь.
- Снятие по дедлайну: запросу выставляется cancel (threading.Event), fetch
  обязан по нему закрыть соединение. Слот при этом остаётся занятым, пока
  рабочий поток реально не вернулся: ctx.open считает запросы, которых ещё
  ждёт планировщик, а _workers считает живые потоки. Новый запрос уходит
  только когда оба счётчика ниже max_open.
- Таймеры (дедлайн запроса, перепроверка слота) — heap по time.monotonic().

Инварианты:
- ctx.open <= settings.max_open и живых рабочих потоков <= max_open в любой момент;
- ctx.left уменьшается ровно один раз на пакет — когда ответ получен целиком
  и отдан в extract + on_snapshot. Таймаут и skip left не трогают;
- бюджет попыток создаётся при первом планировании пакета и тратится только на таймаутах.

Сетевая ошибка (не таймаут) только логируется: запрос остаётся "открытым",
пока не сработает его дедлайн, а дальше идёт обычной дорогой таймаута.
"""

import heapq
import itertools
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional

import requests

from .config_store import UpdateSettings
from .errors import NpmStatisticError
from .extract import ExtractRules, extract_snapshot

logger = logging.getLogger(__name__)

Fetch = Callable[[str, float, threading.Event], tuple[int, str]]
OnSnapshot = Callable[[str, dict[str, Any]], Any]


class PackageState(str, Enum):
    PENDING = "pending"
    WAITING = "waiting"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    DROPPED = "dropped"


TERMINAL_STATES = frozenset({PackageState.SUCCEEDED, PackageState.SKIPPED, PackageState.DROPPED})


@dataclass
class RunContext:
    started: float
    left: int
    attempts: dict[str, int] = field(default_factory=dict)
    open: int = 0
    peak_open: int = 0
    states: dict[str, PackageState] = field(default_factory=dict)


@dataclass
class RunReport:
    states: dict[str, PackageState]
    left: int
    peak_open: int
    requests: int
    elapsed: float

    def names_in(self, state: PackageState) -> list[str]:
        return [n for n, st in self.states.items() if st == state]

    @property
    def succeeded(self) -> list[str]:
        return self.names_in(PackageState.SUCCEEDED)

    @property
    def skipped(self) -> list[str]:
        return self.names_in(PackageState.SKIPPED)

    @property
    def dropped(self) -> list[str]:
        return self.names_in(PackageState.DROPPED)

    def summary(self) -> str:
        return (
            f"update finished in {self.elapsed:.2f}s: "
            f"{len(self.succeeded)} ok, {len(self.skipped)} skipped, {len(self.dropped)} dropped "
            f"({self.requests} requests)"
        )


class FetchScheduler:
    def __init__(
        self,
        fetch: Fetch,
        on_snapshot: OnSnapshot,
        settings: Optional[UpdateSettings] = None,
        *,
        rules: Optional[ExtractRules] = None,
    ) -> None:
        self._fetch = fetch
        self._on_snapshot = on_snapshot
        self.settings = settings or UpdateSettings()
        self._rules = rules

        self._events: "queue.Queue[tuple[str, int, Any]]" = queue.Queue()
        self._timers: list[tuple[float, int, Callable[[], None]]] = []
        self._live_timers: set[int] = set()
        self._seq = itertools.count(1)
        self._inflight: dict[int, str] = {}
        self._deadlines: dict[int, int] = {}
        self._cancels: dict[int, threading.Event] = {}
        self._workers: set[int] = set()
        self._slot_bound = 0
        self._requests = 0
        self.ctx: Optional[RunContext] = None

    # --------- public ---------

    def run(self, packages: Iterable[str]) -> RunReport:
        names = list(dict.fromkeys(packages))
        ctx = RunContext(started=time.monotonic(), left=len(names))
        self.ctx = ctx
        self._requests = 0

        if not names:
            logger.info("no active packages")
            return self._report()

        self._slot_bound = self.settings.slot_retry_bound(len(names))
        logger.info(
            "update %d packages (maxOpen=%d, attempts=%d, timeout=%.1fs)",
            len(names), self.settings.max_open, self.settings.attempts, self.settings.timeout,
        )
        for name in names:
            ctx.states[name] = PackageState.PENDING
            self._schedule(name, 0)

        self._loop()
        return self._report()

    # --------- event loop ---------

    def _loop(self) -> None:
        while self._inflight or self._live_timers or self._workers:
            due = self._next_due()
            wait = None if due is None else max(0.0, due - time.monotonic())
            try:
                kind, rid, payload = self._events.get(timeout=wait)
            except queue.Empty:
                pass
            else:
                self._dispatch(kind, rid, payload)
            self._fire_due_timers()

    def _call_later(self, delay: float, callback: Callable[[], None]) -> int:
        tid = next(self._seq)
        heapq.heappush(self._timers, (time.monotonic() + float(delay), tid, callback))
        self._live_timers.add(tid)
        return tid

    def _cancel(self, tid: Optional[int]) -> None:
        if tid is not None:
            self._live_timers.discard(tid)

    def _next_due(self) -> Optional[float]:
        # отменённые таймеры выкидываем лениво, когда они всплывают наверх heap
        while self._timers and self._timers[0][1] not in self._live_timers:
            heapq.heappop(self._timers)
        return self._timers[0][0] if self._timers else None

    def _fire_due_timers(self) -> None:
        now = time.monotonic()
        while self._timers and self._timers[0][0] <= now:
            _, tid, callback = heapq.heappop(self._timers)
            if tid in self._live_timers:
                self._live_timers.discard(tid)
                callback()

    # --------- package lifecycle ---------

    def _schedule(self, name: str, waits: int) -> None:
        ctx = self._ctx()
        ctx.attempts.setdefault(name, self.settings.attempts)

        if self._has_slot():
            self._issue(name)
            return

        if waits >= self._slot_bound:
            ctx.states[name] = PackageState.DROPPED
            logger.warning("%s: no free slot after %d checks, drop scheduling", name, waits)
            return

        ctx.states[name] = PackageState.WAITING
        self._call_later(self.settings.retry_interval, lambda: self._schedule(name, waits + 1))

    def _issue(self, name: str) -> None:
        ctx = self._ctx()
        rid = next(self._seq)
        self._inflight[rid] = name
        ctx.open += 1
        ctx.peak_open = max(ctx.peak_open, ctx.open)
        ctx.states[name] = PackageState.ATTEMPTING
        self._requests += 1
        cancel = threading.Event()
        self._cancels[rid] = cancel
        self._workers.add(rid)
        self._deadlines[rid] = self._call_later(self.settings.timeout, lambda: self._on_timeout(rid))

        logger.debug("%s: request #%d sent {open: %d, left: %d}", name, rid, ctx.open, ctx.left)
        threading.Thread(
            target=self._worker,
            args=(rid, name, cancel),
            name=f"npm-statistic-fetch-{rid}",
            daemon=True,
        ).start()

    def _worker(self, rid: int, name: str, cancel: threading.Event) -> None:
        try:
            status, body = self._fetch(name, self.settings.timeout, cancel)
        except requests.Timeout as e:
            self._events.put(("timeout", rid, e))
        except Exception as e:
            # поток не решает судьбу запроса: любой сбой уходит в цикл событий
            self._events.put(("error", rid, e))
        else:
            self._events.put(("response", rid, (status, body)))

    def _dispatch(self, kind: str, rid: int, payload: Any) -> None:
        self._workers.discard(rid)
        self._cancels.pop(rid, None)
        name = self._inflight.get(rid)
        if name is None:
            logger.debug("late %s for aborted request #%d ignored", kind, rid)
            return

        if kind == "response":
            status, body = payload
            self._on_response(rid, name, int(status), body)
        elif kind == "timeout":
            self._on_timeout(rid)
        else:
            logger.warning("%s: request error: %s", name, payload)

    def _release(self, rid: int) -> Optional[str]:
        name = self._inflight.pop(rid, None)
        if name is None:
            return None
        self._cancel(self._deadlines.pop(rid, None))
        cancel = self._cancels.get(rid)
        if cancel is not None:
            cancel.set()
        self._ctx().open -= 1
        return name

    def _on_response(self, rid: int, name: str, status: int, body: str) -> None:
        ctx = self._ctx()
        self._release(rid)
        ctx.left -= 1
        ctx.states[name] = PackageState.SUCCEEDED

        snapshot = extract_snapshot(body, status, self._rules)
        logger.info(
            "%s: %d, %.2fs {open: %d, left: %d}",
            name, status, time.monotonic() - ctx.started, ctx.open, ctx.left,
        )
        try:
            self._on_snapshot(name, snapshot)
        except (NpmStatisticError, OSError) as e:
            logger.error("%s: cannot save snapshot: %s", name, e)

    def _on_timeout(self, rid: int) -> None:
        name = self._release(rid)
        if name is None:
            return
        ctx = self._ctx()
        ctx.attempts[name] -= 1
        remaining = ctx.attempts[name]

        if remaining >= 0:
            ctx.states[name] = PackageState.RETRYING
            logger.warning("%s: aborted by timeout, %d attempts left", name, remaining)
            self._schedule(name, 0)
        else:
            ctx.states[name] = PackageState.SKIPPED
            logger.error("%s: no attempts left, skip package", name)

    # --------- helpers ---------

    def _has_slot(self) -> bool:
        cap = self.settings.max_open
        return self._ctx().open < cap and len(self._workers) < cap

    def _ctx(self) -> RunContext:
        assert self.ctx is not None
        return self.ctx

    def _report(self) -> RunReport:
        ctx = self._ctx()
        return RunReport(
            states=dict(ctx.states),
            left=ctx.left,
            peak_open=ctx.peak_open,
            requests=self._requests,
            elapsed=time.monotonic() - ctx.started,
        )
