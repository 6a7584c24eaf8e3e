from __future__ import annotations

"""
history_store.py — история снимков пакета: stats/<package>/<MM>.<YYYY>.json

Формат файла:
  {"shots": [snapshot, snapshot, ...]}   # порядок = порядок записи

Дедупликация (record_snapshot):
  Метрики npm (особенно week/month) меняются медленно, и подряд идущие снимки
  часто совпадают. Если новый снимок равен (без учёта date) ДВУМ последним,
  история не растёт: у последнего снимка просто сдвигается date.
  Одного совпадения мало: значение могло на миг вернуться к старому, и такой
  переход терять нельзя.
"""

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from .errors import HistoryError

STATS_DIR = "stats"

APPENDED = "appended"
MERGED = "merged"

_MONTH_RE = re.compile(r"^\d{2}\.\d{4}$")


def month_key(dt: Optional[datetime] = None) -> str:
    """'03.2024' — месяц и год (UTC)."""
    d = dt or datetime.now(timezone.utc)
    return f"{d.month:02d}.{d.year:04d}"


def check_package_name(name: str) -> str:
    """Имя пакета как путь внутри stats/: "left-pad", "@scope/pkg". Никаких "..", "\\" и абсолютных путей."""
    parts = str(name).split("/")
    if not name or "\\" in name or any(p in ("", ".", "..") for p in parts):
        raise HistoryError(f'Bad package name "{name}".')
    return name


def check_month(month: str) -> str:
    if not _MONTH_RE.match(str(month)):
        raise HistoryError(f'Bad month "{month}": expected MM.YYYY.')
    return month


def equal_except_date(a: Any, b: Any) -> bool:
    """Снимки равны, если все поля (кроме date) совпадают; не-dict никогда не равен."""
    if not isinstance(a, dict) or not isinstance(b, dict):
        return False
    keys = (set(a) | set(b)) - {"date"}
    for k in keys:
        if k not in a or k not in b:
            return False
        if a[k] != b[k] or isinstance(a[k], bool) != isinstance(b[k], bool):
            return False
    return True


class SnapshotStore:
    def __init__(self, root: str | Path, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.root = Path(root)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def current_month(self) -> str:
        return month_key(self._clock())

    def package_dir(self, name: str) -> Path:
        return self.root / check_package_name(name)

    def has_package(self, name: str) -> bool:
        return self.package_dir(name).is_dir()

    def history_path(self, name: str, month: Optional[str] = None) -> Path:
        return self.package_dir(name) / f"{check_month(month or self.current_month())}.json"

    def list_months(self, name: str) -> list[str]:
        d = self.package_dir(name)
        if not d.is_dir():
            return []
        return sorted(p.stem for p in d.glob("*.json"))

    def read_history(self, name: str, month: Optional[str] = None) -> Optional[dict[str, Any]]:
        """История за месяц или None, если файла нет."""
        path = self.history_path(name, month)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except ValueError as e:
            raise HistoryError(f'Wrong history format (in "{path}"): {e}') from e
        if not isinstance(data, dict) or not isinstance(data.get("shots"), list):
            raise HistoryError(f'Wrong history format (in "{path}"): expected {{"shots": [...]}}.')
        return data

    def write_history(self, name: str, history: dict[str, Any], month: Optional[str] = None) -> Path:
        path = self.history_path(name, month)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(history, f, ensure_ascii=False)
        return path

    def record_snapshot(self, name: str, snapshot: dict[str, Any]) -> str:
        """Дописать снимок в историю текущего месяца (или продлить последний). Вернёт APPENDED | MERGED."""
        month = self.current_month()
        history = self.read_history(name, month) or {"shots": []}
        shots: list[Any] = history["shots"]

        last = shots[-1] if len(shots) >= 1 else None
        pre_last = shots[-2] if len(shots) >= 2 else None

        if equal_except_date(snapshot, last) and equal_except_date(snapshot, pre_last):
            last["date"] = snapshot.get("date")
            outcome = MERGED
        else:
            shots.append(snapshot)
            outcome = APPENDED

        self.write_history(name, history, month)
        return outcome
