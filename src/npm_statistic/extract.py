from __future__ import annotations

"""
extract.py — разбор HTML-страницы пакета в снимок (snapshot).

Это НЕ HTML-парсер: страница npm для нас "чёрный ящик", из которого регулярками
вынимаются несколько полей. Шаблоны — заменяемая часть (ExtractRules), их можно
переопределить в конфиге ключом "patterns" без правки кода.

Поля снимка:
  date, httpStatus          — всегда
  name                      — без него разбор прекращается (error = "Cannot find name.")
  version, release          — одна регулярка, 2 группы: версия и число релизов
  dependencies              — число зависимостей
  publisher, publishDate    — одна регулярка, 2 группы
  day, week, month          — скачивания за день/неделю/месяц

Каждое ненайденное поле — одна строка в логе "cannot find <field>", поле просто отсутствует.
"""

import html
import logging
import re
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

NAME_ERROR = "Cannot find name."

_FLAGS = re.IGNORECASE | re.DOTALL

DEFAULT_PATTERNS: dict[str, str] = {
    "name": r'<h1[^>]*class="[^"]*package-name[^"]*"[^>]*>\s*<a[^>]*>([^<]+)</a>',
    "version": r'<strong>([^<]+)</strong>\s*is the latest\s*<strong>of\s*([\d,]+)\s*releases?</strong>',
    "dependencies": r'<h3[^>]*>\s*Dependencies\s*\(([^)]*)\)\s*</h3>',
    "publisher": r'<li[^>]*class="[^"]*last-publisher[^"]*"[^>]*>.*?<span>([^<]+)</span>.*?data-date="([^"]+)"',
    "day": r'<strong[^>]*class="[^"]*daily-downloads[^"]*"[^>]*>([^<]*)</strong>',
    "week": r'<strong[^>]*class="[^"]*weekly-downloads[^"]*"[^>]*>([^<]*)</strong>',
    "month": r'<strong[^>]*class="[^"]*monthly-downloads[^"]*"[^>]*>([^<]*)</strong>',
}

# сколько групп захвата должно быть в шаблоне поля
PATTERN_GROUPS: dict[str, int] = {"version": 2, "publisher": 2}


@dataclass(frozen=True)
class ExtractRules:
    name: re.Pattern[str]
    version: re.Pattern[str]
    dependencies: re.Pattern[str]
    publisher: re.Pattern[str]
    day: re.Pattern[str]
    week: re.Pattern[str]
    month: re.Pattern[str]

    @classmethod
    def from_dict(cls, overrides: Optional[dict[str, Any]] = None) -> "ExtractRules":
        """Собрать правила: DEFAULT_PATTERNS + переопределения (ключи = имена полей dataclass)."""
        merged = dict(DEFAULT_PATTERNS)
        if overrides:
            if not isinstance(overrides, dict):
                raise ConfigError('Config "patterns" must be an object.')
            for k, v in overrides.items():
                if k not in merged:
                    raise ConfigError(f'Unknown pattern "{k}". Expected one of: {", ".join(sorted(merged))}.')
                if not isinstance(v, str):
                    raise ConfigError(f'Pattern "{k}" must be a string.')
                merged[k] = v

        compiled: dict[str, re.Pattern[str]] = {}
        for f in fields(cls):
            try:
                compiled[f.name] = re.compile(merged[f.name], _FLAGS)
            except re.error as e:
                raise ConfigError(f'Bad pattern "{f.name}": {e}') from e
            need = PATTERN_GROUPS.get(f.name, 1)
            if compiled[f.name].groups < need:
                raise ConfigError(
                    f'Bad pattern "{f.name}": needs {need} capture group(s), got {compiled[f.name].groups}.'
                )
        return cls(**compiled)


DEFAULT_RULES = ExtractRules.from_dict()


def now_iso(now: Optional[datetime] = None) -> str:
    dt = now or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _text(raw: str) -> str:
    return html.unescape(raw).strip()


def parse_count(raw: Optional[str]) -> int:
    """'1,234' -> 1234; мусор -> 0."""
    s = re.sub(r"[\s,]", "", raw or "")
    try:
        return int(s)
    except ValueError:
        return 0


def extract_snapshot(
    document: Optional[str],
    http_status: int,
    rules: Optional[ExtractRules] = None,
    *,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    rules = rules or DEFAULT_RULES
    text = document or ""
    shot: dict[str, Any] = {"date": now_iso(now), "httpStatus": int(http_status)}

    m = rules.name.search(text)
    if m is None:
        shot["error"] = NAME_ERROR
        logger.warning("cannot find name")
        return shot
    shot["name"] = _text(m.group(1))

    m = rules.version.search(text)
    if m is None:
        logger.warning("cannot find version")
    else:
        shot["version"] = _text(m.group(1))
        shot["release"] = parse_count(m.group(2))

    m = rules.dependencies.search(text)
    if m is None:
        logger.warning("cannot find dependencies")
    else:
        shot["dependencies"] = parse_count(m.group(1))

    m = rules.publisher.search(text)
    if m is None:
        logger.warning("cannot find publisher")
    else:
        shot["publisher"] = _text(m.group(1))
        shot["publishDate"] = _text(m.group(2))

    for key in ("day", "week", "month"):
        m = getattr(rules, key).search(text)
        if m is None:
            logger.warning("cannot find %s", key)
            continue
        shot[key] = parse_count(m.group(1))

    return shot
