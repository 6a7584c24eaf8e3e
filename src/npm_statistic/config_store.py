from __future__ import annotations

"""
config_store.py — config.json: единый плоский JSON-документ с настройками и списком пакетов.

Файл читается и пишется целиком. Команды get/set ходят по нему dot-path'ом
(json_path.py), update берёт отсюда список активных пакетов и UpdateSettings.

Пример
------
{
  "packages": [{"name": "react"}, {"name": "left-pad", "skip": true}],
  "maxOpen": 2,
  "attempts": 4,
  "timeout": 10,
  "retryInterval": 0.5,
  "url": "https://www.npmjs.com/package/{name}"
}
"""

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .errors import ConfigError

CONFIG_NAME = "config.json"

DEFAULT_URL = "https://www.npmjs.com/package/{name}"


class ConfigStore:
    """Чтение/запись config.json. Документ — всегда dict на верхнем уровне."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def ensure(self) -> bool:
        """Создать пустой конфиг {}, если файла нет. True — если создали."""
        if self.path.exists():
            return False
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.save({})
        return True

    def load(self) -> dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f'Wrong config format (in "{self.path}"): {e}') from e
        if not isinstance(data, dict):
            raise ConfigError(f'Wrong config format (in "{self.path}"): top level must be an object.')
        return data

    def save(self, data: dict[str, Any]) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)


def packages_of(config: dict[str, Any]) -> list[Any]:
    packages = config.get("packages")
    if packages is None:
        return []
    if not isinstance(packages, list):
        raise ConfigError('"packages" must be a list.')
    return packages


def find_package(config: dict[str, Any], name: str) -> Optional[dict[str, Any]]:
    for p in packages_of(config):
        if isinstance(p, dict) and p.get("name") == name:
            return p
    return None


def active_packages(config: dict[str, Any]) -> list[str]:
    """Имена пакетов без skip (в порядке конфига)."""
    out: list[str] = []
    for p in packages_of(config):
        if not isinstance(p, dict):
            continue
        name = p.get("name")
        if isinstance(name, str) and name and not p.get("skip"):
            out.append(name)
    return out


def _number(cfg: dict[str, Any], key: str, default: Any, cast: type, *, minimum: float, strict: bool = False) -> Any:
    raw = cfg.get(key)
    if raw is None:
        return default
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        raise ConfigError(f'Config "{key}" must be a number, got {raw!r}.')
    try:
        val = cast(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f'Config "{key}" must be a number, got {raw!r}.') from e
    if val < minimum or (strict and val == minimum):
        op = ">" if strict else ">="
        raise ConfigError(f'Config "{key}" must be {op} {minimum}, got {raw!r}.')
    return val


@dataclass
class UpdateSettings:
    """
    Ручки планировщика update.

    - max_open: сколько запросов одновременно "в полёте"
    - attempts: бюджет повторов пакета по таймауту (на один прогон)
    - timeout: дедлайн одного запроса, секунды
    - retry_interval: как часто пакет, ждущий свободного слота, перепроверяет его
    - schedule_margin: запас к расчётной границе перепроверок
    - schedule_retries: явная граница перепроверок (None => считается, см. slot_retry_bound)
    """
    max_open: int = 2
    attempts: int = 4
    timeout: float = 10.0
    retry_interval: float = 0.5
    schedule_margin: int = 10
    schedule_retries: Optional[int] = None
    url: str = DEFAULT_URL
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_config(cls, cfg: dict[str, Any]) -> "UpdateSettings":
        d = cls()
        url = cfg.get("url", d.url)
        if not isinstance(url, str) or "{name}" not in url:
            raise ConfigError('Config "url" must be a string with "{name}" placeholder.')
        headers = cfg.get("headers") or {}
        if not isinstance(headers, dict):
            raise ConfigError('Config "headers" must be an object.')
        retries = cfg.get("scheduleRetries")
        return cls(
            max_open=_number(cfg, "maxOpen", d.max_open, int, minimum=1),
            attempts=_number(cfg, "attempts", d.attempts, int, minimum=0),
            timeout=_number(cfg, "timeout", d.timeout, float, minimum=0, strict=True),
            retry_interval=_number(cfg, "retryInterval", d.retry_interval, float, minimum=0, strict=True),
            schedule_margin=_number(cfg, "scheduleMargin", d.schedule_margin, int, minimum=0),
            schedule_retries=None if retries is None else _number(cfg, "scheduleRetries", None, int, minimum=0),
            url=url,
            headers={str(k): str(v) for k, v in headers.items()},
        )

    def slot_retry_bound(self, total: int) -> int:
        """Сколько раз пакет может перепроверить занятый слот, прежде чем его бросят.

        Грубо: сколько интервалов перепроверки укладывается в "волны" запросов
        (total / max_open волн по timeout каждая) + фиксированный запас.
        """
        if self.schedule_retries is not None:
            return int(self.schedule_retries)
        waves = max(1, math.ceil(max(0, int(total)) / self.max_open))
        return int(math.ceil(self.timeout / self.retry_interval * waves)) + int(self.schedule_margin)
