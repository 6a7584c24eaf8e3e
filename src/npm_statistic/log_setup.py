from __future__ import annotations

"""
log_setup.py — журнал прогонов.

Две точки вывода:
- файл npm-statistic.log (append-only, строка = время + сообщение) — история всех update;
- stderr — то же самое в коротком виде, чтобы видеть прогресс вживую.

configure_logging() можно звать повторно (тесты, несколько main() в одном процессе):
ранее поставленные нами handlers снимаются и закрываются.
"""

import logging
import sys
from collections import deque
from pathlib import Path
from typing import Optional

LOGGER_NAME = "npm_statistic"
LOG_NAME = "npm-statistic.log"
FILE_FORMAT = "%(asctime)s %(message)s"
CONSOLE_FORMAT = "%(message)s"

_OWN_HANDLER_ATTR = "_npm_statistic_handler"


def configure_logging(log_path: str | Path, *, verbose: bool = False) -> logging.Logger:
    log = logging.getLogger(LOGGER_NAME)
    log.setLevel(logging.DEBUG)

    for h in list(log.handlers):
        if getattr(h, _OWN_HANDLER_ATTR, False):
            log.removeHandler(h)
            h.close()

    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    for h in (file_handler, console):
        setattr(h, _OWN_HANDLER_ATTR, True)
        log.addHandler(h)
    return log


def read_log(log_path: str | Path, count: Optional[int] = None) -> list[str]:
    """Строки журнала; count — только последние N. Нет файла => пустой список."""
    path = Path(log_path)
    if not path.exists():
        return []
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        if count is None:
            return [line.rstrip("\n") for line in f]
        if count <= 0:
            return []
        return [line.rstrip("\n") for line in deque(f, maxlen=count)]
