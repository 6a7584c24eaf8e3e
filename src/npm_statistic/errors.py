from __future__ import annotations

"""
errors.py — ошибки, которые CLI показывает человеку текстом (без traceback).

Всё, что наследует NpmStatisticError, перехватывается в cli.main():
сообщение уходит в stderr, процесс завершается с exit_code (по умолчанию 0).
"""

from typing import Optional


class NpmStatisticError(Exception):
    exit_code: int = 0

    def __init__(self, message: str, *, exit_code: Optional[int] = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = int(exit_code)


class ConfigError(NpmStatisticError):
    """Конфиг не читается как JSON-объект или содержит негодные настройки."""


class PathError(NpmStatisticError):
    """Dot-path нельзя адресовать: родитель не dict и не list."""


class HistoryError(NpmStatisticError):
    """Файл истории пакета повреждён (не JSON или без списка shots)."""
