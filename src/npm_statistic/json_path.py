from __future__ import annotations

"""json_path.py — dot-path доступ к конфигу: чтение, запись, удаление.

Dot-path:
  - "a.b.c" для dict
  - "packages.0.skip" для list (сегмент = индекс, если текущее значение — list)

Отсутствие значения — это MISSING, а не None: None означает JSON null
и должен отличаться от "ключа нет" (в CLI это печатается как "undefined").
"""

from typing import Any, Optional

from .errors import PathError


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def as_index(seg: str) -> Optional[int]:
    """Сегмент как индекс списка: только каноническое неотрицательное число ("4", но не "04")."""
    if seg.isdigit() and str(int(seg)) == seg:
        return int(seg)
    return None


def split_path(path: str) -> list[str]:
    return str(path).split(".")


def get_by_path(obj: Any, path: str) -> Any:
    """Вернуть значение по dot-path или MISSING, если путь не существует."""
    cur = obj
    for seg in split_path(path):
        if isinstance(cur, list):
            idx = as_index(seg)
            if idx is None or idx >= len(cur):
                return MISSING
            cur = cur[idx]
            continue

        if isinstance(cur, dict):
            if seg not in cur:
                return MISSING
            cur = cur[seg]
            continue

        return MISSING
    return cur


def _parent_of(obj: Any, path: str) -> tuple[Any, str]:
    segs = split_path(path)
    parent = get_by_path(obj, ".".join(segs[:-1])) if len(segs) > 1 else obj
    return parent, segs[-1]


def set_by_path(obj: Any, path: str, value: Any) -> None:
    """Записать value по dot-path.

    Родитель обязан существовать и быть dict или list.
    Для list индекс за концом списка дополняет его значениями None.
    """
    parent, last = _parent_of(obj, path)

    if isinstance(parent, dict):
        parent[last] = value
        return

    if isinstance(parent, list):
        idx = as_index(last)
        if idx is None:
            raise PathError(f'Cannot set "{path}": "{last}" is not a list index.')
        if idx >= len(parent):
            parent.extend([None] * (idx + 1 - len(parent)))
        parent[idx] = value
        return

    raise PathError(f'Cannot set "{path}": parent is not an object or a list.')


def delete_by_path(obj: Any, path: str) -> bool:
    """Удалить ключ по dot-path. Элемент list не вырезается, а обнуляется (индексы соседей не едут)."""
    parent, last = _parent_of(obj, path)

    if isinstance(parent, dict):
        return parent.pop(last, MISSING) is not MISSING

    if isinstance(parent, list):
        idx = as_index(last)
        if idx is None or idx >= len(parent):
            return False
        parent[idx] = None
        return True

    raise PathError(f'Cannot set "{path}": parent is not an object or a list.')
