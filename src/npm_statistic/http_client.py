from __future__ import annotations

"""
http_client.py — один GET страницы пакета через requests.Session.

Никаких ретраев и лимитов здесь нет: этим занимается scheduler.py
(таймауты, бюджет попыток, потолок одновременных запросов).
Здесь только: URL по шаблону, заголовки "как у браузера", аккуратное декодирование тела.
Статус != 200 — не ошибка: код уходит в снимок как httpStatus.
"""

import re
import threading
import time
from typing import Optional
from urllib.parse import quote

import requests

from .config_store import DEFAULT_URL

DEFAULT_HTML_HEADERS: dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "User-Agent": "npm-statistic/0.1.0 (python-requests)",
}


def package_url(template: str, name: str) -> str:
    # scoped-пакеты: "@scope/name" — '@' и '/' оставляем как есть
    return template.format(name=quote(name, safe="@/"))


def _extract_charset(content_type: str) -> Optional[str]:
    m = re.search(r"charset=([^\s;]+)", content_type or "", flags=re.IGNORECASE)
    return m.group(1).strip("\"'") if m else None


def decode_body(resp: requests.Response, raw: Optional[bytes] = None) -> str:
    """
    Текст из raw (или resp.content, если тело не читали потоком):
    1) charset из Content-Type
    2) resp.encoding (что выставил requests)
    3) resp.apparent_encoding
    4) utf-8 с заменой битых байт
    """
    if raw is None:
        raw = resp.content or b""
    candidates = [
        _extract_charset(resp.headers.get("Content-Type", "")),
        resp.encoding,
        getattr(resp, "apparent_encoding", None),
    ]
    for enc in candidates:
        if not enc:
            continue
        try:
            return raw.decode(enc, errors="replace")
        except LookupError:
            continue
    return raw.decode("utf-8", errors="replace")


class PageFetcher:
    """
    fetch(name, timeout, cancel) -> (status_code, text).

    Тело читается потоком (stream=True) кусками по CHUNK_SIZE. Между кусками проверяются:
    - cancel: планировщик снял запрос по дедлайну -> соединение закрывается;
    - общий дедлайн timeout на весь запрос: timeout= у requests ограничивает
      только одну операцию с сокетом, и "капающий" ответ без этой проверки жил бы вечно.
    В обоих случаях летит requests.Timeout. Прочие RequestException летят наверх как есть.
    """

    CHUNK_SIZE = 16 * 1024

    def __init__(
        self,
        *,
        url_template: str = DEFAULT_URL,
        headers: Optional[dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url_template = url_template
        self.headers = dict(DEFAULT_HTML_HEADERS)
        self.headers.update(headers or {})
        self.session = session or requests.Session()

    def __call__(self, name: str, timeout: float, cancel: Optional[threading.Event] = None) -> tuple[int, str]:
        deadline = time.monotonic() + float(timeout)
        resp = self.session.get(
            package_url(self.url_template, name),
            headers=self.headers,
            timeout=float(timeout),
            stream=True,
        )
        try:
            chunks: list[bytes] = []
            for chunk in resp.iter_content(chunk_size=self.CHUNK_SIZE):
                if cancel is not None and cancel.is_set():
                    raise requests.Timeout(f"{name}: request aborted")
                if time.monotonic() > deadline:
                    raise requests.Timeout(f"{name}: no full response in {float(timeout):.1f}s")
                if chunk:
                    chunks.append(chunk)
            return int(resp.status_code), decode_body(resp, b"".join(chunks))
        finally:
            resp.close()

    def close(self) -> None:
        self.session.close()
