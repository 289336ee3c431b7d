# File: site_mirror/utils.py
"""site_mirror.utils: Утилитарные функции для нормализации URL, сортировки и работы с каталогом зеркала."""

from __future__ import annotations

import os
import posixpath
import re
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union
from urllib.parse import urljoin, urlsplit, urlunsplit

from site_mirror.logger import logger

__all__: Sequence[str] = (
    "normalize_url",
    "fetchable_url",
    "is_http_url",
    "same_host",
    "url_extension",
    "is_page_like",
    "sort_urls",
    "folder_size",
    "human_size",
)

_HTTP_SCHEMES = ("http", "https")
_PAGE_EXTENSIONS = ("", ".html", ".htm")
_SLASHES = re.compile(r"/{2,}")


def _clean_url(url: str, base: Optional[str], keep_slash: bool) -> str:
    raw = url.strip()
    joined = urljoin(base, raw) if base else raw
    parts = urlsplit(joined)
    scheme = parts.scheme.lower()
    if scheme not in _HTTP_SCHEMES:
        return joined

    path = _SLASHES.sub("/", parts.path) or "/"
    if path != "/" and not keep_slash:
        path = path.rstrip("/") or "/"
    return urlunsplit((scheme, parts.netloc.lower(), path, "", ""))


def normalize_url(url: str, base: Optional[str] = None) -> str:
    """Нормализует URL: разрешает относительно base, убирает query и фрагмент,
    схлопывает повторные слеши и снимает завершающий слеш (кроме корня).

    Для схем без иерархии (data:, javascript:, mailto: ...) возвращает URL как есть.
    """
    normalized = _clean_url(url, base, keep_slash=False)
    logger.debug("Normalized URL: %s -> %s", url, normalized)
    return normalized


def fetchable_url(url: str, base: Optional[str] = None) -> str:
    """Адрес для запроса: как normalize_url, но завершающий слеш сохраняется.

    ``/docs/`` и ``/docs`` дают один ключ, но сервер может отдавать только первый.
    """
    return _clean_url(url, base, keep_slash=True)


def is_http_url(url: str) -> bool:
    """Проверяет, что у URL схема http(s) и есть хост."""
    try:
        parsed = urlsplit(url)
        return parsed.scheme.lower() in _HTTP_SCHEMES and bool(parsed.hostname)
    except ValueError:
        return False


def same_host(url_a: str, url_b: str) -> bool:
    """Сравнивает hostname двух URL (порт не учитывается)."""
    try:
        return urlsplit(url_a).hostname == urlsplit(url_b).hostname
    except ValueError:
        return False


def url_extension(url: str) -> str:
    """Расширение последнего сегмента пути в нижнем регистре (``".css"``, ``""``)."""
    return posixpath.splitext(urlsplit(url).path.rsplit("/", 1)[-1])[1].lower()


def is_page_like(url: str) -> bool:
    """HTML-подобный URL: .html, .htm или без расширения."""
    return url_extension(url) in _PAGE_EXTENSIONS


def _segments(url: str) -> tuple[str, ...]:
    return tuple(s for s in urlsplit(url).path.split("/") if s)


def sort_urls(urls: Iterable[str]) -> List[str]:
    """Сортирует URL по сегментам пути: сначала папки верхнего уровня, затем по алфавиту."""
    return sorted(set(urls), key=lambda u: (_segments(u), u))


def folder_size(path: Union[str, Path]) -> int:
    """Рекурсивно считает размер каталога в байтах."""
    total = 0
    for dirpath, _, filenames in os.walk(path):
        for name in filenames:
            try:
                total += os.path.getsize(os.path.join(dirpath, name))
            except OSError as exc:
                logger.debug("Cannot stat %s: %s", name, exc)
    return total


def human_size(size: float) -> str:
    """Форматирует размер: ``"512.00 Bytes"``, ``"1.50 kB"``, ``"3.20 MB"``."""
    unit = "Bytes"
    for next_unit in ("kB", "MB", "GB"):
        if size <= 1024:
            break
        size /= 1024
        unit = next_unit
    return f"{size:.2f} {unit}"
