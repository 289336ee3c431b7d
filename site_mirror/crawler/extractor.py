# site_mirror/crawler/extractor.py
"""
Resource discovery in stylesheets and web-app manifests.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Set

from site_mirror.utils import fetchable_url, normalize_url

CSS_URL_RE = re.compile(r"""url\(\s*(['"]?)([^'")]+?)\1\s*\)""", re.IGNORECASE)
CSS_IMPORT_RE = re.compile(r"""@import\s+(['"])([^'"]+)\1""", re.IGNORECASE)

IgnorePredicate = Callable[[str], bool]


@dataclass(slots=True)
class ManifestRefs:
    """URLs referenced by a web-app manifest."""

    assets: Set[str] = field(default_factory=set)
    pages: Set[str] = field(default_factory=set)


def _resolve(
    candidates: Iterable[str],
    base_url: str,
    should_ignore: IgnorePredicate,
    keep_slash: bool = False,
) -> Set[str]:
    urls: Set[str] = set()
    for raw in candidates:
        raw = raw.strip()
        if not raw or raw.startswith(("data:", "#")):
            continue
        try:
            url = fetchable_url(raw, base_url) if keep_slash else normalize_url(raw, base_url)
        except ValueError:
            continue
        if not should_ignore(url):
            urls.add(url)
    return urls


def extract_css_urls(css: str, base_url: str, should_ignore: IgnorePredicate) -> Set[str]:
    """
    Find ``url(...)`` and ``@import "..."`` references in a stylesheet.

    Relative references are resolved against the stylesheet URL.
    """
    found = [m.group(2) for m in CSS_URL_RE.finditer(css)]
    found += [m.group(2) for m in CSS_IMPORT_RE.finditer(css)]
    return _resolve(found, base_url, should_ignore)


def _sources(entries: Any) -> list[str]:
    if not isinstance(entries, list):
        return []
    return [e["src"] for e in entries if isinstance(e, dict) and isinstance(e.get("src"), str)]


def extract_manifest_urls(text: str, manifest_url: str, should_ignore: IgnorePredicate) -> ManifestRefs:
    """
    Collect icons, splash screens and the start URL from a manifest document.

    Raises ValueError if the document is not a JSON object.
    """
    manifest = json.loads(text)
    if not isinstance(manifest, dict):
        raise ValueError(f"manifest must be a JSON object, got {type(manifest).__name__}")

    refs = ManifestRefs()
    refs.assets = _resolve(
        _sources(manifest.get("icons")) + _sources(manifest.get("splash_pages")),
        manifest_url,
        should_ignore,
    )
    start_url = manifest.get("start_url")
    if isinstance(start_url, str):
        refs.pages = _resolve([start_url], manifest_url, should_ignore, keep_slash=True)
    return refs
