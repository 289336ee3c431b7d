# site_mirror/crawler/rewriter.py
"""
Rewrites links in saved HTML so mirrored resources load from disk.

Only references whose normalized target is in the resource map are touched;
every other link is returned byte-identical. Raw links are resolved against
the document's own URL (trailing slash and ``<base href>`` included) before
they are normalized.
"""
from __future__ import annotations

import posixpath
import re
from typing import Mapping, Optional
from urllib.parse import quote, urljoin

from site_mirror.crawler.paths import PathResolver
from site_mirror.logger import logger
from site_mirror.utils import normalize_url

ATTR_RE = re.compile(r"""\b(href|src)=(["'])([^"']*)\2""", re.IGNORECASE)
SRCSET_RE = re.compile(r"""\bsrcset=(["'])([^"']*)\1""", re.IGNORECASE)
STYLE_URL_RE = re.compile(r"""url\((['"]?)([^'")]+)\1\)""", re.IGNORECASE)
META_REFRESH_RE = re.compile(
    r"""<meta[^>]+http-equiv=["']refresh["'][^>]+content=["']\s*\d+\s*;\s*url=([^"'>]+)["']""",
    re.IGNORECASE,
)
BASE_HREF_RE = re.compile(r"""<base\s[^>]*\bhref=(["'])([^"']+)\1""", re.IGNORECASE)

_SKIP_PREFIXES = ("#", "data:", "javascript:", "mailto:", "tel:", "blob:", "about:")


def document_base(html: str, document_url: str) -> str:
    """URL relative links of *html* resolve against: ``<base href>`` or the document URL."""
    m = BASE_HREF_RE.search(html)
    return urljoin(document_url, m.group(2).strip()) if m else document_url


class LinkRewriter:
    def __init__(self, resolver: PathResolver, resources: Mapping[str, str]) -> None:
        self.resolver = resolver
        self.resources = resources

    def local_link(self, link: str, page_url: str, base_url: Optional[str] = None) -> Optional[str]:
        """Relative local path for *link* if it was mirrored, else None.

        *link* is resolved against *base_url* (defaults to *page_url*); the
        result is relative to the file *page_url* is saved to.
        """
        link = link.strip()
        if not link or link.lower().startswith(_SKIP_PREFIXES):
            return None
        try:
            target = self.resources.get(normalize_url(link, base_url or page_url))
            page_file = self.resolver.relative(normalize_url(page_url))
        except ValueError:
            return None
        if target is None:
            return None
        from_dir = posixpath.dirname(page_file) or "."
        rel = posixpath.relpath(target, from_dir)
        if not rel.startswith("."):
            rel = "./" + rel
        return quote(rel, safe="/")

    def rewrite(self, html: str, page_url: str, document_url: Optional[str] = None) -> str:
        """Rewrite mapped links of the page saved for *page_url*.

        *document_url* is the address the HTML was actually served from
        (after redirects); it defaults to *page_url*.
        """
        base = document_base(html, document_url or page_url)
        counter = 0

        def attr(m: re.Match[str]) -> str:
            nonlocal counter
            local = self.local_link(m.group(3), page_url, base)
            if local is None:
                return m.group(0)
            counter += 1
            return f"{m.group(1)}={m.group(2)}{local}{m.group(2)}"

        def srcset(m: re.Match[str]) -> str:
            nonlocal counter
            changed = False
            parts = []
            for candidate in m.group(2).split(","):
                url_part, _, descriptor = candidate.strip().partition(" ")
                local = self.local_link(url_part, page_url, base)
                if local is None:
                    parts.append(candidate.strip())
                    continue
                changed = True
                counter += 1
                parts.append(f"{local} {descriptor.strip()}" if descriptor.strip() else local)
            if not changed:
                return m.group(0)
            return f"srcset={m.group(1)}{', '.join(parts)}{m.group(1)}"

        def style_url(m: re.Match[str]) -> str:
            nonlocal counter
            local = self.local_link(m.group(2), page_url, base)
            if local is None:
                return m.group(0)
            counter += 1
            return f"url({m.group(1)}{local}{m.group(1)})"

        def refresh(m: re.Match[str]) -> str:
            nonlocal counter
            local = self.local_link(m.group(1), page_url, base)
            if local is None:
                return m.group(0)
            counter += 1
            start, end = m.span(1)
            offset = m.start(0)
            whole = m.group(0)
            return whole[: start - offset] + local + whole[end - offset:]

        html = ATTR_RE.sub(attr, html)
        html = SRCSET_RE.sub(srcset, html)
        html = STYLE_URL_RE.sub(style_url, html)
        html = META_REFRESH_RE.sub(refresh, html)
        logger.debug("Adjusted %d URLs in %s.", counter, page_url)
        return html
