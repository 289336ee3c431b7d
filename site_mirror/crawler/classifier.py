# site_mirror/crawler/classifier.py
"""
The single gate every discovered URL passes before it is scheduled.
"""
from __future__ import annotations

from site_mirror.crawler.models import CrawlState
from site_mirror.crawler.paths import PathResolver
from site_mirror.utils import is_http_url, normalize_url, same_host

IGNORED_SCHEMES = (
    "data:",
    "blob:",
    "about:",
    "chrome:",
    "chrome-extension:",
    "javascript:",
    "filesystem:",
    "mailto:",
    "tel:",
)


class UrlClassifier:
    """Decides whether a URL is worth scheduling against the current run state."""

    def __init__(self, seed_url: str, state: CrawlState, resolver: PathResolver) -> None:
        self.seed_url = normalize_url(seed_url)
        self.state = state
        self.resolver = resolver

    def should_ignore(self, url: str) -> bool:
        """True for non-fetchable, foreign, already known or already saved URLs."""
        if not url or not url.strip():
            return True
        if url.strip().lower().startswith(IGNORED_SCHEMES):
            return True
        try:
            norm = normalize_url(url, self.seed_url)
        except ValueError:
            return True
        if not is_http_url(norm):
            return True
        if self.state.is_known(norm):
            return True
        if not same_host(norm, self.seed_url):
            return True
        return self.resolver.exists(norm)

    def exists_locally(self, url: str) -> bool:
        """A same-origin, not yet mapped URL whose file is already on disk."""
        try:
            norm = normalize_url(url, self.seed_url)
        except ValueError:
            return False
        return (
            is_http_url(norm)
            and same_host(norm, self.seed_url)
            and not self.state.is_known(norm)
            and self.resolver.exists(norm)
        )
