# site_mirror/crawler/models.py
"""
Data models for the SiteMirror crawler.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Set

from site_mirror.utils import sort_urls


@dataclass(slots=True, frozen=True)
class ErrorEntry:
    """One failure, recorded once at the point it was detected."""

    url: str
    error: str

    def as_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(slots=True)
class CrawlState:
    """Shared, run-scoped bookkeeping of a mirror run.

    All keys are normalized URLs. The scheduler and the downloader mutate
    these collections only between suspension points, so no locking is
    needed on the event loop.
    """

    visited: Set[str] = field(default_factory=set)
    resources: Dict[str, str] = field(default_factory=dict)
    failed: Set[str] = field(default_factory=set)
    errors: List[ErrorEntry] = field(default_factory=list)
    references: Set[str] = field(default_factory=set)
    pending: Set[str] = field(default_factory=set)
    total_requests: int = 0
    pages_saved: int = 0
    bytes_written: int = 0

    def is_known(self, url: str) -> bool:
        return (
            url in self.visited
            or url in self.resources
            or url in self.failed
            or url in self.pending
        )

    def record_resource(self, url: str, local_path: str) -> None:
        self.resources[url] = local_path

    def record_error(self, url: str, error: str) -> None:
        self.errors.append(ErrorEntry(url, error))

    def record_failure(self, url: str, error: str) -> None:
        """Mark *url* as failed for the rest of the run and log the cause."""
        self.failed.add(url)
        self.record_error(url, error)

    def growth_marker(self) -> tuple[int, int]:
        return len(self.visited), len(self.resources)

    def sitemap(self) -> List[str]:
        """Pages (visited and referenced) first, then assets; each block sorted."""
        pages = sort_urls(self.visited | self.references)
        assets = sort_urls(url for url in self.resources if url not in self.visited)
        return pages + assets

    def error_rate(self) -> float:
        total = len(self.visited) + len(self.resources) + len(self.errors)
        return 100 * len(self.errors) / total if total else 0.0

    def summary(self) -> str:
        return (
            f"Pages: {len(self.visited)} | Assets: {len(self.resources)} | "
            f"Errors: {len(self.errors)} ({self.error_rate():.2f}%)"
        )
