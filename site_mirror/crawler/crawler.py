# === FILE: site_mirror/crawler/crawler.py ===
from __future__ import annotations

import asyncio
import logging
import time
from functools import partial
from typing import Any, Dict, List, Optional

from aiohttp import ClientSession, ClientTimeout

from site_mirror.config import MirrorConfig
from site_mirror.crawler.classifier import UrlClassifier
from site_mirror.crawler.extractor import extract_css_urls, extract_manifest_urls
from site_mirror.crawler.fetcher import Downloader, DownloadError
from site_mirror.crawler.limiter import ConcurrencyLimiter
from site_mirror.crawler.models import CrawlState
from site_mirror.crawler.paths import PathResolver
from site_mirror.crawler.renderer import (
    HARVEST_SCRIPT,
    MANIFEST_SCRIPT,
    SCROLL_SCRIPT,
    TITLE_SCRIPT,
    PageHandle,
    PlaywrightRenderer,
    RequestEvent,
    Renderer,
    StaticRenderer,
)
from site_mirror.crawler.rewriter import LinkRewriter
from site_mirror.utils import fetchable_url, is_page_like, normalize_url, url_extension

__all__ = ("MirrorCrawler",)


class MirrorCrawler:
    """Async mirroring crawler: renders pages, collects resources, rewrites links.

    Every page goes through *rendering -> harvesting -> saving* in limiter
    slots; the page is saved only after its direct subresource downloads have
    settled, so the rewriter sees their resource map entries. ``crawl()``
    returns once the run is quiescent (no growth for one dwell interval).

    Pages are requested by their fetchable URL (trailing slash kept); the
    normalized form is used only as the dedup key and for the local path.
    """

    def __init__(self, config: MirrorConfig, renderer: Optional[Renderer] = None) -> None:
        self.config = config
        self.seed = normalize_url(config.seed_url)
        self.state = CrawlState()
        self.resolver = PathResolver(config.output_root, use_index=config.use_index)
        self.classifier = UrlClassifier(self.seed, self.state, self.resolver)
        self.limiter = ConcurrencyLimiter(config.concurrency)
        self.rewriter = LinkRewriter(self.resolver, self.state.resources)
        self._renderer: Optional[Renderer] = renderer
        self._owned_renderer: Optional[PlaywrightRenderer] = None
        self.session: Optional[ClientSession] = None
        self._downloader: Optional[Downloader] = None
        self.logger = logging.getLogger("SiteMirror")
        self._tasks: List[asyncio.Future] = []
        self._manifests: Dict[str, int] = {}
        self._abort = asyncio.Event()

    async def __aenter__(self) -> MirrorCrawler:
        timeout = ClientTimeout(total=self.config.timeout)
        self.session = ClientSession(
            timeout=timeout,
            headers={"User-Agent": self.config.user_agent},
            raise_for_status=False,
        )
        self._downloader = Downloader(self.session, self.state, self.resolver)
        if self._renderer is None:
            if self.config.renderer == "static":
                self._renderer = StaticRenderer(self.session)
            else:
                self._owned_renderer = PlaywrightRenderer(
                    user_agent=self.config.user_agent,
                    navigation_timeout=self.config.navigation_timeout,
                )
                await self._owned_renderer.start()
                self._renderer = self._owned_renderer
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if self._owned_renderer is not None:
                await self._owned_renderer.stop()
        finally:
            if self.session and not self.session.closed:
                await self.session.close()

    @property
    def downloader(self) -> Downloader:
        if self._downloader is None:
            raise RuntimeError("Session not initialized")
        return self._downloader

    @property
    def renderer(self) -> Renderer:
        if self._renderer is None:
            raise RuntimeError("Renderer not initialized")
        return self._renderer

    # ------------------------------------------------------------------ #
    #                           Run driver                               #
    # ------------------------------------------------------------------ #

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def abort(self) -> None:
        """Stop scheduling, drop queued work and let in-flight tasks settle."""
        if self.aborted:
            return
        self.logger.warning("Execution aborted, finishing with the current state.")
        self._abort.set()
        dropped = self.limiter.clear()
        if dropped:
            self.logger.debug("Dropped %d queued tasks.", dropped)

    async def crawl(self) -> CrawlState:
        if self.session is None:
            raise RuntimeError("Session not initialized")
        self.logger.info("Старт зеркалирования: %s -> %s", self.seed, self.resolver.root)
        start = time.monotonic()
        self._track(self._page_pipeline(fetchable_url(self.config.seed_url), 0))
        await self._settle()
        duration = time.monotonic() - start
        self.logger.info("Завершено за %.2f с: %s", duration, self.state.summary())
        return self.state

    # alias for compatibility
    run = crawl

    async def _settle(self) -> None:
        """Drain all work, then wait for one quiet dwell interval before stopping."""
        while True:
            marker = self.state.growth_marker()
            await self._drain()
            if self.aborted:
                break
            await self._dwell()
            if self.state.growth_marker() == marker and not self._tasks:
                break
            self.logger.debug("Late work detected, waiting for quiescence.")
        await self._drain()

    async def _drain(self) -> None:
        while self._tasks:
            batch, self._tasks = self._tasks, []
            await asyncio.gather(*batch, return_exceptions=True)

    async def _dwell(self) -> None:
        try:
            await asyncio.wait_for(self._abort.wait(), timeout=self.config.dwell_time)
        except asyncio.TimeoutError:
            pass

    def _track(self, aw: Any) -> asyncio.Future:
        future = asyncio.ensure_future(aw)
        self._tasks.append(future)
        return future

    # ------------------------------------------------------------------ #
    #                          Page pipeline                             #
    # ------------------------------------------------------------------ #

    async def _page_pipeline(self, url: str, depth: int) -> None:
        children = await self.limiter.run(partial(self._render_page, url, depth))
        if children is None:
            return
        if children:
            await asyncio.gather(*children, return_exceptions=True)
        if not self.aborted:
            await self.limiter.run(partial(self._save_page, url))

    async def _render_page(self, url: str, depth: int) -> Optional[List[asyncio.Future]]:
        max_depth = self.config.max_depth
        if self.aborted or (max_depth is not None and depth > max_depth):
            return None
        norm = normalize_url(url, self.seed)
        if self.classifier.should_ignore(norm):
            return None
        self.state.visited.add(norm)
        self.state.total_requests += 1
        self.logger.info(self.state.summary())

        renderer = self.renderer
        children: List[asyncio.Future] = []
        channel: asyncio.Queue[RequestEvent] = asyncio.Queue()
        harvested = False
        page_base = url

        def on_request(event: RequestEvent) -> None:
            if harvested:
                self._track(self._dispatch_late(event, page_base, depth))
            else:
                channel.put_nowait(event)

        handle: Optional[PageHandle] = None
        title = ""
        try:
            handle = await renderer.load(url)
            page_base = handle.url or url
            renderer.on_request(handle, on_request)
            title = await renderer.evaluate(handle, TITLE_SCRIPT) or ""
            self.logger.info("Page (depth %d): %s", depth, norm)
            self.logger.debug("Auto scrolling page '%s'.", title)
            await renderer.evaluate(handle, SCROLL_SCRIPT)
            await self._dwell()
            manifests = [
                normalize_url(raw, page_base)
                for raw in await renderer.evaluate(handle, MANIFEST_SCRIPT) or []
            ]
            for manifest_url in manifests:
                self.logger.debug("Manifest found: %s", manifest_url)
                self._manifests.setdefault(manifest_url, depth)
            found = await renderer.evaluate(handle, HARVEST_SCRIPT) or []
            self.logger.debug("%d resources found on %s.", len(found), norm)
            for raw in found:
                children.extend(self._dispatch(raw, page_base, depth, "Asset"))
            children.extend(self._drain_channel(channel, page_base, depth))
            for manifest_url in manifests:
                children.extend(self._schedule_asset(manifest_url, page_base, "Manifest"))
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            self.state.record_error(norm, error)
            self.logger.warning("Page '%s' failed: %s", title or norm, error)
            return None
        finally:
            harvested = True
            if handle is not None:
                try:
                    await renderer.close(handle)
                except Exception as exc:
                    self.logger.debug("Closing %s failed: %s", norm, exc)
            children.extend(self._drain_channel(channel, page_base, depth))
        return children

    def _drain_channel(self, channel: asyncio.Queue[RequestEvent], page_base: str, depth: int) -> List[asyncio.Future]:
        futures: List[asyncio.Future] = []
        while not channel.empty():
            event = channel.get_nowait()
            futures.extend(self._dispatch(event.url, page_base, depth, "Dynamic"))
        return futures

    async def _dispatch_late(self, event: RequestEvent, page_base: str, depth: int) -> None:
        futures = self._dispatch(event.url, page_base, depth, "Dynamic")
        if futures:
            await asyncio.gather(*futures, return_exceptions=True)

    def _dispatch(self, raw: str, page_base: str, depth: int, label: str) -> List[asyncio.Future]:
        """Classify one harvested URL and schedule the matching task.

        *page_base* is the address the page was served from; relative URLs
        resolve against it.
        """
        if self.aborted:
            return []
        try:
            url = normalize_url(raw, page_base)
        except ValueError:
            return []
        self.state.total_requests += 1
        if self.classifier.should_ignore(url):
            self._adopt_existing(url)
            return []
        if is_page_like(url):
            self._consider_page(fetchable_url(raw, page_base), depth + 1)
            return []
        return self._schedule_asset(url, page_base, label)

    def _consider_page(self, url: str, depth: int) -> None:
        """Crawl a discovered page or, outside recursion/depth, only record it."""
        max_depth = self.config.max_depth
        if not self.config.recursive or (max_depth is not None and depth > max_depth):
            self.state.references.add(normalize_url(url))
            return
        self._track(self._page_pipeline(url, depth))

    def _adopt_existing(self, url: str) -> None:
        if not is_page_like(url) and self.classifier.exists_locally(url):
            self.state.record_resource(url, self.resolver.relative(url))
            self.logger.debug("Already on disk: %s", url)

    def _schedule_asset(self, url: str, base_url: str, label: str) -> List[asyncio.Future]:
        if self.aborted or self.classifier.should_ignore(url):
            return []
        self.state.pending.add(url)
        if url in self._manifests:
            future = self.limiter.run(partial(self._download_manifest, url, base_url))
        elif url_extension(url) == ".css":
            future = self.limiter.run(partial(self._download_css, url, base_url))
        else:
            future = self.limiter.run(partial(self.downloader.fetch, url, base_url, label))
        self._tasks.append(future)
        return [future]

    async def _read_local(self, url: str) -> str:
        target = self.resolver.resolve(url)
        return await asyncio.to_thread(target.read_text, encoding="utf-8", errors="replace")

    async def _download_css(self, url: str, base_url: str) -> bool:
        if not await self.downloader.fetch(url, base_url, "CSS"):
            return False
        try:
            css = await self._read_local(url)
        except OSError as exc:
            self.state.record_error(url, f"Error reading stylesheet: {exc}")
            return True
        found = extract_css_urls(css, url, self.classifier.should_ignore)
        if found:
            self.logger.debug("Scheduling %d resources from %s.", len(found), url)
        for resource in sorted(found):
            self._schedule_asset(resource, url, "CSS")
        return True

    async def _download_manifest(self, url: str, base_url: str) -> bool:
        """Download a web-app manifest once, then follow its icons and start URL."""
        if not await self.downloader.fetch(url, base_url, "Manifest"):
            return False
        try:
            refs = extract_manifest_urls(await self._read_local(url), url, self.classifier.should_ignore)
        except OSError as exc:
            self.state.record_error(url, f"Error reading manifest: {exc}")
            return True
        except ValueError as exc:
            self.state.record_error(url, f"Manifest error: {exc}")
            self.logger.warning("Manifest error in %s: %s", url, exc)
            return True
        depth = self._manifests.get(url, 0)
        for asset in sorted(refs.assets):
            self._schedule_asset(asset, url, "Icon")
        for page in sorted(refs.pages):
            self._consider_page(page, depth + 1)
        return True

    async def _save_page(self, url: str) -> None:
        """Re-fetch the served document, rewrite its links and write it to disk."""
        norm = normalize_url(url, self.seed)
        target = self.resolver.resolve(norm)
        try:
            document = await self.downloader.fetch_text(url)
            html = self.rewriter.rewrite(document.text, norm, document.url)
            self.state.bytes_written += await self.downloader.save_text(target, html, document.charset)
        except DownloadError as exc:
            self.state.record_failure(norm, str(exc))
            self.logger.warning("%s", exc)
            return
        except OSError as exc:
            self.state.record_failure(norm, f"Error on writing page: {exc}")
            self.logger.warning("Error on writing %s: %s", norm, exc)
            return
        self.state.pages_saved += 1
        self.logger.debug("Saved %s -> %s", norm, target)
