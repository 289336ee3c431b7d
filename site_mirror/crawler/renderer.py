# site_mirror/crawler/renderer.py
"""
Page-rendering collaborators.

The crawler only talks to the :class:`Renderer` protocol: load a page, listen
to the requests it issues, evaluate one of the extraction scripts below and
close it. :class:`PlaywrightRenderer` drives headless Chromium;
:class:`StaticRenderer` answers the same scripts from the served markup with
BeautifulSoup (no script execution, no request stream).
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable
from urllib.parse import urljoin

from aiohttp import ClientError, ClientSession
from bs4 import BeautifulSoup
from bs4.element import Tag
from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from site_mirror.crawler.extractor import CSS_URL_RE
from site_mirror.logger import logger

__all__ = (
    "RequestEvent",
    "PageHandle",
    "Renderer",
    "RenderError",
    "StaticRenderer",
    "PlaywrightRenderer",
    "TITLE_SCRIPT",
    "SCROLL_SCRIPT",
    "HARVEST_SCRIPT",
    "MANIFEST_SCRIPT",
)

TITLE_SCRIPT = "() => document.title"

# Scrolls in 20 steps so that on-scroll lazy loaders fire their requests.
SCROLL_SCRIPT = """
async () => {
  await new Promise(resolve => {
    let scrolled = 0;
    const height = document.body ? document.body.scrollHeight : 0;
    const step = Math.max(height / 20, 1);
    const timer = setInterval(() => {
      window.scrollBy(0, step);
      scrolled += step;
      if (scrolled >= height) {
        clearInterval(timer);
        resolve();
      }
    }, 50);
  });
}
"""

HARVEST_SCRIPT = """
() => {
  const urls = new Set();
  const add = value => { if (value && typeof value === 'string') urls.add(value); };
  document.querySelectorAll('link[rel~="icon"], link[rel~="apple-touch-icon"], link[rel="manifest"]')
    .forEach(link => add(link.href));
  document.querySelectorAll('meta[property="og:image"], meta[name="twitter:image"]')
    .forEach(meta => { try { add(new URL(meta.content, location.href).href); } catch (e) {} });
  document.querySelectorAll('[src], [href], [data-src], [data-href], [srcset], [poster]').forEach(el => {
    const srcset = el.getAttribute('srcset');
    if (srcset) {
      srcset.split(',').forEach(part => {
        try { add(new URL(part.trim().split(/\\s+/)[0], location.href).href); } catch (e) {}
      });
      return;
    }
    const raw = el.src || el.href || el.dataset.src || el.dataset.href || el.poster;
    try { add(new URL(raw, location.href).href); } catch (e) {}
  });
  const regex = /url\\((['"]?)([^'")]+)\\1\\)/g;
  const styles = [...document.querySelectorAll('style')].map(s => s.textContent || '');
  document.querySelectorAll('[style]').forEach(el => styles.push(el.getAttribute('style') || ''));
  for (const text of styles) {
    for (const match of text.matchAll(regex)) {
      try { add(new URL(match[2], location.href).href); } catch (e) {}
    }
  }
  return [...urls];
}
"""

MANIFEST_SCRIPT = """
() => [...document.querySelectorAll('link[rel="manifest"]')].map(link => link.href).filter(Boolean)
"""


class RenderError(Exception):
    """Navigation or evaluation failed inside the rendering collaborator."""


@dataclass(slots=True, frozen=True)
class RequestEvent:
    """An outgoing request observed while a page was rendering."""

    url: str
    resource_type: str = "other"


RequestCallback = Callable[[RequestEvent], None]


class PageHandle:
    """A loaded page plus its request-event stream.

    Events emitted before anyone subscribed are buffered and replayed on
    :meth:`subscribe`, so requests issued during navigation are not lost.
    """

    def __init__(self, url: str, page: Any = None) -> None:
        self.url = url
        self.page = page
        self.closed = False
        self._buffer: List[RequestEvent] = []
        self._listeners: List[RequestCallback] = []

    def emit(self, event: RequestEvent) -> None:
        if not self._listeners:
            self._buffer.append(event)
            return
        for callback in list(self._listeners):
            callback(event)

    def subscribe(self, callback: RequestCallback) -> None:
        self._listeners.append(callback)
        buffered, self._buffer = self._buffer, []
        for event in buffered:
            callback(event)


@runtime_checkable
class Renderer(Protocol):
    async def load(self, url: str) -> PageHandle: ...

    def on_request(self, handle: PageHandle, callback: RequestCallback) -> None: ...

    async def evaluate(self, handle: PageHandle, script: str) -> Any: ...

    async def close(self, handle: PageHandle) -> None: ...


# --------------------------------------------------------------------------- #
#                         Static (markup-only) renderer                       #
# --------------------------------------------------------------------------- #

_LINK_ATTRS = ("src", "href", "data-src", "data-href", "poster")
_HARVEST_RELS = {"icon", "apple-touch-icon", "manifest"}


def _rels(tag: Tag) -> set[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return {r.lower() for r in rel}


def _attr(tag: Tag, name: str) -> Optional[str]:
    value = tag.get(name)
    return value.strip() if isinstance(value, str) and value.strip() else None


class StaticRenderer:
    """Answers the extraction scripts from the served HTML, without a browser."""

    def __init__(self, session: ClientSession) -> None:
        self.session = session
        self._scripts: Dict[str, Callable[[BeautifulSoup, str], Any]] = {
            TITLE_SCRIPT: self._title,
            SCROLL_SCRIPT: lambda soup, base: None,
            HARVEST_SCRIPT: self._harvest,
            MANIFEST_SCRIPT: self._manifests,
        }

    async def load(self, url: str) -> PageHandle:
        try:
            async with self.session.get(url) as resp:
                if not 200 <= resp.status < 300:
                    raise RenderError(f"Navigation to {url} failed: {resp.status} ({resp.reason})")
                html = await resp.text(errors="replace")
                final_url = str(resp.url)
        except (ClientError, asyncio.TimeoutError) as exc:
            raise RenderError(f"Navigation to {url} failed: {exc or type(exc).__name__}") from exc
        return PageHandle(final_url, BeautifulSoup(html, "html.parser"))

    def on_request(self, handle: PageHandle, callback: RequestCallback) -> None:
        handle.subscribe(callback)

    async def evaluate(self, handle: PageHandle, script: str) -> Any:
        func = self._scripts.get(script)
        if func is None:
            raise RenderError("StaticRenderer only evaluates the built-in extraction scripts")
        soup: BeautifulSoup = handle.page
        base_tag = soup.find("base", href=True)
        base = urljoin(handle.url, base_tag["href"]) if isinstance(base_tag, Tag) else handle.url
        return func(soup, base)

    async def close(self, handle: PageHandle) -> None:
        handle.closed = True

    @staticmethod
    def _title(soup: BeautifulSoup, base: str) -> str:
        return soup.title.get_text(strip=True) if soup.title else ""

    @staticmethod
    def _harvest(soup: BeautifulSoup, base: str) -> List[str]:
        found: Dict[str, None] = {}

        def add(value: Optional[str]) -> None:
            if value:
                found.setdefault(urljoin(base, value), None)

        for link in soup.find_all("link"):
            if isinstance(link, Tag) and _rels(link) & _HARVEST_RELS:
                add(_attr(link, "href"))
        for meta in soup.find_all("meta"):
            if isinstance(meta, Tag) and (
                meta.get("property") == "og:image" or meta.get("name") == "twitter:image"
            ):
                add(_attr(meta, "content"))
        for el in soup.find_all(True):
            if not isinstance(el, Tag):
                continue
            srcset = _attr(el, "srcset")
            if srcset:
                for candidate in srcset.split(","):
                    add(candidate.strip().split(" ")[0])
            else:
                add(next((value for name in _LINK_ATTRS if (value := _attr(el, name))), None))
            style = _attr(el, "style")
            if style:
                for m in CSS_URL_RE.finditer(style):
                    add(m.group(2))
        for style_tag in soup.find_all("style"):
            for m in CSS_URL_RE.finditer(style_tag.get_text()):
                add(m.group(2))
        return list(found)

    @staticmethod
    def _manifests(soup: BeautifulSoup, base: str) -> List[str]:
        return [
            urljoin(base, href)
            for link in soup.find_all("link")
            if isinstance(link, Tag) and "manifest" in _rels(link) and (href := _attr(link, "href"))
        ]


# --------------------------------------------------------------------------- #
#                          Headless Chromium renderer                         #
# --------------------------------------------------------------------------- #


class PlaywrightRenderer:
    """Renders pages in headless Chromium and reports every request they issue."""

    def __init__(
        self,
        *,
        user_agent: Optional[str] = None,
        navigation_timeout: float = 30.0,
        headless: bool = True,
    ) -> None:
        self.user_agent = user_agent
        self.navigation_timeout = navigation_timeout
        self.headless = headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._start_lock = asyncio.Lock()

    async def __aenter__(self) -> PlaywrightRenderer:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def start(self) -> None:
        async with self._start_lock:
            if self._context is not None:
                return
            logger.info("Launching headless Chromium...")
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=["--no-sandbox", "--disable-setuid-sandbox"],
            )
            self._context = await self._browser.new_context(user_agent=self.user_agent)

    async def stop(self) -> None:
        try:
            if self._browser is not None:
                await self._browser.close()
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
            self._context = self._browser = self._playwright = None
            logger.debug("Browser closed.")

    async def load(self, url: str) -> PageHandle:
        await self.start()
        if self._context is None:
            raise RenderError("Browser context is not started")
        page = await self._context.new_page()
        handle = PageHandle(url, page)
        page.on("request", lambda request: handle.emit(RequestEvent(request.url, request.resource_type)))
        try:
            await page.goto(url, wait_until="networkidle", timeout=self.navigation_timeout * 1000)
        except PlaywrightError as exc:
            await self.close(handle)
            raise RenderError(f"Navigation to {url} failed: {exc.message}") from exc
        handle.url = page.url
        return handle

    def on_request(self, handle: PageHandle, callback: RequestCallback) -> None:
        handle.subscribe(callback)

    async def evaluate(self, handle: PageHandle, script: str) -> Any:
        try:
            return await handle.page.evaluate(script)
        except PlaywrightError as exc:
            raise RenderError(f"Evaluation on {handle.url} failed: {exc.message}") from exc

    async def close(self, handle: PageHandle) -> None:
        if handle.closed:
            return
        handle.closed = True
        try:
            await handle.page.close()
        except PlaywrightError as exc:
            logger.debug("Closing %s failed: %s", handle.url, exc.message)
