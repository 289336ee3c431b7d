# File: tests/test_crawler.py
# Test-suite for the SiteMirror async crawler
from __future__ import annotations

import asyncio
import json
import os
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from aiohttp import web
from site_mirror.config import MirrorConfig
from site_mirror.crawler.crawler import MirrorCrawler
from site_mirror.crawler.models import CrawlState
from site_mirror.crawler.renderer import (
    HARVEST_SCRIPT,
    MANIFEST_SCRIPT,
    TITLE_SCRIPT,
    PageHandle,
    RenderError,
    RequestEvent,
)
from site_mirror.engine import start_mirror

# --------------------------------------------------------------------------- #
#                               Helper utilities                              #
# --------------------------------------------------------------------------- #

#: number of seconds a “slow” handler sleeps
SLOW_SLEEP: float = 0.2

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


async def run_crawler(config: MirrorConfig, renderer: Any = None, timeout: float = 15.0) -> CrawlState:
    """Run the crawler inside a global timeout."""
    async with MirrorCrawler(config, renderer) as crawler:
        return await asyncio.wait_for(crawler.crawl(), timeout=timeout)


def html(body: str, head: str = "") -> str:
    return f"<!doctype html><html><head><title>t</title>{head}</head><body>{body}</body></html>"


def build_site(pages: Dict[str, str], extra: Optional[Dict[str, Any]] = None) -> tuple[web.Application, Dict[str, int]]:
    """
    Build an app serving *pages* as HTML and every other known path as PNG.
    Returns the app and a per-path hit counter.
    """
    hits: Dict[str, int] = {}
    extra = extra or {}

    async def handler(request: web.Request) -> web.StreamResponse:
        path = request.path
        hits[path] = hits.get(path, 0) + 1
        if path in pages:
            return web.Response(text=pages[path], content_type="text/html")
        if path in extra:
            value = extra[path]
            if callable(value):
                return await value(request)
            body, ctype = value
            return web.Response(text=body, content_type=ctype)
        if path.endswith(".png"):
            return web.Response(body=PNG, content_type="image/png")
        raise web.HTTPNotFound()

    app = web.Application()
    app.router.add_get("/{tail:.*}", handler)
    return app, hits


class FakeRenderer:
    """
    Renderer double: serves a fixed harvest per page and replays request
    events, some of them immediately and some after a delay.
    """

    def __init__(
        self,
        harvest: Dict[str, List[str]],
        requests: Optional[Dict[str, List[str]]] = None,
        late: Optional[Dict[str, List[tuple[float, str]]]] = None,
        broken: tuple[str, ...] = (),
    ) -> None:
        self.harvest = harvest
        self.requests = requests or {}
        self.late = late or {}
        self.broken = broken
        self.loaded: List[str] = []
        self.closed: List[str] = []

    def _path(self, url: str) -> str:
        return "/" + url.split("/", 3)[-1] if url.count("/") >= 3 else "/"

    async def load(self, url: str) -> PageHandle:
        path = self._path(url)
        self.loaded.append(path)
        if path in self.broken:
            raise RenderError(f"Navigation to {url} failed: net::ERR_FAILED")
        handle = PageHandle(url)
        for request_url in self.requests.get(path, []):
            handle.emit(RequestEvent(request_url, "xhr"))
        loop = asyncio.get_running_loop()
        for delay, request_url in self.late.get(path, []):
            loop.call_later(delay, handle.emit, RequestEvent(request_url, "fetch"))
        return handle

    def on_request(self, handle: PageHandle, callback) -> None:
        handle.subscribe(callback)

    async def evaluate(self, handle: PageHandle, script: str) -> Any:
        if script == TITLE_SCRIPT:
            return "fake"
        if script == HARVEST_SCRIPT:
            return list(self.harvest.get(self._path(handle.url), []))
        if script == MANIFEST_SCRIPT:
            return []
        return None

    async def close(self, handle: PageHandle) -> None:
        handle.closed = True
        self.closed.append(self._path(handle.url))


# --------------------------------------------------------------------------- #
#                                    Tests                                    #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_mirror_single_page_with_assets(make_server, make_config, tmp_path):
    pages = {
        "/": html(
            '<img src="/img/logo.png" srcset="/img/logo.png 1x, /img/logo-2x.png 2x">'
            '<a href="/about">About</a>'
            '<a href="https://external.example.org/x.png">ext</a>'
            "<div style=\"background: url('/img/inline.png')\"></div>"
            '<img src="/img/missing.jpg">',
            head='<link rel="stylesheet" href="/css/site.css?v=3"><link rel="manifest" href="/manifest.json">',
        ),
        "/about": html("about"),
        "/app": html("app"),
    }
    extra = {
        "/css/site.css": ('body { background: url(/img/bg.png); } @import "sub.css";', "text/css"),
        "/css/sub.css": ('.x { background: url("../img/sub.png") }', "text/css"),
        "/manifest.json": (
            json.dumps({"icons": [{"src": "/icons/192.png"}], "start_url": "/app"}),
            "application/manifest+json",
        ),
    }
    app, hits = build_site(pages, extra)
    base = await make_server(app)
    state = await run_crawler(make_config(base))

    assert state.visited == {f"{base}/"}
    for path in (
        "/css/site.css",
        "/css/sub.css",
        "/img/bg.png",
        "/img/sub.png",
        "/img/logo.png",
        "/img/logo-2x.png",
        "/img/inline.png",
        "/manifest.json",
        "/icons/192.png",
    ):
        assert f"{base}{path}" in state.resources, path
    assert state.failed == {f"{base}/img/missing.jpg"}
    # not recursive: discovered pages are only referenced
    assert {f"{base}/about", f"{base}/app"} <= state.references
    assert "/about" not in hits
    assert hits["/manifest.json"] == 1

    root = tmp_path / "127.0.0.1"
    assert (root / "img" / "sub.png").read_bytes() == PNG
    assert not (root / "img" / "missing.jpg").exists()
    saved = (root / "index.html").read_text(encoding="utf-8")
    assert 'href="./css/site.css"' in saved
    assert 'src="./img/logo.png"' in saved
    assert "./img/logo-2x.png 2x" in saved
    assert "url('./img/inline.png')" in saved
    # links to unmapped targets are left untouched
    assert 'href="https://external.example.org/x.png"' in saved
    assert 'src="/img/missing.jpg"' in saved
    assert 'href="/about"' in saved


@pytest.mark.asyncio()
async def test_depth_zero_saves_only_seed(make_server, make_config, tmp_path):
    pages = {"/": html('<a href="/next">next</a>'), "/next": html("n")}
    app, hits = build_site(pages)
    base = await make_server(app)
    state = await run_crawler(make_config(base, max_depth=0, recursive=True))

    assert state.visited == {f"{base}/"}
    assert state.references == {f"{base}/next"}
    assert (tmp_path / "127.0.0.1" / "index.html").is_file()
    assert not (tmp_path / "127.0.0.1" / "next.html").exists()
    assert "/next" not in hits


@pytest.mark.asyncio()
async def test_query_variants_download_once(make_server, make_config):
    pages = {"/": html('<img src="/a.png?x=1"><img src="/a.png?x=2"><img src="a.png">')}
    app, hits = build_site(pages)
    base = await make_server(app)
    state = await run_crawler(make_config(base))

    assert hits["/a.png"] == 1
    assert list(state.resources) == [f"{base}/a.png"]
    assert not state.pending


@pytest.mark.asyncio()
async def test_recursion_respects_depth(make_server, make_config, tmp_path):
    pages = {
        "/": html('<a href="/b">b</a>'),
        "/b": html('<a href="/c">c</a><a href="/">home</a>'),
        "/c": html("c"),
    }
    app, hits = build_site(pages)
    base = await make_server(app)
    state = await run_crawler(make_config(base, max_depth=1, recursive=True))

    assert state.visited == {f"{base}/", f"{base}/b"}
    assert f"{base}/c" in state.references
    assert "/c" not in hits
    root = tmp_path / "127.0.0.1"
    assert (root / "index.html").is_file()
    assert (root / "b.html").is_file()
    assert not (root / "c.html").exists()
    assert state.sitemap()[:3] == [f"{base}/", f"{base}/b", f"{base}/c"]


@pytest.mark.asyncio()
async def test_use_index_layout(make_server, make_config, tmp_path):
    pages = {"/": html('<a href="/docs">docs</a>'), "/docs": html('<img src="/img/d.png">')}
    app, _ = build_site(pages)
    base = await make_server(app)
    await run_crawler(make_config(base, recursive=True, use_index=True))

    saved = (tmp_path / "127.0.0.1" / "docs" / "index.html").read_text(encoding="utf-8")
    assert 'src="../img/d.png"' in saved


@pytest.mark.asyncio()
async def test_directory_page_is_requested_with_slash(make_server, make_config, tmp_path):
    # only "/docs/" is served, "/docs" answers 404
    pages = {"/": html('<a href="/docs/">docs</a>'), "/docs/": html('<img src="a.png">')}
    app, hits = build_site(pages)
    base = await make_server(app)
    state = await run_crawler(make_config(base, recursive=True))

    assert state.visited == {f"{base}/", f"{base}/docs"}
    assert not state.errors
    assert "/docs" not in hits
    assert f"{base}/docs/a.png" in state.resources
    saved = (tmp_path / "127.0.0.1" / "docs.html").read_text(encoding="utf-8")
    assert 'src="./docs/a.png"' in saved


@pytest.mark.asyncio()
async def test_redirected_page_links_resolve_against_final_url(make_server, make_config, tmp_path):
    async def to_directory(request: web.Request) -> web.Response:
        raise web.HTTPMovedPermanently("/guide/")

    pages = {"/": html('<a href="/guide">guide</a>'), "/guide/": html('<img src="b.png">')}
    app, _ = build_site(pages, {"/guide": to_directory})
    base = await make_server(app)
    state = await run_crawler(make_config(base, recursive=True))

    assert f"{base}/guide/b.png" in state.resources
    assert f"{base}/b.png" not in state.resources
    saved = (tmp_path / "127.0.0.1" / "guide.html").read_text(encoding="utf-8")
    assert 'src="./guide/b.png"' in saved


@pytest.mark.asyncio()
async def test_base_href_is_honoured(make_server, make_config, tmp_path):
    pages = {"/": html('<img src="logo.png">', head='<base href="/static/">')}
    app, _ = build_site(pages)
    base = await make_server(app)
    state = await run_crawler(make_config(base))

    assert f"{base}/static/logo.png" in state.resources
    saved = (tmp_path / "127.0.0.1" / "index.html").read_text(encoding="utf-8")
    assert 'src="./static/logo.png"' in saved


def test_collaborators_require_context(make_config):
    crawler = MirrorCrawler(make_config("http://127.0.0.1:1"))
    with pytest.raises(RuntimeError, match="Session not initialized"):
        crawler.downloader
    with pytest.raises(RuntimeError, match="Renderer not initialized"):
        crawler.renderer


@pytest.mark.asyncio()
async def test_existing_file_is_reused(make_server, make_config, tmp_path):
    pages = {"/": html('<img src="/img/old.png">')}
    app, hits = build_site(pages)
    base = await make_server(app)
    cached = tmp_path / "127.0.0.1" / "img" / "old.png"
    cached.parent.mkdir(parents=True)
    cached.write_bytes(b"cached")

    state = await run_crawler(make_config(base))

    assert "/img/old.png" not in hits
    assert state.resources[f"{base}/img/old.png"] == "img/old.png"
    assert cached.read_bytes() == b"cached"
    saved = (tmp_path / "127.0.0.1" / "index.html").read_text(encoding="utf-8")
    assert 'src="./img/old.png"' in saved


@pytest.mark.asyncio()
async def test_request_events_are_downloaded(make_server, make_config):
    pages = {"/": html("dynamic")}
    extra = {"/api/data.json": ('{"ok": true}', "application/json")}
    app, hits = build_site(pages, extra)
    base = await make_server(app)
    renderer = FakeRenderer(
        harvest={"/": [f"{base}/img/static.png"]},
        requests={"/": [f"{base}/api/data.json", f"{base}/img/static.png", "data:,x"]},
        late={"/": [(0.3, f"{base}/img/late.png")]},
    )
    state = await run_crawler(make_config(base, dwell_time=0.2), renderer)

    assert renderer.closed == ["/"]
    assert f"{base}/api/data.json" in state.resources
    assert f"{base}/img/static.png" in state.resources
    # arrived after harvesting, still picked up before the run settled
    assert f"{base}/img/late.png" in state.resources
    assert hits["/img/static.png"] == 1


@pytest.mark.asyncio()
async def test_render_failure_is_isolated(make_server, make_config, tmp_path):
    pages = {"/": html("home"), "/broken": html("x"), "/ok": html("ok")}
    app, _ = build_site(pages)
    base = await make_server(app)
    renderer = FakeRenderer(
        harvest={"/": [f"{base}/broken", f"{base}/ok", f"{base}/img/a.png"], "/ok": []},
        broken=("/broken",),
    )
    state = await run_crawler(make_config(base, recursive=True), renderer)

    assert [e.url for e in state.errors] == [f"{base}/broken"]
    assert "ERR_FAILED" in state.errors[0].error
    assert f"{base}/img/a.png" in state.resources
    root = tmp_path / "127.0.0.1"
    assert (root / "ok.html").is_file()
    assert not (root / "broken.html").exists()


@pytest.mark.asyncio()
async def test_manifest_errors_are_logged(make_server, make_config):
    pages = {"/": html("", head='<link rel="manifest" href="/bad.webmanifest">')}
    extra = {"/bad.webmanifest": ("[]", "application/manifest+json")}
    app, _ = build_site(pages, extra)
    base = await make_server(app)
    state = await run_crawler(make_config(base))

    messages = [e.error for e in state.errors if e.url == f"{base}/bad.webmanifest"]
    assert messages and messages[0].startswith("Manifest error")


@pytest.mark.slow
@pytest.mark.asyncio()
async def test_concurrency_is_bounded(make_server, make_config):
    inflight = 0
    highest = 0

    async def slow_image(request: web.Request) -> web.Response:
        nonlocal inflight, highest
        inflight += 1
        highest = max(highest, inflight)
        await asyncio.sleep(0.05)
        inflight -= 1
        return web.Response(body=PNG, content_type="image/png")

    images = [f"/slow/{i}.png" for i in range(8)]
    pages = {"/": html("".join(f'<img src="{p}">' for p in images))}
    app, _ = build_site(pages, {p: slow_image for p in images})
    base = await make_server(app)

    async with MirrorCrawler(make_config(base, concurrency=2)) as crawler:
        state = await asyncio.wait_for(crawler.crawl(), timeout=15)
        assert crawler.limiter.peak <= 2

    assert highest <= 2
    assert len(state.resources) == 8


@pytest.mark.asyncio()
async def test_abort_drops_queued_work(make_server, make_config, tmp_path):
    async def slow_image(request: web.Request) -> web.Response:
        await asyncio.sleep(SLOW_SLEEP)
        return web.Response(body=PNG, content_type="image/png")

    images = [f"/slow/{i}.png" for i in range(5)]
    pages = {"/": html("".join(f'<img src="{p}">' for p in images))}
    app, _ = build_site(pages, {p: slow_image for p in images})
    base = await make_server(app)

    async with MirrorCrawler(make_config(base, concurrency=1)) as crawler:
        asyncio.get_running_loop().call_later(0.15, crawler.abort)
        state = await asyncio.wait_for(crawler.crawl(), timeout=15)
        assert crawler.aborted

    assert len(state.resources) < 5
    assert not (tmp_path / "127.0.0.1" / "index.html").exists()


# --------------------------------------------------------------------------- #
#                               Engine artifacts                              #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_start_mirror_writes_artifacts(make_server, make_config, tmp_path):
    pages = {"/": html('<img src="/img/ok.png"><img src="/img/missing.jpg"><a href="/about">a</a>')}
    app, _ = build_site(pages)
    base = await make_server(app)
    report = await start_mirror(make_config(base, sitemap=True, log=True))

    root = tmp_path / "127.0.0.1"
    sitemap = json.loads((root / "sitemap.json").read_text(encoding="utf-8"))
    assert sitemap == [f"{base}/", f"{base}/about", f"{base}/img/ok.png"]

    log = json.loads((root / "log.json").read_text(encoding="utf-8"))
    assert log["Failed_Downloads"] == [f"{base}/img/missing.jpg"]
    assert [e["url"] for e in log["Errors"]] == [f"{base}/img/missing.jpg"]

    assert report.pages == 1
    assert report.assets == 1
    assert report.failed_urls == [f"{base}/img/missing.jpg"]
    assert report.size_bytes > 0
    assert not report.aborted
    assert set(report.artifacts) == {"sitemap", "log"}


@pytest.mark.asyncio()
async def test_start_mirror_skips_empty_log_and_cleans(make_server, make_config, tmp_path):
    pages = {"/": html('<img src="/img/ok.png">')}
    app, hits = build_site(pages)
    base = await make_server(app)
    stale = tmp_path / "127.0.0.1" / "img" / "ok.png"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"stale")

    report = await start_mirror(make_config(base, log=True, clean=True))

    assert hits["/img/ok.png"] == 1
    assert stale.read_bytes() == PNG
    assert not (tmp_path / "127.0.0.1" / "log.json").exists()
    assert "log" not in report.artifacts


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
@pytest.mark.asyncio()
async def test_interrupt_writes_progress_log(make_server, make_config, tmp_path):
    async def slow_image(request: web.Request) -> web.Response:
        await asyncio.sleep(SLOW_SLEEP)
        return web.Response(body=PNG, content_type="image/png")

    images = [f"/slow/{i}.png" for i in range(5)]
    pages = {"/": html("".join(f'<img src="{p}">' for p in images))}
    app, _ = build_site(pages, {p: slow_image for p in images})
    base = await make_server(app)

    asyncio.get_running_loop().call_later(0.15, os.kill, os.getpid(), signal.SIGINT)
    report = await start_mirror(make_config(base, concurrency=1))

    assert report.aborted
    progress = Path(report.artifacts["progress"])
    assert progress.name == "progress.log"
    assert "Execution aborted" in progress.read_text(encoding="utf-8")
