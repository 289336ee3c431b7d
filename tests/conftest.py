# File: tests/conftest.py
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import web

from site_mirror.config import MirrorConfig
from site_mirror.crawler.classifier import UrlClassifier
from site_mirror.crawler.models import CrawlState
from site_mirror.crawler.paths import PathResolver
from site_mirror.logger import init_logging

BASE = "https://example.com"


def pytest_configure(config):
    """Register custom markers so that `--strict-markers` does not fail."""
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )


@pytest.fixture()
def state() -> CrawlState:
    return CrawlState()


@pytest.fixture()
def resolver(tmp_path: Path) -> PathResolver:
    """Resolver rooted at a temporary mirror folder."""
    return PathResolver(tmp_path / "example.com")


@pytest.fixture()
def classifier(state: CrawlState, resolver: PathResolver) -> UrlClassifier:
    return UrlClassifier(f"{BASE}/", state, resolver)


@pytest.fixture()
def make_config(tmp_path: Path) -> Callable[..., MirrorConfig]:
    """
    Return a factory for fast MirrorConfig objects writing into tmp_path.
    """

    def _make(base_url: str, **overrides) -> MirrorConfig:
        params = dict(
            base_url=base_url,
            output_dir=tmp_path,
            dwell_time=0.05,
            concurrency=4,
            timeout=5.0,
            renderer="static",
        )
        params.update(overrides)
        return MirrorConfig(**params)

    return _make


@pytest_asyncio.fixture
async def make_server(unused_tcp_port_factory) -> AsyncIterator[Callable[[web.Application], Awaitable[str]]]:
    """Start aiohttp apps on free ports, yield their base URLs, ensure cleanup."""
    runners: list[web.AppRunner] = []

    async def _start(app: web.Application) -> str:
        runner = web.AppRunner(app)
        await runner.setup()
        port = unused_tcp_port_factory()
        site = web.TCPSite(runner, "127.0.0.1", port)
        await site.start()
        runners.append(runner)
        return f"http://127.0.0.1:{port}"

    try:
        yield _start
    finally:
        for runner in runners:
            await runner.cleanup()


@pytest.fixture(autouse=True)
def reset_logging():
    """CliRunner replaces stdout; re-attach the project logger to the real one afterwards."""
    yield
    init_logging()
