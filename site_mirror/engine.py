# File: site_mirror/engine.py
"""site_mirror.engine: Orchestration layer для запуска зеркалирования и создания артефактов."""

from __future__ import annotations

import asyncio
import shutil
import signal
import time
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from site_mirror.aggregator import MirrorReport, aggregate_results
from site_mirror.config import MirrorConfig
from site_mirror.crawler.crawler import MirrorCrawler
from site_mirror.crawler.renderer import Renderer
from site_mirror.logger import logger, save_progress
from site_mirror.report.json_report import render_log, render_sitemap

__all__ = ["start_mirror"]


@contextmanager
def _abort_on_signal(crawler: MirrorCrawler) -> Iterator[None]:
    """SIGINT/SIGTERM переводят краулер в режим прерывания вместо аварийного выхода."""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, crawler.abort)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            logger.debug("Signal handler for %s is not supported here", sig)
    try:
        yield
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


async def start_mirror(config: MirrorConfig, renderer: Optional[Renderer] = None) -> MirrorReport:
    """
    Запускает зеркалирование сайта и возвращает итоговый отчёт.

    Parameters
    ----------
    config : MirrorConfig
        Конфигурация запуска.
    renderer : Renderer, optional
        Готовый рендерер; по умолчанию создаётся по ``config.renderer``.
    """
    root = config.output_root
    if config.clean and root.exists():
        shutil.rmtree(root)
        logger.info("Clean: folder %s deleted.", root)
    root.mkdir(parents=True, exist_ok=True)

    start = time.monotonic()
    async with MirrorCrawler(config, renderer) as crawler:
        with _abort_on_signal(crawler):
            state = await crawler.crawl()
        aborted = crawler.aborted

    logger.info(state.summary())
    if not aborted:
        logger.info("*** FINISHED ***")

    artifacts: Dict[str, str] = {}
    if config.sitemap:
        sitemap = state.sitemap()
        artifacts["sitemap"] = str(render_sitemap(state, root / "sitemap.json"))
        logger.info(
            "Sitemap created (%d files: %d HTML, %d assets).",
            len(sitemap),
            len(state.visited | state.references),
            len(state.resources),
        )
    if config.log:
        if state.errors or state.failed:
            artifacts["log"] = str(render_log(state, root / "log.json"))
            logger.info("%d errors, log created.", len(state.errors))
        else:
            logger.info("No errors, log creation is skipped.")
    if aborted:
        artifacts["progress"] = str(save_progress(root / "progress.log"))

    report = aggregate_results(
        state,
        seed=crawler.seed,
        output_root=root,
        elapsed=time.monotonic() - start,
        aborted=aborted,
        artifacts=artifacts,
    )
    logger.info("Overall size: %s. Finished in %d seconds.", report.size, int(report.elapsed))
    return report
