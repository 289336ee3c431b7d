# File: site_mirror/report/__init__.py
"""site_mirror.report: Генерация артефактов зеркала (sitemap.json, log.json), используемая engine и тестами."""

from __future__ import annotations

from .json_report import render_log, render_sitemap

__all__ = ["render_sitemap", "render_log"]
