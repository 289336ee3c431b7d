# File: site_mirror/aggregator.py
"""site_mirror.aggregator: Модуль итогового отчёта о зеркалировании."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from site_mirror.crawler.models import CrawlState
from site_mirror.utils import folder_size, human_size


@dataclass(slots=True)
class MirrorReport:
    """Итоги запуска: счётчики, размер каталога, время и созданные артефакты."""

    seed: str
    output_root: str
    pages: int = 0
    assets: int = 0
    errors: int = 0
    failed: int = 0
    error_rate: float = 0.0
    size_bytes: int = 0
    elapsed: float = 0.0
    aborted: bool = False
    artifacts: Dict[str, str] = field(default_factory=dict)
    failed_urls: List[str] = field(default_factory=list)

    @property
    def size(self) -> str:
        return human_size(self.size_bytes)

    def summary(self) -> str:
        """Строка вида ``Pages: 3 | Assets: 10 | Errors: 1 (7.14%)``."""
        return (
            f"Pages: {self.pages} | Assets: {self.assets} | "
            f"Errors: {self.errors} ({self.error_rate:.2f}%)"
        )

    def json(self, *, pretty: bool = False) -> str:
        """Возвращает JSON-представление отчёта."""
        return json.dumps(asdict(self), ensure_ascii=False, indent=2 if pretty else None)


def aggregate_results(
    state: CrawlState,
    *,
    seed: str,
    output_root: Path,
    elapsed: float = 0.0,
    aborted: bool = False,
    artifacts: Optional[Dict[str, str]] = None,
) -> MirrorReport:
    """Собирает итоговый MirrorReport из состояния обхода."""
    return MirrorReport(
        seed=seed,
        output_root=str(output_root),
        pages=len(state.visited),
        assets=len(state.resources),
        errors=len(state.errors),
        failed=len(state.failed),
        error_rate=state.error_rate(),
        size_bytes=folder_size(output_root) if output_root.exists() else 0,
        elapsed=elapsed,
        aborted=aborted,
        artifacts=dict(artifacts or {}),
        failed_urls=sorted(state.failed),
    )
