# site_mirror/report/json_report.py

"""
Генерация JSON-артефактов зеркала: sitemap.json и log.json.
"""
import json
from pathlib import Path
from typing import Any

from site_mirror.crawler.models import CrawlState


def _dump(data: Any, output_path: Path | str) -> Path:
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open('w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    return output


def render_sitemap(state: CrawlState, output_path: Path | str) -> Path:
    """
    Сохраняет sitemap.json: страницы (посещённые и найденные), затем ресурсы.

    Пример:
    ```python
    from site_mirror.report.json_report import render_sitemap
    render_sitemap(crawler.state, 'example.com/sitemap.json')
    ```
    """
    return _dump(state.sitemap(), output_path)


def render_log(state: CrawlState, output_path: Path | str) -> Path:
    """
    Сохраняет log.json в формате ``{"Errors": [...], "Failed_Downloads": [...]}``.

    :param state: состояние обхода с ошибками и неудачными загрузками
    :param output_path: путь к JSON-файлу
    :return: Path сохранённого файла
    """
    data = {
        'Errors': [entry.as_dict() for entry in state.errors],
        'Failed_Downloads': sorted(state.failed),
    }
    return _dump(data, output_path)
