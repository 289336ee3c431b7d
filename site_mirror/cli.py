#!/usr/bin/env python3
"""
Точка входа для запуска SiteMirror через командную строку.

Команды:
  mirror URL  Скачать сайт, начиная с URL, и переписать ссылки для офлайн-просмотра
  config      Показать конфигурацию из файла

Общие опции:
  --config PATH       Путь к YAML/JSON-конфигу (параметры команды имеют приоритет)
  --log-level LEVEL   Уровень логирования (DEBUG, INFO, ...)
  --log-file PATH     Файл для логов (stdout, если не указан)
  --log-format FORMAT Формат логирования (e.g. "%(asctime)s %(levelname)s %(message)s")

Команда mirror опции:
  --depth N           Максимальная глубина обхода
  --concurrency N     Число одновременных загрузок
  --output DIR        Папка для сохранения (внутри создаётся <hostname>)
  --dwell SEC         Ожидание динамических запросов после загрузки страницы
  --recursive         Обходить найденные HTML-страницы
  --use-index         Путь без расширения -> <path>/index.html
  --sitemap / --log   Создать sitemap.json / log.json
  --clean             Удалить папку сайта перед запуском
  --renderer NAME     browser (Chromium) или static (без JavaScript)
  --json PATH         Сохранить итоговый отчёт в JSON

Дополнительно:
  --version, -v       Показать версию SiteMirror

Пример:
  site-mirror mirror https://example.com --depth 2 --recursive --sitemap --log
"""
import asyncio
import sys
from pathlib import Path

import click

from site_mirror import __version__
from site_mirror.config import MirrorConfig, load_config
from site_mirror.engine import start_mirror
from site_mirror.logger import init_logging

CONTEXT_SETTINGS = dict(help_option_names=["--help"])


def print_error(message: str):
    click.secho(message, fg='red', err=True)
    sys.exit(1)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, '--version', '-v', message='SiteMirror, version %(version)s')
@click.option(
    '--config', '-c', 'config_path',
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Путь к файлу конфигурации YAML/JSON.'
)
@click.option(
    '--log-level', 'log_level',
    default='INFO', show_default=True,
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
    help='Уровень логирования'
)
@click.option(
    '--log-file', 'log_file',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Путь к файлу логов (stdout, если не указан)'
)
@click.option(
    '--log-format', 'log_format',
    default='%(asctime)s %(levelname)s %(message)s',
    show_default=True,
    help='Строка формата для логов'
)
@click.pass_context
def cli(ctx, config_path, log_level, log_file, log_format):
    """Группа команд SiteMirror CLI."""
    init_logging(
        level=log_level,
        log_file=str(log_file) if log_file else None,
        log_format=log_format
    )
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path


@cli.command('mirror', context_settings=CONTEXT_SETTINGS)
@click.argument('url')
@click.option('--depth', '-d', 'max_depth', type=click.IntRange(min=0), default=None,
              help='Максимальная глубина обхода (по умолчанию без ограничения)')
@click.option('--concurrency', '-n', type=click.IntRange(1, 25), default=None,
              help='Число одновременных загрузок [8]')
@click.option('--output', '-o', 'output_dir', default=None,
              type=click.Path(file_okay=False, path_type=Path),
              help='Папка для сохранения [.]')
@click.option('--dwell', 'dwell_time', type=click.FloatRange(min=0), default=None,
              help='Ожидание динамического контента, секунд [3]')
@click.option('--recursive/--no-recursive', '-r', default=None, help='Обходить найденные страницы')
@click.option('--use-index/--no-use-index', '-u', default=None, help='<path>/index.html для путей без расширения')
@click.option('--sitemap/--no-sitemap', '-s', default=None, help='Создать sitemap.json')
@click.option('--log/--no-log', '-l', 'log', default=None, help='Создать log.json')
@click.option('--clean/--no-clean', default=None, help='Удалить папку сайта перед запуском')
@click.option('--renderer', type=click.Choice(['browser', 'static']), default=None,
              help='Движок рендеринга [browser]')
@click.option('--timeout', type=click.FloatRange(min=0, min_open=True), default=None,
              help='Таймаут одного HTTP-запроса, секунд [30]')
@click.option('--json', '-j', 'json_output', default=None,
              type=click.Path(writable=True, dir_okay=False, path_type=Path),
              help='Сохранить итоговый отчёт в JSON-файл')
@click.pass_context
def mirror(ctx, url, json_output, **options):
    """Скачать сайт, начиная с URL."""
    if not url.lower().startswith(('http://', 'https://')):
        print_error(f'URL должен начинаться с http:// или https://: {url}')

    overrides = {k: v for k, v in options.items() if v is not None}
    config_path = ctx.obj.get('config_path')
    try:
        if config_path:
            cfg = load_config(config_path, base_url=url, **overrides)
        else:
            cfg = MirrorConfig(base_url=url, **overrides)
    except Exception as e:
        print_error(f'Ошибка конфигурации: {e}')

    click.echo(f'Mirroring {cfg.seed_url} -> {cfg.output_root}')
    try:
        report = asyncio.run(start_mirror(cfg))
    except Exception as e:
        print_error(f'Ошибка при зеркалировании: {e}')

    click.echo(report.summary())
    if json_output:
        try:
            json_output.parent.mkdir(parents=True, exist_ok=True)
            json_output.write_text(report.json(pretty=True), encoding='utf-8')
            click.echo(f'JSON report: {json_output}')
        except OSError as e:
            print_error(f'Ошибка при сохранении JSON: {e}')


@cli.command('config', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def show_config(ctx):
    """Показать конфигурацию из файла в JSON."""
    config_path = ctx.obj.get('config_path')
    if not config_path:
        print_error('Не указан файл конфигурации (--config)')
    try:
        cfg = load_config(config_path)
    except Exception as e:
        print_error(f'Ошибка загрузки конфигурации: {e}')
    click.echo(cfg.model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
