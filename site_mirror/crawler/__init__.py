"""site_mirror.crawler: движок зеркалирования (планировщик, загрузчик, перезапись ссылок)."""

from .crawler import MirrorCrawler
from .models import CrawlState, ErrorEntry

__all__ = ["MirrorCrawler", "CrawlState", "ErrorEntry"]
