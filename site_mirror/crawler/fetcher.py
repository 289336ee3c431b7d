# site_mirror/crawler/fetcher.py
"""
Downloader: one HTTP GET per resource, streamed to its resolved local path.
"""
from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import BinaryIO, NamedTuple, Optional

from aiohttp import ClientError, ClientSession
from site_mirror.crawler.models import CrawlState
from site_mirror.crawler.paths import PathResolver
from site_mirror.logger import logger
from site_mirror.utils import normalize_url


class DownloadError(Exception):
    """A request that did not produce a usable body (status, transport or disk)."""


class TextDocument(NamedTuple):
    text: str
    charset: str
    url: str


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _part_path(target: Path) -> Path:
    return target.with_name(target.name + ".part")


class Downloader:
    """Fetches resources into the mirror and records them in the resource map.

    Failures are data: :meth:`fetch` turns every status, transport and
    filesystem error into a FailedSet/ErrorLog entry and returns ``False``.
    """

    CHUNK_SIZE = 64 * 1024

    def __init__(self, session: ClientSession, state: CrawlState, resolver: PathResolver) -> None:
        self.session = session
        self.state = state
        self.resolver = resolver

    async def fetch(self, url: str, base_url: Optional[str] = None, label: str = "Asset") -> bool:
        """
        Download *url* (resolved against *base_url*) unless it is already on disk.

        The resource map entry is written only after the body has been fully
        written and moved into place, so it never points at a partial file.
        """
        norm = normalize_url(url, base_url)
        kind = f"{label} Resource"
        name = norm.rstrip("/").rsplit("/", 1)[-1] or norm
        target = self.resolver.resolve(norm)
        self.state.total_requests += 1
        try:
            if target.is_file():
                logger.debug("%s already on disk: %s", kind, norm)
            else:
                self.state.bytes_written += await self._stream_to_file(norm, target, kind, name)
                logger.info("%s: %s", kind, norm)
            self.state.record_resource(norm, self.resolver.relative(norm))
            logger.debug(self.state.summary())
            return True
        except DownloadError as exc:
            self.state.record_failure(norm, str(exc))
            logger.warning("%s", exc)
            return False
        except Exception as exc:
            self.state.record_failure(norm, f"{kind} '{name}': {_describe(exc)}")
            logger.exception("Unexpected error while downloading %s", norm)
            return False
        finally:
            self.state.pending.discard(norm)

    async def _stream_to_file(self, url: str, target: Path, kind: str, name: str) -> int:
        part = _part_path(target)
        size = 0
        try:
            async with self.session.get(url) as resp:
                if not 200 <= resp.status < 300:
                    raise DownloadError(f"{kind} '{name}': {resp.status} ({resp.reason})")
                fh = await asyncio.to_thread(self._open_part, part)
                try:
                    async for chunk in resp.content.iter_chunked(self.CHUNK_SIZE):
                        await asyncio.to_thread(fh.write, chunk)
                        size += len(chunk)
                finally:
                    await asyncio.to_thread(fh.close)
            await asyncio.to_thread(os.replace, part, target)
        except (ClientError, asyncio.TimeoutError) as exc:
            raise DownloadError(f"Error while retrieving '{name}': {_describe(exc)}") from exc
        except OSError as exc:
            raise DownloadError(f"Error on writing '{name}': {_describe(exc)}") from exc
        finally:
            part.unlink(missing_ok=True)
        return size

    @staticmethod
    def _open_part(part: Path) -> BinaryIO:
        part.parent.mkdir(parents=True, exist_ok=True)
        return part.open("wb")

    async def fetch_text(self, url: str) -> TextDocument:
        """Fetch a document verbatim; raises DownloadError.

        ``TextDocument.url`` is the address the body was served from, after
        redirects.
        """
        try:
            async with self.session.get(url) as resp:
                if not 200 <= resp.status < 300:
                    raise DownloadError(
                        f"Error while trying to open {url}. Status {resp.status}: {resp.reason}"
                    )
                body = await resp.read()
                charset = resp.charset or "utf-8"
                final_url = str(resp.url)
        except (ClientError, asyncio.TimeoutError) as exc:
            raise DownloadError(f"Error while trying to open {url}: {_describe(exc)}") from exc

        try:
            return TextDocument(body.decode(charset, errors="replace"), charset, final_url)
        except LookupError:
            return TextDocument(body.decode("utf-8", errors="replace"), "utf-8", final_url)

    async def save_text(self, target: Path, text: str, charset: str = "utf-8") -> int:
        """Write a (rewritten) document; raises OSError."""
        return await asyncio.to_thread(self._write_text, target, text, charset)

    @staticmethod
    def _write_text(target: Path, text: str, charset: str) -> int:
        try:
            data = text.encode(charset, errors="xmlcharrefreplace")
        except LookupError:
            data = text.encode("utf-8")
        target.parent.mkdir(parents=True, exist_ok=True)
        part = _part_path(target)
        try:
            part.write_bytes(data)
            os.replace(part, target)
        finally:
            part.unlink(missing_ok=True)
        return len(data)
