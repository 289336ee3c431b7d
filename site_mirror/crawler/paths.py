# site_mirror/crawler/paths.py
"""
Mapping of normalized URLs to sanitized local file paths.
"""
from __future__ import annotations

import posixpath
import re
from pathlib import Path
from typing import Union
from urllib.parse import unquote, urlsplit

_ILLEGAL_RUN = re.compile(r'[<>:"/\\|?*\x00-\x1f]+')
_UNDERSCORES = re.compile(r"_{2,}")
_SLASHES = re.compile(r"/{2,}")


def sanitize_segment(segment: str) -> str:
    """Make one decoded path segment safe as a file or folder name."""
    clean = _UNDERSCORES.sub("_", _ILLEGAL_RUN.sub("_", unquote(segment)))
    if clean in (".", ".."):
        return "_"
    return clean


class PathResolver:
    """Resolves URLs to paths under *root*.

    The result depends only on the URL path, the root and the index policy,
    so the same URL always maps to the same file within a run.
    """

    def __init__(
        self,
        root: Union[str, Path],
        *,
        use_index: bool = False,
        index_name: str = "index.html",
    ) -> None:
        self.root = Path(root)
        self.use_index = use_index
        self.index_name = index_name

    def relative(self, url: str) -> str:
        """POSIX path of *url* relative to the root, e.g. ``"css/site.css"``."""
        path = _SLASHES.sub("/", urlsplit(url).path)
        is_folder = path.endswith("/")
        path = path.strip("/")

        if not path:
            rel = self.index_name
        elif is_folder:
            rel = f"{path}/{self.index_name}"
        elif not posixpath.splitext(path.rsplit("/", 1)[-1])[1]:
            rel = f"{path}/{self.index_name}" if self.use_index else f"{path}.html"
        else:
            rel = path

        return "/".join(sanitize_segment(s) for s in rel.split("/") if s)

    def resolve(self, url: str) -> Path:
        return self.root.joinpath(*self.relative(url).split("/"))

    def exists(self, url: str) -> bool:
        return self.resolve(url).is_file()
