#!/usr/bin/env python3
"""
Filesystem storage for crawled pages and URL list exports

Pages are mirrored to <root>/<host>/<path>. Existing files are never
overwritten.
"""

import logging
import os
from pathlib import Path
from typing import Iterable
from urllib.parse import urlsplit

import aiofiles

from crawler_main import TRACE, CrawlerError

logger = logging.getLogger(__name__)


class StorageError(CrawlerError):
    """A page could not be persisted"""


class AlreadyExistsError(StorageError):
    """The mirrored file is already on disk"""


class PersistIOError(StorageError):
    """Directory or file creation failed"""


class PageStorage:
    """Mirror page bodies into a directory tree keyed by URL"""

    def __init__(self, root_dir: str, logger: logging.Logger = None):
        self.root = Path(root_dir)
        self.logger = logger or logging.getLogger(__name__)

    def mirrored_path(self, url: str, is_html: bool) -> Path:
        """Map a URL to its file path under the storage root"""
        parts = urlsplit(url)
        if not parts.hostname:
            raise StorageError(f"Cannot get host: {url}")

        relative = parts.path
        if relative.startswith('/'):
            relative = relative[1:]
        if relative.endswith('/'):
            relative = relative[:-1]
        elif relative.endswith('\\'):
            relative = relative[:-1]

        if '..' in relative.replace('\\', '/').split('/'):
            raise StorageError(f"Path escapes storage root: {url}")

        path = self.root / parts.hostname
        if relative:
            path = path / relative
        if is_html and not path.name.endswith('.html'):
            path = path / 'index.html'
        return path

    async def persist(self, url: str, is_html: bool, body: bytes) -> Path:
        """Write body to the mirrored path, refusing to overwrite"""
        self.logger.log(TRACE, "Downloading file...")
        path = self.mirrored_path(url, is_html)

        self.logger.log(TRACE, f"Creating directories: {path.parent}")
        try:
            os.makedirs(path.parent, exist_ok=True)
        except (OSError, ValueError) as e:
            raise PersistIOError(f"Cannot create directory: {path.parent}: {e}") from e

        if path.exists():
            raise AlreadyExistsError(f"File already exists: {path}")

        self.logger.log(TRACE, f"Writing to file: {path}")
        try:
            # 'x' fails if the file appeared after the check
            async with aiofiles.open(path, mode='xb') as f:
                await f.write(body)
        except FileExistsError as e:
            raise AlreadyExistsError(f"File already exists: {path}") from e
        except (OSError, ValueError) as e:
            raise PersistIOError(f"Cannot write to file: {path}: {e}") from e

        return path


async def export_urls(file_name: str, urls: Iterable[str]) -> bool:
    """Write one URL per line, replacing the file. Failures are logged only."""
    try:
        async with aiofiles.open(file_name, mode='w', encoding='utf-8') as f:
            for url in urls:
                await f.write(f"{url}\n")
    except OSError as e:
        logger.error(f"Cannot write to file: {file_name}: {e}")
        return False

    logger.info(f"Exported to file: {file_name}")
    return True
