"""Shared fixtures for the crawler test suite"""

import time
from typing import Dict, List, Tuple, Union

import pytest

from crawler_core import FetchError, PageResponse
from crawler_main import CrawlerConfig

HTML = "text/html; charset=utf-8"


class FakeFetcher:
    """Serve canned responses by URL and record when each fetch started"""

    def __init__(self, pages: Dict[str, Union[Tuple[str, str, int], Exception]] = None):
        self.pages = pages or {}
        self.calls: List[Tuple[str, float]] = []

    def add(self, url: str, body: str, content_type: str = HTML, status: int = 200):
        self.pages[url] = (body, content_type, status)

    @property
    def fetched(self) -> List[str]:
        return [url for url, _ in self.calls]

    async def fetch(self, url: str) -> PageResponse:
        self.calls.append((url, time.monotonic()))
        page = self.pages.get(url)
        if page is None:
            raise FetchError(f"Cannot connect to host for {url}")
        if isinstance(page, Exception):
            raise page
        body, content_type, status = page
        return PageResponse(url=url, status=status, content_type=content_type,
                            body=body.encode('utf-8'))


def links_page(*hrefs: str) -> str:
    anchors = "".join(f'<a href="{href}">link</a>' for href in hrefs)
    return f"<html><head><title>t</title></head><body>{anchors}</body></html>"


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def config():
    """Fast configuration: no delay between requests"""
    return CrawlerConfig(request_delay_ms=0, workers=4)
