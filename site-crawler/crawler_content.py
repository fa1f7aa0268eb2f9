#!/usr/bin/env python3
"""
Content classification, link extraction and URL normalization
"""

import logging
from typing import List, Optional, Union
from urllib.parse import quote, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

from crawler_main import TRACE, CrawlerError

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {'http': 80, 'https': 443}

# RFC 3986 pchar plus '/'; '%' keeps existing escapes intact
PATH_SAFE = "/%:@!$&'()*+,;=~"


class MalformedReference(CrawlerError):
    """A discovered reference that cannot be resolved to a URL"""


class ContentTypeError(CrawlerError):
    """The response content-type is missing or unreadable"""


class HtmlParseError(CrawlerError):
    """The response body could not be parsed as HTML"""


def remove_dot_segments(path: str) -> str:
    """Resolve '.' and '..' segments of an absolute path"""
    segments = path.split('/')
    resolved = []
    for segment in segments:
        if segment == '..':
            if len(resolved) > 1:
                resolved.pop()
        elif segment != '.':
            resolved.append(segment)
    if segments[-1] in ('.', '..'):
        resolved.append('')
    return '/'.join(resolved)


def canonical_url(url: str) -> str:
    """Re-serialize an absolute URL in canonical form.

    Scheme and host are lowercased. For http(s) the default port is
    dropped, dot segments are resolved, the path is percent-encoded and an
    empty path becomes '/'. Query and fragment are kept.
    """
    try:
        parts = urlsplit(url)
        if not parts.scheme:
            raise MalformedReference(f"Not an absolute URL: {url}")
        scheme = parts.scheme.lower()
        netloc = parts.netloc.lower()
        path = parts.path
        if scheme in DEFAULT_PORTS:
            if not parts.hostname:
                raise MalformedReference(f"URL has no host: {url}")
            # ValueError on a non-numeric or out of range port
            if parts.port == DEFAULT_PORTS[scheme] or netloc.endswith(':'):
                netloc = netloc.rsplit(':', 1)[0]
            path = quote(remove_dot_segments(path), safe=PATH_SAFE) or '/'
    except ValueError as e:
        # urlsplit rejects things like unbalanced IPv6 brackets or bad ports
        raise MalformedReference(f"Cannot parse {url!r}: {e}") from e
    return urlunsplit((scheme, netloc, path, parts.query, parts.fragment))


def normalize_url(base: str, reference: str) -> str:
    """Resolve reference against base, then drop its query and fragment.

    The result is the dedup key of a URL. Raises MalformedReference when the
    reference cannot be joined into an absolute URL. Stripping is plain
    prefix truncation of the joined URL, first at '?' then at '#'.
    """
    try:
        joined = urljoin(base, reference.strip())
    except ValueError as e:
        raise MalformedReference(f"Cannot join {reference!r} onto {base}: {e}") from e

    stripped = canonical_url(joined).split('?', 1)[0]
    stripped = stripped.split('#', 1)[0]
    return canonical_url(stripped)


def host_of(url: str) -> Optional[str]:
    """Host name used for internal/external decisions (None for host-less URLs)"""
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None


def is_html(content_type: Optional[str]) -> bool:
    """Classify a content-type header value.

    Only the media type before the first ';' is compared, and it must be
    exactly 'text/html'.
    """
    if content_type is None:
        raise ContentTypeError("Response header doesn't have content-type")
    if not content_type.isascii():
        raise ContentTypeError("Cannot get content-type")
    return content_type.split(';', 1)[0] == 'text/html'


class ContentExtractor:
    """Extract raw link references from HTML using BeautifulSoup"""

    @staticmethod
    def decode(body: Union[bytes, str]) -> str:
        if isinstance(body, bytes):
            return body.decode('utf-8', errors='replace')
        return body

    @staticmethod
    def extract_links(body: Union[bytes, str]) -> List[str]:
        """Return href (or else src) values of every tag, in document order.

        Values are returned untouched; they may be relative, empty or junk.
        """
        logger.debug("Parsing html...")
        try:
            soup = BeautifulSoup(ContentExtractor.decode(body), 'lxml')
        except ParserRejectedMarkup as e:
            raise HtmlParseError(f"Cannot parse html: {e}") from e

        links = []
        for tag in soup.find_all(True):
            value = tag.get('href')
            if value is None:
                value = tag.get('src')
            if value is None:
                continue
            # Builders with multi-valued href return a list
            if isinstance(value, list):
                value = ' '.join(value)
            logger.log(TRACE, f"Found link: {value}")
            links.append(value)

        return links
