"""Page fetching, crawl visitors and sitemap retrieval."""

from __future__ import annotations

import gzip
import hashlib
import logging
import time
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import timedelta
from urllib.parse import urlsplit

import requests
from requests.adapters import BaseAdapter

from remora.page import (
    DEFAULT_TIMEOUT,
    Page,
    PageRequest,
    get_content_type,
    get_retry_time,
    was_redirected,
)

log = logging.getLogger(__name__)

RETRY_LIMIT = 5

__all__ = [
    "RETRY_LIMIT",
    "Fetcher",
    "LinkFilter",
    "NoOpVisitor",
    "Sitemap",
    "SitemapIndex",
    "SitemapURL",
    "SitemapURLSet",
    "SkipURL",
    "Visitor",
    "get_sitemap",
    "parse_sitemap",
    "parse_sitemap_index",
    "url_key",
]


def url_key(url: str) -> bytes:
    """Return the storage key marking url as visited."""
    return b"visited_" + url.encode()


class SkipURL(Exception):
    """Raised by a visitor to signal that a URL should be skipped."""

    def __init__(self, message: str = "skip url") -> None:
        super().__init__(message)


class Visitor(ABC):
    """Hooks called while crawling."""

    @abstractmethod
    def link_found(self, url: str) -> None:
        """Called when a link is taken off the queue, before any checks."""

    @abstractmethod
    def filter(self, request: PageRequest, url: str) -> None:
        """Called after depth and repeat checks; raise SkipURL to skip."""

    @abstractmethod
    def visit(self, page: Page) -> None:
        """Called after a page has been fetched."""


class NoOpVisitor(Visitor):
    """A visitor that accepts every link and page, only counting the calls."""

    def __init__(self) -> None:
        self.links_found = 0
        self.links_filtered = 0
        self.pages_visited = 0

    def link_found(self, url: str) -> None:
        self.links_found += 1

    def filter(self, request: PageRequest, url: str) -> None:
        self.links_filtered += 1

    def visit(self, page: Page) -> None:
        self.pages_visited += 1


class LinkFilter(ABC):
    """Chooses which links of a page are followed."""

    @abstractmethod
    def filter(self, page: Page) -> list[str]:
        """Return the links of page that should be crawled."""


def _seconds(value: float | timedelta) -> float:
    return value.total_seconds() if isinstance(value, timedelta) else float(value)


class Fetcher:
    """Fetches pages over HTTP with a fixed user agent."""

    def __init__(
        self,
        user_agent: str,
        *,
        timeout: float | timedelta = DEFAULT_TIMEOUT,
        transport: BaseAdapter | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = _seconds(timeout)
        self.session = session if session is not None else requests.Session()
        if transport is not None:
            self.session.mount("http://", transport)
            self.session.mount("https://", transport)

    def fetch(self, request: PageRequest) -> Page:
        """Download the requested page and return it with its metadata."""
        start = time.monotonic()
        urlsplit(request.url)
        page = Page(url=request.url, depth=request.depth)
        resp = self.session.get(
            request.url,
            headers={"User-Agent": self.user_agent},
            timeout=self.timeout,
        )
        page.response_time = timedelta(seconds=time.monotonic() - start)
        page.response = resp
        if resp.status_code == 429:
            page.retry_after = get_retry_time(resp.headers)
            log.warning(
                "%s %s %s headers=%s",
                resp.status_code,
                resp.reason,
                request.url,
                dict(resp.headers),
            )
        page.status = resp.status_code
        page.content_type = get_content_type(resp.headers)
        page.redirected = was_redirected(resp)
        if page.redirected:
            page.redirected_from = page.url
            page.url = resp.url
        body = resp.content or b""
        page.hash = hashlib.sha256(body).digest()[:16]
        page.load_document(body)
        return page


@dataclass
class Sitemap:
    """An entry of a sitemap index."""

    loc: str = ""
    last_modified: str = ""


@dataclass
class SitemapURL:
    """A URL listed in a sitemap."""

    loc: str = ""
    last_modified: str = ""
    change_freq: str = ""
    priority: float = 0.0


@dataclass
class SitemapURLSet:
    """The URLs of one sitemap."""

    urls: list[SitemapURL] = field(default_factory=list)


def _local(tag: str) -> str:
    return tag.rpartition("}")[2]


def _text(element: ET.Element) -> str:
    return (element.text or "") + "".join(child.tail or "" for child in element)


def _children(element: ET.Element, name: str) -> Iterable[ET.Element]:
    return (child for child in element if _local(child.tag) == name)


def _root(data: bytes | str, name: str) -> ET.Element:
    if isinstance(data, str):
        data = data.encode()
    try:
        root = ET.fromstring(data.lstrip())
    except ET.ParseError as exc:
        raise ValueError(f"invalid xml: {exc}") from exc
    found = _local(root.tag)
    if found != name:
        raise ValueError(f"expected element type <{name}> but have <{found}>")
    return root


def _fields(element: ET.Element) -> dict[str, str]:
    return {_local(child.tag): _text(child) for child in element}


def parse_sitemap(data: bytes | str) -> SitemapURLSet:
    """Parse a <urlset> document; raise ValueError on anything else."""
    root = _root(data, "urlset")
    urls = []
    for element in _children(root, "url"):
        values = _fields(element)
        priority = values.get("priority", "").strip()
        try:
            value = float(priority) if priority else 0.0
        except ValueError as exc:
            raise ValueError(f"invalid priority {priority!r}") from exc
        urls.append(
            SitemapURL(
                loc=values.get("loc", ""),
                last_modified=values.get("lastmod", ""),
                change_freq=values.get("changeFreq", ""),
                priority=value,
            )
        )
    return SitemapURLSet(urls=urls)


def parse_sitemap_index(data: bytes | str) -> SitemapIndex:
    """Parse a <sitemapindex> document; raise ValueError on anything else."""
    root = _root(data, "sitemapindex")
    index = []
    for element in _children(root, "sitemap"):
        values = _fields(element)
        index.append(
            Sitemap(loc=values.get("loc", ""), last_modified=values.get("lastmod", ""))
        )
    return SitemapIndex(index=index)


def _request_sitemap(sitemap: Sitemap, http) -> SitemapURLSet:
    log.info("fetching sitemap %r", sitemap.loc)
    resp = http.get(sitemap.loc, timeout=DEFAULT_TIMEOUT)
    body = resp.content or b""
    content_type = resp.headers.get("Content-Type", "")
    if content_type == "application/x-gzip":
        try:
            body = gzip.decompress(body)
        except OSError as exc:
            raise ValueError(f"could not read gzip content: {exc}") from exc
    elif content_type == "application/zip":
        raise ValueError("cannot handle zip file")
    return parse_sitemap(body)


@dataclass
class SitemapIndex:
    """A list of sitemaps together with the contents fetched for them."""

    index: list[Sitemap] = field(default_factory=list)
    contents: list[SitemapURLSet] = field(default_factory=list)

    def fill_contents(
        self, limit: int, session: requests.Session | None = None
    ) -> None:
        """Fetch every sitemap of the index, at most limit at a time."""
        if len(self.index) == len(self.contents):
            return
        if limit < 1:
            raise ValueError("limit must be at least 1")
        http = session if session is not None else requests
        self.contents = []
        with ThreadPoolExecutor(max_workers=limit) as pool:
            futures = {
                pool.submit(_request_sitemap, sitemap, http): sitemap
                for sitemap in self.index
            }
            for future in as_completed(futures):
                sitemap = futures[future]
                try:
                    self.contents.append(future.result())
                except (requests.RequestException, ValueError) as exc:
                    log.warning(
                        "could not get sitemap loc=%s lastmod=%s: %s",
                        sitemap.loc,
                        sitemap.last_modified,
                        exc,
                    )


def get_sitemap(link: str, session: requests.Session | None = None) -> SitemapIndex:
    """Download a sitemap or sitemap index and return it as an index."""
    http = session if session is not None else requests
    resp = http.get(link, timeout=DEFAULT_TIMEOUT)
    body = resp.content or b""
    try:
        url_set = parse_sitemap(body)
    except ValueError as exc:
        log.debug("got sitemap index, not one sitemap: %s", exc)
        return parse_sitemap_index(body)
    return SitemapIndex(index=[Sitemap(loc=link)], contents=[url_set])