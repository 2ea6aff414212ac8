"""Web pages: fetching them and extracting links, keywords and metadata."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import requests
from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString
from requests.structures import CaseInsensitiveDict

from remora.queue import fnv128

log = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/90.0.0.0 Safari/537.36"
)
DEFAULT_TIMEOUT = 60.0

_REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})
_TEXT_TYPES = frozenset({"text/html", "text/plain"})
_HIDDEN_TAGS = frozenset({"script", "style"})
_CLEAN_WORDS = re.compile(r"""[()/.,!?;:'"\[\]]""")
_INT_RE = re.compile(r"[+-]?[0-9]+")


@dataclass
class PageRequest:
    """A request to crawl a URL at a given depth."""

    url: str
    depth: int = 0
    key: bytes = b""
    retry: int = 0

    def hex_key(self) -> str:
        return self.key.hex()


def _host(url: str) -> str:
    from urllib.parse import urlsplit

    return urlsplit(url).netloc.rpartition("@")[2]


def new_page_request(url: str, depth: int) -> PageRequest:
    """Build a request keyed by the hash of the URL's host."""
    return PageRequest(url=url, depth=depth, key=fnv128(_host(url).encode()))


def parse_page_request(link: str, depth: int) -> PageRequest | None:
    """Build a request from a link, or return None if it is not a valid URL."""
    try:
        return new_page_request(link, depth)
    except ValueError:
        return None


def parse_document(body: bytes | str) -> BeautifulSoup:
    """Parse an HTML document."""
    return BeautifulSoup(body, "html.parser")


@dataclass
class Page:
    """Metadata for a web page."""

    url: str
    depth: int = 0
    links: list[str] = field(default_factory=list)
    response_time: timedelta = field(default_factory=timedelta)
    redirected: bool = False
    redirected_from: str | None = None
    status: int = 0
    content_type: str = ""
    retry_after: timedelta = field(default_factory=timedelta)
    doc: BeautifulSoup | None = field(default=None, repr=False)
    encoding: str = ""
    words: list[str] = field(default_factory=list)
    is_html: bool = False
    response: Any = field(default=None, repr=False)
    hash: bytes = bytes(16)

    def fetch(self, session: requests.Session | None = None) -> None:
        """Download the page and fill in its metadata, links and keywords."""
        http = session if session is not None else requests
        start = time.monotonic()
        resp = http.get(
            self.url, headers={"User-Agent": USER_AGENT}, timeout=DEFAULT_TIMEOUT
        )
        self.response_time = timedelta(seconds=time.monotonic() - start)
        self.response = resp
        if resp.status_code == 429:
            self.retry_after = get_retry_time(resp.headers)
            log.warning(
                "%s %s %s headers=%s",
                resp.status_code,
                resp.reason,
                self.url,
                dict(resp.headers),
            )
        self.status = resp.status_code
        self.content_type = get_content_type(resp.headers)
        self.redirected = was_redirected(resp)
        if self.redirected:
            self.redirected_from = self.url
            self.url = resp.url
        body = resp.content or b""
        self.hash = fnv128(body)
        self.load_document(body)

    def load_document(self, body: bytes) -> None:
        """Parse body and extract charset, links and, for text, keywords."""
        try:
            doc = parse_document(body)
        except Exception:  # not HTML: images and other binary content
            self.is_html = False
            return
        self.is_html = True
        self.doc = doc
        self.encoding = get_charset(doc)
        self.links = get_links(doc, self.url)
        if self.content_type in _TEXT_TYPES:
            self.words = keywords(doc)

    def head(self, session: requests.Session | None = None) -> None:
        """Send a HEAD request for the page."""
        http = session if session is not None else requests
        resp = http.head(self.url, timeout=DEFAULT_TIMEOUT, allow_redirects=True)
        resp.close()

    def title(self) -> str:
        if self.doc is None:
            return ""
        return get_title(self.doc)

    def keywords(self) -> list[str]:
        """Return the words of the page; raise ValueError without a document."""
        if self.doc is None:
            raise ValueError("page has no document")
        return keywords(self.doc)


def page_from_string(link: str, depth: int) -> Page | None:
    """Return a page for link, or None if link is not a valid URL."""
    from urllib.parse import urlsplit

    try:
        urlsplit(link)
    except ValueError:
        return None
    return Page(url=link, depth=depth)


def _text_nodes(root: Tag) -> Iterator[str]:
    stack: list[Any] = [root]
    while stack:
        node = stack.pop()
        if isinstance(node, Tag):
            if node.name in _HIDDEN_TAGS:
                continue
            stack.extend(reversed(node.contents))
        elif isinstance(node, NavigableString) and not isinstance(
            node, PreformattedString
        ):
            yield str(node)


def keywords(doc: Tag) -> list[str]:
    """Return the rendered words of a document, punctuation removed."""
    text = "".join(_text_nodes(doc))
    return _CLEAN_WORDS.sub(" ", text).split()


def get_title(doc: Tag | None) -> str:
    if doc is None:
        return ""
    for tag in doc.find_all("title"):
        if tag.contents:
            child = tag.contents[0]
            return str(child) if isinstance(child, NavigableString) else child.name
    return ""


def get_charset(doc: Tag | None) -> str:
    if doc is None:
        return ""
    meta = doc.find("meta", attrs={"charset": True})
    if meta is None:
        return ""
    return str(meta["charset"])


def _is_linked(tag: Tag) -> bool:
    return (tag.name == "a" and tag.has_attr("href")) or (
        tag.name == "img" and tag.has_attr("src")
    )


def get_links(doc: Tag, base: str) -> list[str]:
    """Return the unique link and image targets resolved against base."""
    from urllib.parse import urljoin, urlsplit

    found: dict[str, None] = {}
    for tag in doc.find_all(_is_linked):
        href = tag.get("href")
        if href is not None:
            found[str(href)] = None
        src = tag.get("src")
        if src is not None and not str(src).startswith("data:image/"):
            found[str(src)] = None

    links = []
    for link in found:
        try:
            urlsplit(link)
            links.append(urljoin(base, link))
        except ValueError:
            continue
    return links


def was_redirected(response: Any) -> bool:
    """Report whether the response or any response before it was a redirect."""
    chain = [response, *(getattr(response, "history", None) or [])]
    return any(r.status_code in _REDIRECT_CODES for r in chain)


def get_retry_time(headers: Mapping[str, str]) -> timedelta:
    """Return how long to wait before retrying, from rate-limit headers."""
    h = CaseInsensitiveDict(headers)
    reset = h.get("X-Ratelimit-Rest", "")
    if reset and _INT_RE.fullmatch(reset):
        try:
            return timedelta(seconds=int(reset) - time.time())
        except OverflowError:
            return timedelta(0)
    retry = h.get("Retry-After", "")
    if retry and _INT_RE.fullmatch(retry):
        try:
            return timedelta(seconds=int(retry))
        except OverflowError:
            return timedelta(0)
    return timedelta(0)


def get_content_type(headers: Mapping[str, str]) -> str:
    """Return the media type of the Content-Type header, parameters removed."""
    return CaseInsensitiveDict(headers).get("Content-Type", "").split(";")[0]