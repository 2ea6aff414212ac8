"""Cache-Control parsing and a response-caching transport adapter for requests."""

from __future__ import annotations

import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from enum import IntEnum, IntFlag
from http import HTTPStatus

import requests
from requests.adapters import BaseAdapter, HTTPAdapter
from requests.structures import CaseInsensitiveDict
from requests.utils import get_encoding_from_headers


class Scope(IntEnum):
    PRIVATE = 0
    PUBLIC = 1


class CacheAttr(IntFlag):
    NONE = 0
    NO_STORE = 1
    NO_CACHE = 2
    NO_TRANSFORM = 4
    MUST_REVALIDATE = 8
    PROXY_REVALIDATE = 16
    ONLY_IF_CACHED = 32


@dataclass
class CacheControl:
    """The directives of a Cache-Control header."""

    scope: Scope = Scope.PRIVATE
    attrs: CacheAttr = CacheAttr.NONE
    max_age: timedelta = field(default_factory=timedelta)
    shared_max_age: timedelta = field(default_factory=timedelta)

    def _has(self, attr: CacheAttr) -> bool:
        return self.attrs & attr == attr

    def no_store(self) -> bool:
        return self._has(CacheAttr.NO_STORE)

    def no_cache(self) -> bool:
        return self._has(CacheAttr.NO_CACHE)

    def no_transform(self) -> bool:
        return self._has(CacheAttr.NO_TRANSFORM)

    def must_revalidate(self) -> bool:
        return self._has(CacheAttr.MUST_REVALIDATE)

    def proxy_revalidate(self) -> bool:
        return self._has(CacheAttr.PROXY_REVALIDATE)

    def only_if_cached(self) -> bool:
        return self._has(CacheAttr.ONLY_IF_CACHED)


_FLAGS = {
    "no-store": CacheAttr.NO_STORE,
    "no-cache": CacheAttr.NO_CACHE,
    "no-transform": CacheAttr.NO_TRANSFORM,
    "must-revalidate": CacheAttr.MUST_REVALIDATE,
    "proxy-revalidate": CacheAttr.PROXY_REVALIDATE,
    "only-if-cached": CacheAttr.ONLY_IF_CACHED,
}

_INT_RE = re.compile(r"[+-]?[0-9]+")


def _parse_seconds(name: str, value: str | None) -> timedelta:
    if value is None or not _INT_RE.fullmatch(value):
        raise ValueError(f"invalid value for {name}: {value!r}")
    n = int(value)
    if not -(1 << 31) <= n < (1 << 31):
        raise ValueError(f"value out of range for {name}: {value!r}")
    return timedelta(seconds=n)


def _fields(value: str):
    """Yield the comma separated fields with all whitespace removed."""
    buf: list[str] = []
    last = len(value) - 1
    for i, ch in enumerate(value):
        if ch in " \t\n":
            continue
        if ch == ",":
            yield "".join(buf)
            buf.clear()
            continue
        buf.append(ch)
        if i == last:
            yield "".join(buf)


def parse_cache_control(value: str) -> CacheControl:
    """Parse a Cache-Control header value; raise ValueError on a bad number."""
    ctrl = CacheControl()
    for item in _fields(value):
        name, eq, arg = item.lower().partition("=")
        argument = arg if eq else None
        if name == "public":
            ctrl.scope = Scope.PUBLIC
        elif name == "private":
            ctrl.scope = Scope.PRIVATE
        elif name in _FLAGS:
            ctrl.attrs |= _FLAGS[name]
        elif name == "max-age":
            ctrl.max_age = _parse_seconds(name, argument)
        elif name in ("s-max-age", "s-maxage"):
            ctrl.shared_max_age = _parse_seconds(name, argument)
    return ctrl


class Cache(ABC):
    """Storage for raw HTTP responses."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return the stored bytes; raise KeyError when absent."""

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """Store bytes under key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key if present."""


class MemoryCache(Cache):
    """A thread-safe in-memory cache."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, bytes] = {}

    def get(self, key: str) -> bytes:
        with self._lock:
            return self._data[key]

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


_DROPPED_HEADERS = {"content-length", "transfer-encoding", "content-encoding"}


def dump_response(response: requests.Response) -> bytes:
    """Serialise a response as HTTP/1.1 bytes with a decoded body."""
    body = response.content or b""
    reason = response.reason
    if not reason:
        try:
            reason = HTTPStatus(response.status_code).phrase
        except ValueError:
            reason = ""
    lines = [f"HTTP/1.1 {response.status_code} {reason}"]
    lines.extend(
        f"{name}: {value}"
        for name, value in response.headers.items()
        if name.lower() not in _DROPPED_HEADERS
    )
    lines.append(f"Content-Length: {len(body)}")
    head = "\r\n".join(lines) + "\r\n\r\n"
    return head.encode("iso-8859-1", errors="replace") + body


def _load_response(raw: bytes, request: requests.PreparedRequest) -> requests.Response:
    head, sep, body = raw.partition(b"\r\n\r\n")
    if not sep:
        raise ValueError("malformed cached response")
    status_line, *header_lines = head.decode("iso-8859-1").split("\r\n")
    version, _, rest = status_line.partition(" ")
    if not version.startswith("HTTP/"):
        raise ValueError("malformed status line")
    code, _, reason = rest.partition(" ")
    headers: CaseInsensitiveDict = CaseInsensitiveDict()
    for line in header_lines:
        name, colon, value = line.partition(":")
        if not colon:
            raise ValueError(f"malformed header line {line!r}")
        name, value = name.strip(), value.strip()
        headers[name] = f"{headers[name]}, {value}" if name in headers else value
    length = headers.get("Content-Length")
    if length is not None:
        body = body[: int(length)]
    response = requests.Response()
    response.status_code = int(code)
    response.reason = reason
    response.headers = headers
    response._content = body
    response.url = request.url
    response.request = request
    response.encoding = get_encoding_from_headers(headers)
    return response


class CachingAdapter(BaseAdapter):
    """A transport adapter that stores cacheable GET and HEAD responses."""

    def __init__(self, cache: Cache, transport: BaseAdapter | None = None) -> None:
        super().__init__()
        self.cache = cache
        self.transport = transport if transport is not None else HTTPAdapter()

    def send(self, request: requests.PreparedRequest, **kwargs) -> requests.Response:
        key = f"{request.method}.{request.url}"
        if request.method not in ("GET", "HEAD"):
            self.cache.delete(key)
        try:
            cached = _load_response(self.cache.get(key), request)
        except (KeyError, ValueError):
            pass
        else:
            cached.headers["X-From-Cache"] = "1"
            return cached

        response = self.transport.send(request, **kwargs)
        cache_control = response.headers.get("Cache-Control", "")
        pragma = response.headers.get("Pragma", "").lower()
        if pragma == "no-cache" or cache_control == "":
            return response
        try:
            ctrl = parse_cache_control(cache_control)
        except ValueError:
            return response
        if ctrl.no_cache() or ctrl.no_store():
            return response
        self.cache.set(key, dump_response(response))
        return response

    def close(self) -> None:
        self.transport.close()