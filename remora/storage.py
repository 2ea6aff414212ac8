"""Sets of visited URLs and small key/value stores backed by memory, LMDB or Redis."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import timedelta
from typing import Any

import lmdb

log = logging.getLogger(__name__)

_VISITED_PREFIX = b"visited_"


def strip_url(url: str) -> str:
    """Return the URL without its fragment."""
    return url.partition("#")[0]


def url_key(url: str) -> bytes:
    """Return the storage key used to mark a URL as visited."""
    return _VISITED_PREFIX + url.encode()


def _to_bytes(value: bytes | str) -> bytes:
    return value.encode() if isinstance(value, str) else bytes(value)


class URLSet(ABC):
    """A set of URLs that ignores fragments."""

    @abstractmethod
    def put(self, url: str) -> None:
        """Add a URL to the set."""

    @abstractmethod
    def has(self, url: str) -> bool:
        """Report whether the URL is in the set."""

    @abstractmethod
    def has_multi(self, urls: Sequence[str]) -> list[bool]:
        """Report membership for each URL, in order."""


class InMemoryURLSet(URLSet):
    """A thread-safe URL set held in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._urls: set[str] = set()

    def put(self, url: str) -> None:
        key = strip_url(url)
        with self._lock:
            self._urls.add(key)

    def has(self, url: str) -> bool:
        key = strip_url(url)
        with self._lock:
            return key in self._urls

    def has_multi(self, urls: Sequence[str]) -> list[bool]:
        keys = [strip_url(u) for u in urls]
        with self._lock:
            return [key in self._urls for key in keys]


class RedisURLSet(URLSet):
    """A URL set stored in Redis; the client needs get, set and mget."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def has(self, url: str) -> bool:
        try:
            value = self.client.get(strip_url(url))
        except Exception as exc:  # connection problems are not a miss
            log.warning("failed to get key from redis: %s", exc)
            return True
        return value is not None

    def put(self, url: str) -> None:
        self.client.set(strip_url(url), 1)

    def put_timed(self, url: str, timeout: float | timedelta) -> None:
        """Add a URL that expires after the timeout; zero means never."""
        if isinstance(timeout, timedelta):
            timeout = timeout.total_seconds()
        millis = int(timeout * 1000)
        if millis > 0:
            self.client.set(strip_url(url), 1, px=millis)
        else:
            self.client.set(strip_url(url), 1)

    def has_multi(self, urls: Sequence[str]) -> list[bool]:
        if not urls:
            return []
        keys = [strip_url(u) for u in urls]
        try:
            result = self.client.mget(keys)
        except Exception:
            return [False] * len(keys)
        return [value is not None for value in result]


class LMDBURLSet(URLSet):
    """A URL set stored in an LMDB environment."""

    def __init__(self, env: lmdb.Environment) -> None:
        self.env = env

    def has(self, url: str) -> bool:
        key = url_key(strip_url(url))
        try:
            with self.env.begin() as txn:
                return txn.get(key) is not None
        except lmdb.Error:
            return False

    def has_multi(self, urls: Sequence[str]) -> list[bool]:
        keys = [url_key(strip_url(u)) for u in urls]
        found = []
        with self.env.begin() as txn:
            for key in keys:
                try:
                    found.append(txn.get(key) is not None)
                except lmdb.Error:
                    found.append(False)
        return found

    def put(self, url: str) -> None:
        key = url_key(strip_url(url))
        with self.env.begin(write=True) as txn:
            txn.put(key, b"\x01")


class LMDBStore:
    """A byte key/value store in an LMDB environment."""

    def __init__(self, env: lmdb.Environment) -> None:
        self.env = env

    def get(self, key: bytes | str) -> bytes:
        """Return the value for key; raise KeyError when it is absent."""
        k = _to_bytes(key)
        with self.env.begin() as txn:
            value = txn.get(k)
        if value is None:
            raise KeyError(key)
        return bytes(value)

    def set(self, key: bytes | str, value: bytes | str) -> None:
        with self.env.begin(write=True) as txn:
            txn.put(_to_bytes(key), _to_bytes(value))

    def has(self, key: bytes | str) -> bool:
        try:
            with self.env.begin() as txn:
                return txn.get(_to_bytes(key)) is not None
        except lmdb.Error:
            return False


class RedisStore:
    """A byte key/value store in Redis."""

    def __init__(self, client: Any) -> None:
        self.client = client

    @staticmethod
    def _name(key: bytes | str) -> str:
        return key.decode() if isinstance(key, bytes) else key

    def get(self, key: bytes | str) -> bytes:
        """Return the value for key; raise KeyError when it is absent."""
        value = self.client.get(self._name(key))
        if value is None:
            raise KeyError(key)
        return _to_bytes(value)

    def set(self, key: bytes | str, value: bytes | str) -> None:
        self.client.set(self._name(key), _to_bytes(value))

    def has(self, key: bytes | str) -> bool:
        try:
            return self.client.get(self._name(key)) is not None
        except Exception:
            return True