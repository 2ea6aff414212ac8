"""A persistent FIFO queue stored as a linked list in LMDB."""

from __future__ import annotations

import base64
import json
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass

import lmdb

_FNV128_OFFSET = 0x6C62272E07BB014262B821756295C58D
_FNV128_PRIME = 0x0000000001000000000000000000013B
_MASK128 = (1 << 128) - 1

_DEFAULT_MAP_SIZE = 1 << 28


class QueueClosed(Exception):
    """Raised when a closed queue is used."""

    def __init__(self, message: str = "queue closed") -> None:
        super().__init__(message)


def fnv128(data: bytes) -> bytes:
    """Return the 128-bit FNV-1 hash of data as 16 big-endian bytes."""
    h = _FNV128_OFFSET
    for byte in data:
        h = (h * _FNV128_PRIME) & _MASK128
        h ^= byte
    return h.to_bytes(16, "big")


def _b64(value: bytes | None) -> str | None:
    return None if value is None else base64.b64encode(value).decode("ascii")


def _unb64(value: str | None) -> bytes | None:
    return None if value is None else base64.b64decode(value)


@dataclass
class _Node:
    key: bytes
    val: bytes | None = None
    next: bytes | None = None
    count: int = 0

    def encode(self) -> bytes:
        return json.dumps(
            {
                "Key": _b64(self.key),
                "Val": _b64(self.val),
                "Next": _b64(self.next),
                "Count": self.count,
            }
        ).encode()

    @classmethod
    def decode(cls, raw: bytes) -> _Node:
        data = json.loads(raw)
        return cls(
            key=_unb64(data.get("Key")) or b"",
            val=_unb64(data.get("Val")),
            next=_unb64(data.get("Next")),
            count=data.get("Count", 0),
        )


class DiskQueue:
    """A blocking FIFO queue whose items live in an LMDB environment."""

    def __init__(
        self,
        env: lmdb.Environment,
        prefix: bytes = b"",
        hash_func: Callable[[bytes], bytes] = fnv128,
        *,
        owns_env: bool = False,
    ) -> None:
        self.env = env
        self.prefix = bytes(prefix or b"")
        self._hash = hash_func
        self._owns_env = owns_env
        self._cond = threading.Condition()
        self._closed = False
        self._head: bytes | None = None
        self._tail: bytes | None = None
        self._size = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Mark the queue closed and wake every waiting reader."""
        with self._cond:
            if not self._closed and self._owns_env:
                self.env.close()
            self._closed = True
            self._cond.notify_all()

    def put(self, data: bytes) -> None:
        """Append data, keyed by its hash."""
        if self._closed:
            raise QueueClosed()
        self.put_key(self._hash(data), data)

    def put_key(self, key: bytes, value: bytes | None) -> None:
        """Append value, stored under prefix + key."""
        if self._closed:
            raise QueueClosed()
        full_key = self.prefix + key
        node = _Node(key=full_key, val=value)
        with self._cond:
            if self._closed:
                raise QueueClosed()
            first = self._head is None or self._size == 0
            with self.env.begin(write=True) as txn:
                if not first:
                    tail = self._get_node(txn, self._tail)
                    tail.next = full_key
                    txn.put(tail.key, tail.encode())
                txn.put(node.key, node.encode())
            if first:
                self._head = full_key
            self._tail = full_key
            self._size += 1
            self._cond.notify()

    def pop(self) -> bytes:
        """Remove and return the front item, blocking while the queue is empty."""
        with self._cond:
            self._wait()
            with self.env.begin(write=True) as txn:
                node = self._get_node(txn, self._head)
                txn.delete(node.key)
            self._head = node.next
            self._size -= 1
            return self._value(node)

    def peek(self) -> bytes:
        """Return the front item without removing it, blocking while empty."""
        with self._cond:
            self._wait()
            with self.env.begin() as txn:
                node = self._get_node(txn, self._head)
            return self._value(node)

    def __len__(self) -> int:
        with self._cond:
            return self._size

    def _wait(self) -> None:
        while self._size == 0 and not self._closed:
            self._cond.wait()
        if self._closed:
            raise QueueClosed()

    def _value(self, node: _Node) -> bytes:
        if node.val is None:
            return node.key.removeprefix(self.prefix)
        return node.val

    @staticmethod
    def _get_node(txn: lmdb.Transaction, key: bytes | None) -> _Node:
        raw = txn.get(key) if key else None
        if raw is None:
            raise KeyError(key)
        return _Node.decode(raw)


def open_queue(
    path: str | os.PathLike,
    prefix: bytes = b"",
    hash_func: Callable[[bytes], bytes] = fnv128,
) -> DiskQueue:
    """Open an LMDB environment at path and return a queue that owns it."""
    env = lmdb.open(os.fspath(path), map_size=_DEFAULT_MAP_SIZE)
    return DiskQueue(env, prefix, hash_func, owns_env=True)