import json
import os
import threading
import time

import lmdb
import pytest

from remora.queue import DiskQueue, QueueClosed, fnv128, open_queue


@pytest.fixture
def env(tmp_path):
    e = lmdb.open(str(tmp_path / "db"), map_size=1 << 27, sync=False)
    yield e
    e.close()


def test_one_push_pop(env):
    q = DiskQueue(env, b"test_")
    for s in [b"one", b"two", b"three", b"four"]:
        q.put(s)
        assert q.pop() == s
    assert len(q) == 0


def test_multi_push_pop(env):
    q = DiskQueue(env)
    keys = [b"one", b"two", b"three"]
    for k in keys:
        q.put_key(k, k)
    assert len(q) == 3
    with env.begin() as txn:
        for k in keys:
            assert txn.get(k) is not None
    assert q.peek() == b"one"
    assert [q.pop() for _ in keys] == keys
    with env.begin() as txn:
        assert all(txn.get(k) is None for k in keys)


def test_node_format(env):
    q = DiskQueue(env)
    q.put_key(b"one", b"v")
    with env.begin() as txn:
        stored = json.loads(txn.get(b"one"))
    assert stored == {"Key": "b25l", "Val": "dg==", "Next": None, "Count": 0}


def test_pop_without_value_returns_key(env):
    q = DiskQueue(env, b"pre_")
    q.put_key(b"name", None)
    assert q.pop() == b"name"


def test_concurrent_readers(env):
    q = DiskQueue(env)
    for i in range(200):
        q.put(bytes([i]))
    results = []
    lock = threading.Lock()

    def reader():
        for _ in range(2):
            value = q.pop()
            with lock:
                results.append(value)

    threads = [threading.Thread(target=reader) for _ in range(100)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(results) == [bytes([i]) for i in range(200)]


def test_concurrent_read_write(env):
    q = DiskQueue(env)
    got = []

    def reader():
        value = q.pop()
        got.append(value)

    t = threading.Thread(target=reader)
    t.start()
    time.sleep(0.01)
    q.put(b"one")
    t.join(timeout=5)
    assert got == [b"one"]
    assert len(q) == 0


def test_large_read_write(env):
    q = DiskQueue(env)
    n = 2000

    def key(x):
        return bytes([x >> 8, x & 0xFF])

    got = []

    def reader():
        for _ in range(n):
            got.append(q.pop())

    t = threading.Thread(target=reader)
    t.start()
    time.sleep(0.01)
    for i in range(n):
        q.put_key(key(i), key(i))
    t.join(timeout=30)
    assert got == [key(i) for i in range(n)]


def test_close_queue(env):
    q = DiskQueue(env)
    q.put(bytes([1]))
    q.put(bytes([5]))
    assert q.pop() == bytes([1])
    q.close()
    for i in range(10):
        with pytest.raises(QueueClosed):
            q.put(bytes([i]))
        with pytest.raises(QueueClosed):
            q.pop()


def test_close_wakes_blocked_reader(env):
    q = DiskQueue(env)
    errors = []

    def reader():
        try:
            q.pop()
        except QueueClosed as exc:
            errors.append(exc)

    t = threading.Thread(target=reader)
    t.start()
    time.sleep(0.01)
    q.close()
    t.join(timeout=5)
    assert not t.is_alive()
    assert len(errors) == 1
    with pytest.raises(QueueClosed):
        q.peek()


def test_random_keys(env):
    q = DiskQueue(env)
    keys = [os.urandom(32) for _ in range(256)]
    results = []

    def reader():
        for _ in keys:
            results.append((q.peek(), q.pop()))

    t = threading.Thread(target=reader)
    t.start()
    for k in keys:
        q.put(k)
    t.join(timeout=30)
    assert results == [(k, k) for k in keys]


def test_fnv128_empty_is_offset_basis():
    assert fnv128(b"") == bytes.fromhex("6c62272e07bb014262b821756295c58d")


def test_fnv128_distinguishes_inputs():
    assert len(fnv128(b"abc")) == 16
    assert fnv128(b"abc") == fnv128(b"abc")
    assert fnv128(b"abc") != fnv128(b"abd")


def test_custom_hash(env):
    q = DiskQueue(env, b"p_", hash_func=lambda data: b"h" + data)
    q.put(b"x")
    with env.begin() as txn:
        assert txn.get(b"p_hx") is not None
    assert q.pop() == b"x"


def test_open_queue(tmp_path):
    q = open_queue(tmp_path / "queue", b"q_")
    q.put(b"hello")
    q.put(b"world")
    assert len(q) == 2
    assert q.pop() == b"hello"
    q.close()
    with pytest.raises(QueueClosed):
        q.pop()