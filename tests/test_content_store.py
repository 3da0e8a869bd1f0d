import hashlib

import pytest

from snapvcs.errors import ErrorKind
from snapvcs.impl.memory import MemoryContentStore


@pytest.mark.parametrize(
    "data",
    [b"", b"hello", b"\x00\xff" * 100, "héllo wörld".encode()],
    ids=["empty", "ascii", "binary", "utf8"],
)
def test_get_returns_what_was_put(data: bytes):
    store = MemoryContentStore()
    content_hash = store.put(data).unwrap()
    assert store.get(content_hash).unwrap() == data
    assert content_hash == hashlib.sha1(data).hexdigest()


def test_put_deduplicates():
    store = MemoryContentStore()
    first = store.put(b"same bytes").unwrap()
    second = store.put(b"same bytes").unwrap()

    assert first == second
    assert len(store) == 1, "Store should hold exactly one copy"
    assert store.hashes() == [first]


def test_get_missing_blob():
    store = MemoryContentStore()
    result = store.get("0" * 40)
    assert not result
    assert result.error is ErrorKind.NOT_FOUND


def test_remove_deletes_blob():
    store = MemoryContentStore()
    content_hash = store.put(b"temporary").unwrap()

    assert store.remove(content_hash)
    assert store.contains(content_hash) is False
    assert store.get(content_hash).error is ErrorKind.NOT_FOUND
    assert store.remove(content_hash).error is ErrorKind.NOT_FOUND


def test_remove_refuses_referenced_blob():
    store = MemoryContentStore()
    content_hash = store.put(b"committed").unwrap()
    store.retain([content_hash, content_hash])

    result = store.remove(content_hash)
    assert result.error is ErrorKind.PROTECTED_STATE
    assert store.get(content_hash).unwrap() == b"committed"

    store.release([content_hash])
    assert store.remove(content_hash).error is ErrorKind.PROTECTED_STATE
    store.release([content_hash])
    assert store.remove(content_hash)


def test_release_never_goes_negative():
    store = MemoryContentStore()
    content_hash = store.put(b"x").unwrap()
    store.release([content_hash, content_hash])
    assert store.refcount(content_hash) == 0

    store.retain([content_hash])
    assert store.refcount(content_hash) == 1


def test_state_keeps_refcounts():
    store = MemoryContentStore()
    content_hash = store.put(b"kept").unwrap()
    store.retain([content_hash])

    restored = MemoryContentStore.from_state(store.to_state(), dict(store.blobs))
    assert restored.refcount(content_hash) == 1
    assert restored.get(content_hash).unwrap() == b"kept"
