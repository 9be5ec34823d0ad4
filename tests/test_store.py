import asyncio

import pytest

from quizshot.errors import FetchError
from quizshot.screenshot.store import ImageStore


def test_cleanup_keeps_configured_parent(tmp_path):
    parent = tmp_path / "Videos"
    parent.mkdir()
    keep = parent / "holiday.mp4"
    keep.write_bytes(b"user data")

    store = ImageStore(parent)
    run_store = store.for_run("abc_01")
    run_store.put("shot.png", b"png")
    assert store.root.parent == parent
    assert run_store.root.parent == store.root

    store.cleanup()

    assert not store.root.exists()
    assert keep.read_bytes() == b"user data"
    assert [p.name for p in parent.iterdir()] == ["holiday.mp4"]


def test_stores_on_same_parent_are_isolated(tmp_path):
    a = ImageStore(tmp_path)
    b = ImageStore(tmp_path)
    assert a.root != b.root

    a.put("x.png", b"1")
    a.cleanup()

    assert b.root.exists()


def test_handle_released_once(tmp_path):
    handle = ImageStore(tmp_path).put("shot.png", b"data")

    assert asyncio.run(handle.fetch()) == b"data"
    assert handle.release() is True
    assert handle.release() is False
    assert not handle.path.exists()
    with pytest.raises(FetchError):
        handle.read_bytes()
