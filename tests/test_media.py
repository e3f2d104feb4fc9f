from __future__ import annotations

import io
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

import media
from errors import NoFileUploaded, OversizedUpload
from media import MediaStore, classify, stored_name


@pytest.mark.parametrize(
    "content_type,kind",
    [
        ("image/png", "image"),
        ("IMAGE/JPEG", "image"),
        ("audio/ogg", "audio"),
        ("video/mp4", "video"),
        ("application/pdf", "file"),
        ("", "file"),
        (None, "file"),
    ],
)
def test_classify(content_type, kind):
    assert classify(content_type) == kind


def test_stored_name_replaces_whitespace_and_keeps_extension():
    assert stored_name("my summer  cat.png", stamp=1700000000000) == "my-summer-cat-1700000000000.png"


def test_stored_name_drops_directories_and_falls_back():
    assert stored_name("../../etc/passwd", stamp=5) == "passwd-5"
    assert stored_name("C:\\Users\\me\\clip.mp4", stamp=5) == "clip-5.mp4"
    assert stored_name(None, stamp=5) == "upload-5"
    assert stored_name("", stamp=5) == "upload-5"


def test_save_writes_file_and_returns_reference(tmp_path):
    store = MediaStore(tmp_path / "uploads")
    ref = store.save(io.BytesIO(b"\x89PNG data"), "cat.png", "image/png")

    assert ref.kind == "image"
    assert ref.url.startswith("/uploads/cat-")
    assert ref.url.endswith(".png")
    stored = store.directory / ref.url.rsplit("/", 1)[1]
    assert stored.read_bytes() == b"\x89PNG data"


def test_identical_names_in_same_millisecond_do_not_collide(tmp_path, monkeypatch):
    monkeypatch.setattr(media, "now_ms", lambda: 1234)
    store = MediaStore(tmp_path / "uploads")

    first = store.save(io.BytesIO(b"one"), "song.mp3", "audio/mpeg")
    second = store.save(io.BytesIO(b"two"), "song.mp3", "audio/mpeg")

    assert first.url == "/uploads/song-1234.mp3"
    assert second.url == "/uploads/song-1234-1.mp3"
    assert (store.directory / "song-1234.mp3").read_bytes() == b"one"
    assert (store.directory / "song-1234-1.mp3").read_bytes() == b"two"


def test_missing_source_raises_no_file(tmp_path):
    store = MediaStore(tmp_path / "uploads")
    with pytest.raises(NoFileUploaded):
        store.save(None, None, None)


def test_oversized_upload_is_rejected_and_partial_file_removed(tmp_path):
    store = MediaStore(tmp_path / "uploads", max_bytes=4)

    with pytest.raises(OversizedUpload):
        store.save(io.BytesIO(b"12345"), "big.bin", "application/octet-stream")
    with pytest.raises(OversizedUpload):
        store.save(io.BytesIO(b"1"), "big.bin", "application/octet-stream", size=5)

    assert list(store.directory.iterdir()) == []


def test_concurrent_saves_with_identical_names_get_distinct_files(tmp_path, monkeypatch):
    monkeypatch.setattr(media, "now_ms", lambda: 4242)
    store = MediaStore(tmp_path / "uploads")
    workers = 8
    barrier = threading.Barrier(workers)

    def save(i: int):
        barrier.wait()
        return store.save(io.BytesIO(f"payload-{i}".encode()), "same.png", "image/png")

    with ThreadPoolExecutor(max_workers=workers) as pool:
        refs = list(pool.map(save, range(workers)))

    urls = [ref.url for ref in refs]
    assert len(set(urls)) == workers
    contents = sorted(p.read_bytes() for p in store.directory.iterdir())
    assert contents == sorted(f"payload-{i}".encode() for i in range(workers))
