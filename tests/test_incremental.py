from __future__ import annotations

from pathlib import Path

from vsco_archive.scraper import incremental, paths
from vsco_archive.scraper.blog import BlogAsset
from vsco_archive.scraper.incremental import IncrementalOptions, IncrementalResult
from vsco_archive.scraper.manifest import Photo, new_manifest


def _photo(photo_id: str) -> Photo:
    return Photo(
        id=photo_id,
        url_highres=f"https://im.vsco.co/{photo_id}.jpg",
        downloaded_at="2024-01-01T00:00:00.000Z",
    )


def _write_media(root: Path, media_id: str, data: bytes = b"\xff\xd8jpeg") -> Path:
    target = paths.get_media_path(root, paths.generate_media_filename(media_id))
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    return target


def test_classify_local_file(tmp_path: Path) -> None:
    target = tmp_path / "a.jpg"
    assert incremental.classify_local_file(target) == incremental.FILE_MISSING
    target.write_bytes(b"")
    assert incremental.classify_local_file(target) == incremental.FILE_INVALID
    target.write_bytes(b"12345")
    assert incremental.classify_local_file(target) == incremental.FILE_OK
    assert incremental.classify_local_file(target, expected_size=10) == incremental.FILE_INVALID
    assert incremental.classify_local_file(target, expected_size=5) == incremental.FILE_OK


def test_unchanged_rerun_produces_empty_work(tmp_path: Path) -> None:
    manifest = new_manifest("someone", "https://vsco.co/someone")
    manifest.content.photos.extend([_photo("p1"), _photo("p2")])
    _write_media(tmp_path, "p1")
    _write_media(tmp_path, "p2")

    result = incremental.detect_incremental_photos(
        tmp_path, [_photo("p1"), _photo("p2")], manifest
    )
    queue = incremental.build_download_queue(result)

    assert result == IncrementalResult()
    assert queue.queue == []
    assert queue.stats.total == 0


def test_detects_new_missing_and_truncated(tmp_path: Path) -> None:
    manifest = new_manifest("someone", "https://vsco.co/someone")
    manifest.content.photos.extend([_photo("kept"), _photo("gone"), _photo("short")])
    _write_media(tmp_path, "kept")
    _write_media(tmp_path, "short", b"abc")

    result = incremental.detect_incremental_photos(
        tmp_path,
        [_photo("kept"), _photo("fresh"), _photo("fresh")],
        manifest,
        IncrementalOptions(expected_sizes={"short": 1000}),
    )

    assert [p.id for p in result.new_items] == ["fresh"]
    assert [p.id for p in result.missing_items] == ["gone"]
    assert [p.id for p in result.invalid_items] == ["short"]


def test_zero_byte_file_is_invalid(tmp_path: Path) -> None:
    manifest = new_manifest("someone", "https://vsco.co/someone")
    manifest.content.photos.append(_photo("empty"))
    _write_media(tmp_path, "empty", b"")

    result = incremental.detect_incremental_photos(tmp_path, [], manifest)

    assert [p.id for p in result.invalid_items] == ["empty"]


def test_photos_absent_from_discovery_are_still_checked(tmp_path: Path) -> None:
    manifest = new_manifest("someone", "https://vsco.co/someone")
    manifest.content.photos.append(_photo("old"))

    result = incremental.detect_incremental_photos(tmp_path, [], manifest)

    assert [p.id for p in result.missing_items] == ["old"]


def test_build_download_queue_dedupes_and_counts(tmp_path: Path) -> None:
    photos = IncrementalResult(
        new_items=[_photo("a")],
        missing_items=[_photo("b"), _photo("a")],
        invalid_items=[_photo("c")],
    )
    asset = BlogAsset(media_id="blog-1", url="https://im.vsco.co/j.png", content_type="image/png")
    present = BlogAsset(media_id="blog-2", url="https://im.vsco.co/k.jpg")
    _write_media(tmp_path, "blog-2")

    queue = incremental.build_download_queue(
        photos,
        [asset, present],
        content_types={"c": "image/png"},
        expected_sizes={"b": 42},
        backup_root=tmp_path,
    )

    assert [item.media_id for item in queue.queue] == ["a", "b", "c", "blog-1"]
    assert [item.category for item in queue.queue] == ["new", "missing", "invalid", "new"]
    assert queue.queue[1].expected_size == 42
    assert queue.queue[2].filename == "c.png"
    assert queue.queue[3].kind == incremental.BLOG_ASSET
    assert queue.queue[3].filename == "blog-1.png"
    assert (queue.stats.new, queue.stats.missing, queue.stats.invalid) == (2, 1, 1)
