from __future__ import annotations

from pathlib import Path

import pytest

from vsco_archive.scraper import paths


def test_layout_under_backup_root(tmp_path: Path) -> None:
    assert paths.get_manifest_path(tmp_path) == tmp_path / ".vsco-backup" / "manifest.json"
    assert paths.get_media_path(tmp_path, "a.jpg") == tmp_path / ".vsco-backup" / "media" / "a.jpg"
    assert paths.get_logs_dir(tmp_path) == tmp_path / ".vsco-backup" / "logs"
    assert paths.get_gallery_path(tmp_path, "trips") == tmp_path / "galleries" / "trips" / "index.html"
    assert paths.get_blog_path(tmp_path, "hello") == tmp_path / "blog" / "hello" / "index.html"
    assert paths.get_index_path(tmp_path) == tmp_path / "index.html"


def test_media_href_from_page() -> None:
    assert paths.media_href_from_page("blog-abc.jpg") == "../../.vsco-backup/media/blog-abc.jpg"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Summer Trip 2024", "summer-trip-2024"),
        ("  Café  au_lait!! ", "cafe-au-lait"),
        ("---", ""),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_slug(text, expected: str) -> None:
    assert paths.normalize_slug(text) == expected


def test_generate_slug_collisions_use_hash_then_counter() -> None:
    registry: dict[str, str] = {}
    first = paths.generate_slug("Hello World", "post-1", registry)
    second = paths.generate_slug("Hello World", "post-2", registry)
    assert first == "hello-world"
    assert second == f"hello-world-{paths.short_hash('post-2')}"

    # Force the hashed form to be taken by someone else.
    registry[f"hello-world-{paths.short_hash('post-3')}"] = "intruder"
    third = paths.generate_slug("Hello World", "post-3", registry)
    assert third == "hello-world-2"
    assert len(set(registry)) == len(registry)


def test_generate_slug_is_stable_for_same_id() -> None:
    registry: dict[str, str] = {}
    paths.generate_slug("Hello", "a", registry)
    paths.generate_slug("Hello", "b", registry)
    assert paths.generate_slug("Hello", "a", registry) == "hello"
    assert paths.generate_slug("Hello", "b", registry) == f"hello-{paths.short_hash('b')}"


def test_generate_slug_empty_name_uses_id_hash() -> None:
    slug = paths.generate_slug("!!!", "post-9")
    assert slug == f"item-{paths.short_hash('post-9')}"
    assert paths.is_valid_slug(slug)


@pytest.mark.parametrize(
    "content_type, ext",
    [
        (None, "jpg"),
        ("image/jpeg", "jpg"),
        ("image/PNG; charset=binary", "png"),
        ("video/mp4", "mp4"),
        ("text/html", "bin"),
    ],
)
def test_extension_for_content_type(content_type, ext: str) -> None:
    assert paths.extension_for_content_type(content_type) == ext


def test_generate_media_filename_is_safe_and_bounded() -> None:
    assert paths.generate_media_filename("abc123") == "abc123.jpg"
    assert paths.generate_media_filename("a/../b", "image/png") == f"ab-{paths.short_hash('a/../b')}.png"
    long_name = paths.generate_media_filename("x" * 400)
    assert len(long_name) + len(".tmp") <= paths.MAX_FILENAME_CHARS
    assert paths.is_valid_filename(long_name)
    fallback = paths.generate_media_filename("///")
    assert fallback.startswith("item-")
    assert paths.is_valid_filename(fallback)


def test_generate_media_filename_keeps_sanitised_ids_apart() -> None:
    names = {
        paths.generate_media_filename(media_id)
        for media_id in ("ab", "a_b", "a.b", "a b")
    }
    assert len(names) == 4
    assert "ab.jpg" in names
    assert all(paths.is_valid_filename(name) for name in names)


def test_generate_media_filename_truncation_keeps_ids_apart() -> None:
    first = paths.generate_media_filename("x" * 400 + "1")
    second = paths.generate_media_filename("x" * 400 + "2")
    assert first != second
    assert len(first) + len(".tmp") <= paths.MAX_FILENAME_CHARS


@pytest.mark.parametrize("name", ["", "../a.jpg", "a/b.jpg", "a b.jpg", "x" * 256])
def test_is_valid_filename_rejects(name: str) -> None:
    assert not paths.is_valid_filename(name)
