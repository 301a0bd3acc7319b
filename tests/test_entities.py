from __future__ import annotations

import pytest

from vsco_archive.scraper import entities
from vsco_archive.scraper.entities import PhotoCandidate

CAPTURED = "2024-01-01T00:00:00.000Z"


@pytest.fixture
def event_recorder(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, dict]]:
    events: list[tuple[str, dict]] = []

    def _record(event_phase: str, **fields: object) -> None:
        events.append((event_phase, fields))

    monkeypatch.setattr(entities, "_scraper_event", _record)
    return events


def test_photo_candidate_from_dom_falls_back_to_href_id() -> None:
    candidate = entities.photo_candidate_from_dom(
        {
            "href": "https://vsco.co/someone/media/5f3a9b",
            "imageUrl": "//im.vsco.co/a.jpg",
            "srcset": "",
            "width": "640",
            "caption": "  sunset ",
        }
    )
    assert candidate.id == "5f3a9b"
    assert candidate.image_url == "//im.vsco.co/a.jpg"
    assert candidate.srcset is None
    assert candidate.width == 640
    assert candidate.caption == "sunset"


def test_build_photos_selects_highest_resolution(event_recorder) -> None:
    photos = entities.build_photos(
        [
            PhotoCandidate(
                id="p1",
                image_url="//im.vsco.co/p1-small.jpg",
                srcset="//im.vsco.co/p1-480.jpg 480w, //im.vsco.co/p1-2048.jpg 2048w",
                width=300,
                gallery_id="g1",
            )
        ],
        captured_at=CAPTURED,
    )
    assert len(photos) == 1
    photo = photos[0]
    assert photo.id == "p1"
    assert photo.url_highres == "https://im.vsco.co/p1-2048.jpg"
    assert photo.width == 2048
    assert photo.source_gallery_id == "g1"
    assert photo.downloaded_at == CAPTURED


def test_build_photos_skips_unusable_and_dedupes(event_recorder) -> None:
    photos = entities.build_photos(
        [
            PhotoCandidate(id="bad", image_url="data:image/png;base64,AAAA"),
            PhotoCandidate(id="none"),
            PhotoCandidate(id="p1", image_url="https://im.vsco.co/p1.jpg", caption="first"),
            PhotoCandidate(id="p1", image_url="https://im.vsco.co/p1-b.jpg", caption="second"),
            PhotoCandidate(id=None, image_url="https://im.vsco.co/anon.jpg"),
        ],
        captured_at=CAPTURED,
    )

    assert [p.id for p in photos][:1] == ["p1"]
    assert photos[0].caption == "first"
    assert photos[1].id.startswith("photo-")
    skipped = [fields for label, fields in event_recorder if fields.get("phase") == "skip_photo"]
    assert {fields["id"] for fields in skipped} == {"bad", "none"}
    reasons = {fields["id"]: fields["reason"] for fields in skipped}
    assert reasons["bad"] == "Unsupported protocol: data:"


def test_build_galleries_keeps_gallery_with_bad_cover(event_recorder) -> None:
    galleries = entities.build_galleries(
        [
            {
                "href": "https://vsco.co/someone/gallery/abc123",
                "name": "Trips",
                "coverUrl": "blob:https://vsco.co/x",
                "photoIds": ["p1", "p1", "p2", 3],
            },
            {"href": "https://vsco.co/someone/gallery/abc123", "name": "Duplicate"},
            {"name": "No link"},
        ]
    )
    assert len(galleries) == 1
    gallery = galleries[0]
    assert gallery.id == "abc123"
    assert gallery.name == "Trips"
    assert gallery.cover_photo_url is None
    assert gallery.photo_ids == ["p1", "p2"]
    assert any(fields.get("phase") == "skip_cover" for _, fields in event_recorder)


def test_build_blog_posts_sanitises_and_collects_assets(event_recorder) -> None:
    registry = {"hello": "older-post"}
    result = entities.build_blog_posts(
        [
            {
                "href": "https://vsco.co/someone/journal/hello-world",
                "title": "Hello",
                "html": "<p>Hi</p><img src=\"//im.vsco.co/j/a.jpg\"><script>x()</script>",
                "publishedAt": "2023-03-04",
            }
        ],
        slug_registry=registry,
    )
    assert len(result.posts) == 1
    post = result.posts[0]
    assert post.id == "hello-world"
    assert post.slug != "hello"
    assert post.slug.startswith("hello-")
    assert "<script>" not in post.content_html
    assert post.published_at == "2023-03-04T00:00:00.000Z"
    assert len(result.assets) == 1
    assert result.assets[0].url == "https://im.vsco.co/j/a.jpg"
