from __future__ import annotations

from datetime import datetime, timezone

import pytest

from vsco_archive.scraper import blog
from vsco_archive.scraper.urls import url_hash


def test_normalize_blog_html_strips_active_content() -> None:
    html = (
        "<p onclick=\"alert(1)\">Hello</p>"
        "<script>alert(2)</script>"
        "<noscript>no js</noscript>"
        "<link rel=\"stylesheet\" href=\"/x.css\">"
        "<a href=\"javascript:alert(3)\">link</a>"
    )
    result = blog.normalize_blog_html(html)

    assert "script" not in result.html
    assert "no js" not in result.html
    assert "stylesheet" not in result.html
    assert "onclick" not in result.html
    assert "javascript:" not in result.html
    assert "Hello" in result.html
    assert result.assets == []


def test_normalize_blog_html_rewrites_images_to_local_media() -> None:
    html = (
        "<p>Look</p>"
        "<img src=\"//im.vsco.co/journal/a.png\" srcset=\"x.png 2x\">"
        "<img src=\"http://im.vsco.co/journal/a.png\">"
        "<img src=\"data:image/png;base64,AAAA\">"
    )
    result = blog.normalize_blog_html(html)

    expected_id = f"blog-{url_hash('https://im.vsco.co/journal/a.png')}"
    assert [asset.media_id for asset in result.assets] == [expected_id]
    asset = result.assets[0]
    assert asset.url == "https://im.vsco.co/journal/a.png"
    assert asset.content_type == "image/png"
    assert asset.filename == f"{expected_id}.png"
    assert result.html.count(f"../../.vsco-backup/media/{expected_id}.png") == 2
    assert "srcset" not in result.html
    assert "data:image/png;base64,AAAA" in result.html
    assert "im.vsco.co" not in result.html


def test_normalize_blog_html_drops_unusable_src() -> None:
    result = blog.normalize_blog_html("<img src=\"ftp://host/a.jpg\" alt=\"a\">")
    assert "ftp://" not in result.html
    assert result.assets == []


@pytest.mark.parametrize("html", [None, "", "   "])
def test_normalize_blog_html_empty(html) -> None:
    assert blog.normalize_blog_html(html).html == ""


@pytest.mark.parametrize(
    "url, content_type",
    [
        ("https://im.vsco.co/a.jpg", "image/jpeg"),
        ("https://im.vsco.co/a.WEBP?x=1", "image/webp"),
        ("https://im.vsco.co/a.gif", "image/gif"),
        ("https://im.vsco.co/noext", "image/jpeg"),
    ],
)
def test_guess_content_type(url: str, content_type: str) -> None:
    assert blog.guess_content_type(url) == content_type


NOW = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2023-03-04T05:06:07.000Z", "2023-03-04T05:06:07.000Z"),
        ("2023-03-04", "2023-03-04T00:00:00.000Z"),
        ("March 4, 2023", "2023-03-04T00:00:00.000Z"),
        ("Sat, 04 Mar 2023 05:06:07 +0100", "2023-03-04T04:06:07.000Z"),
        ("not a date", "2024-05-06T07:08:09.000Z"),
        (None, "2024-05-06T07:08:09.000Z"),
    ],
)
def test_normalize_published_at(value, expected: str) -> None:
    assert blog.normalize_published_at(value, now=NOW) == expected
