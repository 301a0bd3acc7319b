from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pytest

from fakes import FakePage, FakeSession, photo_record, session_factory_for
from vsco_archive.scraper import paths, run
from vsco_archive.scraper.config import BackupOptions
from vsco_archive.scraper.errors import (
    DownloadFailureError,
    InvalidInputError,
    ProfileNotFoundError,
    RobotsDisallowedError,
    ScrapeError,
)
from vsco_archive.scraper.manifest import RunStatus, read_manifest
from vsco_archive.scraper.robots import RobotsCheckResult

JPEG = b"\xff\xd8\xff\xe0fake-jpeg"
LOGGER = logging.getLogger("test-run")


class FakeResponse:
    def __init__(self, status_code: int, content: bytes = b"") -> None:
        self.status_code = status_code
        self.content = content
        self.headers = {"Content-Type": "image/jpeg"}

    def close(self) -> None:
        pass


class FakeHttp:
    def __init__(self, statuses: dict[str, int] | None = None) -> None:
        self.statuses = statuses or {}
        self.urls: list[str] = []

    def __call__(self, url: str, **kwargs: Any) -> FakeResponse:
        self.urls.append(url)
        status = self.statuses.get(url, 200)
        return FakeResponse(status, JPEG if status == 200 else b"")


def _allow(username: str, **kwargs: Any) -> RobotsCheckResult:
    return RobotsCheckResult(allowed=True, reason="robots.txt allows profile crawling", fetch_success=True)


def _page() -> FakePage:
    return FakePage(id_batches=[["a", "b"]], photos=[photo_record("a"), photo_record("b")])


def _run(tmp_path: Path, page: FakePage, http: FakeHttp, **kwargs: Any):
    options = kwargs.pop("options", None) or BackupOptions(
        out_root=tmp_path, no_new_content_threshold=1
    )
    return run.run_backup(
        "someone",
        options,
        logger=LOGGER,
        robots_checker=kwargs.pop("robots_checker", _allow),
        session_factory=kwargs.pop("session_factory", session_factory_for(page)),
        http_get=http,
        sleep=lambda s: None,
        **kwargs,
    )


@pytest.fixture(autouse=True)
def reset_sessions() -> None:
    FakeSession.instances.clear()


def test_first_run_downloads_everything(tmp_path: Path) -> None:
    http = FakeHttp()

    result = _run(tmp_path, _page(), http)

    assert result.status == RunStatus.SUCCESS
    assert sorted(http.urls) == ["https://im.vsco.co/a.jpg", "https://im.vsco.co/b.jpg"]
    assert paths.get_media_path(tmp_path, "a.jpg").read_bytes() == JPEG
    assert FakeSession.instances[0].closed

    manifest = read_manifest(tmp_path)
    assert [p.id for p in manifest.content.photos] == ["a", "b"]
    assert len(manifest.backup_runs) == 1
    record = manifest.backup_runs[0]
    assert record.run_id == result.run_id
    assert record.status == RunStatus.SUCCESS
    assert record.new_content_count == 2
    assert sorted(record.downloaded_items) == ["a", "b"]
    assert record.robots_policy is not None and record.robots_policy.allowed
    assert manifest.profile.last_backup_ts == record.ts


def test_unchanged_rerun_does_no_work(tmp_path: Path) -> None:
    _run(tmp_path, _page(), FakeHttp())
    http = FakeHttp()

    result = _run(tmp_path, _page(), http)

    assert http.urls == []
    assert result.queue_stats.total == 0
    manifest = read_manifest(tmp_path)
    assert len(manifest.backup_runs) == 2
    second = manifest.backup_runs[1]
    assert (second.new_content_count, second.missing_content_count, second.invalid_content_count) == (0, 0, 0)
    assert second.downloaded_items == []
    assert [p.id for p in manifest.content.photos] == ["a", "b"]


def test_missing_and_truncated_files_are_recaptured(tmp_path: Path) -> None:
    _run(tmp_path, _page(), FakeHttp())
    paths.get_media_path(tmp_path, "a.jpg").unlink()
    paths.get_media_path(tmp_path, "b.jpg").write_bytes(b"")
    http = FakeHttp()

    _run(tmp_path, _page(), http)

    assert sorted(http.urls) == ["https://im.vsco.co/a.jpg", "https://im.vsco.co/b.jpg"]
    record = read_manifest(tmp_path).backup_runs[-1]
    assert record.missing_content_count == 1
    assert record.invalid_content_count == 1
    assert paths.get_media_path(tmp_path, "b.jpg").read_bytes() == JPEG


def test_partial_download_raises_after_saving_manifest(tmp_path: Path) -> None:
    http = FakeHttp({"https://im.vsco.co/b.jpg": 404})

    with pytest.raises(DownloadFailureError) as excinfo:
        _run(tmp_path, _page(), http)

    assert excinfo.value.code == 5
    manifest = read_manifest(tmp_path)
    record = manifest.backup_runs[-1]
    assert record.status == RunStatus.PARTIAL
    assert record.downloaded_items == ["a"]
    assert "1 of 2 downloads failed" in (record.error_message or "")
    # The failed photo stays in the manifest so the next run sees it as missing.
    assert [p.id for p in manifest.content.photos] == ["a", "b"]
    assert list(paths.get_logs_dir(tmp_path).glob("download-failures-*.json"))


def test_robots_disallow_stops_before_browser(tmp_path: Path) -> None:
    def _deny(username: str, **kwargs: Any) -> RobotsCheckResult:
        return RobotsCheckResult(allowed=False, reason="robots.txt disallows", fetch_success=True)

    with pytest.raises(RobotsDisallowedError):
        _run(tmp_path, _page(), FakeHttp(), robots_checker=_deny)

    assert FakeSession.instances == []
    record = read_manifest(tmp_path).backup_runs[-1]
    assert record.status == RunStatus.FAILED
    assert "disallowed by robots.txt" in (record.error_message or "")
    assert record.robots_policy is not None
    assert record.robots_policy.allowed is False
    assert record.robots_policy.fetch_success is True
    assert record.robots_policy.ignored is False


def test_failed_run_save_error_keeps_run_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    saves: list[str] = []
    real_save = run.save_manifest_atomic

    def _save(root: Path, manifest: Any) -> None:
        saves.append(manifest.backup_runs[-1].status.value)
        if len(saves) > 1:
            raise OSError("No space left on device")
        real_save(root, manifest)

    def _deny(username: str, **kwargs: Any) -> RobotsCheckResult:
        return RobotsCheckResult(allowed=False, reason="robots.txt disallows", fetch_success=True)

    monkeypatch.setattr(run, "save_manifest_atomic", _save)
    with pytest.raises(RobotsDisallowedError):
        _run(tmp_path, _page(), FakeHttp(), robots_checker=_deny)

    assert saves == ["success", "failed"]
    assert len(read_manifest(tmp_path).backup_runs) == 1


def test_robots_fetch_failure_can_abort(tmp_path: Path) -> None:
    def _offline(username: str, **kwargs: Any) -> RobotsCheckResult:
        return RobotsCheckResult(allowed=True, reason="fetch failed", fetch_success=False)

    options = BackupOptions(out_root=tmp_path, robots_fetch_failure_policy="abort")
    with pytest.raises(RobotsDisallowedError):
        _run(tmp_path, _page(), FakeHttp(), robots_checker=_offline, options=options)

    record = read_manifest(tmp_path).backup_runs[-1]
    assert record.status == RunStatus.FAILED
    assert record.robots_policy is not None
    assert record.robots_policy.fetch_success is False


def test_robots_fetch_failure_proceeds_by_default(tmp_path: Path) -> None:
    def _offline(username: str, **kwargs: Any) -> RobotsCheckResult:
        return RobotsCheckResult(allowed=True, reason="fetch failed", fetch_success=False)

    result = _run(tmp_path, _page(), FakeHttp(), robots_checker=_offline)

    assert result.robots_policy.fetch_success is False
    record = read_manifest(tmp_path).backup_runs[-1]
    assert record.robots_policy is not None
    assert record.robots_policy.fetch_success is False


def test_ignore_robots_skips_check(tmp_path: Path) -> None:
    def _explode(username: str, **kwargs: Any) -> RobotsCheckResult:
        raise AssertionError("robots check should be skipped")

    options = BackupOptions(out_root=tmp_path, ignore_robots=True, no_new_content_threshold=1)
    result = _run(tmp_path, _page(), FakeHttp(), robots_checker=_explode, options=options)

    assert result.robots_policy.ignored is True
    record = read_manifest(tmp_path).backup_runs[-1]
    assert record.robots_policy is not None and record.robots_policy.ignored


def test_profile_not_found_records_failed_run(tmp_path: Path) -> None:
    with pytest.raises(ProfileNotFoundError) as excinfo:
        _run(tmp_path, FakePage(status=404), FakeHttp())

    assert excinfo.value.code == 3
    assert FakeSession.instances[0].closed
    record = read_manifest(tmp_path).backup_runs[-1]
    assert record.status == RunStatus.FAILED


def test_private_profile_raises_profile_not_found(tmp_path: Path) -> None:
    page = FakePage(visible=(), texts=["This profile is private"])
    with pytest.raises(ProfileNotFoundError):
        _run(tmp_path, page, FakeHttp())


def test_browser_startup_failure_is_scrape_error(tmp_path: Path) -> None:
    def _factory(**kwargs: Any):
        raise RuntimeError("Executable doesn't exist at /ms-playwright/chromium")

    with pytest.raises(ScrapeError) as excinfo:
        _run(tmp_path, _page(), FakeHttp(), session_factory=_factory)

    assert excinfo.value.phase == "browser startup"
    record = read_manifest(tmp_path).backup_runs[-1]
    assert record.status == RunStatus.FAILED


def test_existing_blog_slugs_are_kept(tmp_path: Path) -> None:
    blog_record = {
        "id": "",
        "href": "/someone/journal/post-a",
        "title": "Hello",
        "publishedAt": "2023-03-04",
        "html": "<p>Hi</p>",
    }
    page = FakePage(photos=[photo_record("a")], blog=[blog_record])
    _run(tmp_path, page, FakeHttp())

    other = dict(blog_record, href="/someone/journal/post-b")
    page = FakePage(photos=[photo_record("a")], blog=[other])
    _run(tmp_path, page, FakeHttp())

    posts = read_manifest(tmp_path).content.blog_posts
    assert [p.id for p in posts] == ["post-a", "post-b"]
    assert posts[0].slug == "hello"
    assert posts[1].slug != "hello"


def test_unwritable_out_root_is_invalid_input(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    with pytest.raises(InvalidInputError):
        run.ensure_backup_root(blocker)


def test_gallery_membership_and_journal_reach_manifest(tmp_path: Path) -> None:
    gallery_url = "https://vsco.co/someone/gallery/trips"
    journal_url = "https://vsco.co/someone/journal"

    def _profile(gallery_ids: list[str]) -> FakePage:
        return FakePage(
            id_batches=[["a", "b"]],
            photos=[photo_record("a"), photo_record("b")],
            galleries=[{"id": "", "href": "/someone/gallery/trips", "name": "Trips", "coverUrl": ""}],
            subpages={
                gallery_url: {"visible": {"[data-id]"}, "photo_ids": gallery_ids},
                journal_url: {
                    "visible": {"article"},
                    "blog": [
                        {
                            "id": "notes-1",
                            "href": "",
                            "title": "Notes",
                            "publishedAt": "2023-03-04",
                            "html": "<p>Inline post</p>",
                        }
                    ],
                },
            },
        )

    first = _profile(["a"])
    _run(tmp_path, first, FakeHttp())
    assert first.gotos == ["https://vsco.co/someone/gallery", gallery_url, journal_url]

    _run(tmp_path, _profile(["b", "a"]), FakeHttp())

    content = read_manifest(tmp_path).content
    assert [(g.id, g.photo_ids) for g in content.galleries] == [("trips", ["a", "b"])]
    assert [p.title for p in content.blog_posts] == ["Notes"]
    assert "Inline post" in content.blog_posts[0].content_html
