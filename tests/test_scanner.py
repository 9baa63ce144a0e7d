"""Tests for source scanning, live-photo pairing and capture dates."""

import os
from datetime import datetime

import pytest
from PIL import Image

from galleria.models import AssetType
from galleria.scanner import SourceScanner, extract_image_date, extract_video_date, fingerprint


DATES = {
    "b.jpg": datetime(2024, 3, 1),
    "a.jpg": datetime(2024, 1, 1),
    "clip.mov": datetime(2024, 2, 1),
    "live.heic": datetime(2024, 1, 1),
}


def stub_date(path):
    return DATES.get(path.name, datetime(2020, 1, 1))


@pytest.fixture
def source(tmp_path):
    root = tmp_path / "photos"
    (root / "trip").mkdir(parents=True)
    (root / ".thumbnails").mkdir()
    for name in ("b.jpg", "a.jpg", "clip.mov", "notes.txt"):
        (root / name).write_bytes(b"data")
    (root / "trip" / "live.heic").write_bytes(b"still")
    (root / "trip" / "live.mov").write_bytes(b"motion")
    (root / ".thumbnails" / "a.jpg").write_bytes(b"ignored")
    return root


def scan(root):
    return SourceScanner(image_date=stub_date, video_date=stub_date).scan(root)


def test_scan_pairs_and_sorts(source):
    assets = scan(source)
    assert [(a.type, (a.image_path or a.video_path).name) for a in assets] == [
        (AssetType.LIVE, "live.heic"),
        (AssetType.PHOTO, "a.jpg"),
        (AssetType.VIDEO, "clip.mov"),
        (AssetType.PHOTO, "b.jpg"),
    ]
    live = assets[0]
    assert live.video_path.name == "live.mov"


def test_equal_dates_order_by_fingerprint(source):
    first = [a.fingerprint for a in scan(source)]
    assert first == [a.fingerprint for a in scan(source)]
    assert first[0] < first[1]


def test_fingerprint_tracks_content_changes(source):
    before = [a.fingerprint for a in scan(source)]
    path = source / "b.jpg"
    path.write_bytes(b"edited and longer")
    after = [a.fingerprint for a in scan(source)]
    assert before[:3] == after[:3]
    assert before[3] != after[3]


def test_fingerprint_format(tmp_path):
    path = tmp_path / "x.jpg"
    path.write_bytes(b"12345")
    stat = path.stat()
    assert fingerprint(AssetType.PHOTO, [path], tmp_path) == f"photo|x.jpg@5@{stat.st_mtime_ns}"


def test_live_fingerprint_lists_image_then_video(source):
    live = scan(source)[0]
    image_stat = (source / "trip" / "live.heic").stat()
    video_stat = (source / "trip" / "live.mov").stat()
    assert live.fingerprint == (
        f"live|trip/live.heic@5@{image_stat.st_mtime_ns}"
        f"|trip/live.mov@6@{video_stat.st_mtime_ns}"
    )


def test_scan_rejects_missing_directory(tmp_path):
    with pytest.raises(NotADirectoryError):
        scan(tmp_path / "missing")


class TestCaptureDates:
    def test_exif_date(self, tmp_path):
        path = tmp_path / "exif.jpg"
        exif = Image.Exif()
        exif[306] = "2021:06:01 10:30:00"
        Image.new("RGB", (4, 4)).save(path, exif=exif)
        assert extract_image_date(path) == datetime(2021, 6, 1, 10, 30)

    def test_image_without_exif_uses_mtime(self, tmp_path):
        path = tmp_path / "plain.png"
        Image.new("RGB", (4, 4)).save(path)
        os.utime(path, (1600000000, 1600000000))
        assert extract_image_date(path) == datetime.fromtimestamp(1600000000)

    def test_unreadable_image_uses_mtime(self, tmp_path):
        path = tmp_path / "broken.jpg"
        path.write_bytes(b"not an image")
        os.utime(path, (1500000000, 1500000000))
        assert extract_image_date(path) == datetime.fromtimestamp(1500000000)

    def test_unreadable_video_uses_mtime(self, tmp_path):
        path = tmp_path / "broken.mov"
        path.write_bytes(b"not a video")
        os.utime(path, (1500000000, 1500000000))
        assert extract_video_date(path) == datetime.fromtimestamp(1500000000)
