"""Tests for the resumable conversion driver and the album build job."""

import time

import pytest

from galleria.archive import unpack_archive
from galleria.converter import thumb_cache_name
from galleria.crypto import AlbumKey, KeyRole
from galleria.errors import AuthenticationError
from galleria.job import CACHE_DIR, MANIFEST_FILE, PROGRESS_FILE, ConversionDriver
from galleria.manifest import decode_manifest
from galleria.models import AssetType
from galleria.progress import ProgressRecord, write_atomic
from conftest import ALBUM, PASSWORD, FakeConverter, build_album, make_assets


def read_manifest(album_dir, key):
    return decode_manifest(key.open((album_dir / MANIFEST_FILE).read_bytes()))


class TestConversionDriver:
    def test_first_run_converts_everything(self, tmp_path):
        assets = make_assets(5)
        converter = FakeConverter()
        result = ConversionDriver(converter, tmp_path, jobs=3).run(assets)

        assert sorted(converter.calls) == [0, 1, 2, 3, 4]
        assert result.done == [0, 1, 2, 3, 4]
        assert result.failed == []
        assert ProgressRecord.load(tmp_path / PROGRESS_FILE).done == {0, 1, 2, 3, 4}

    def test_rerun_retries_only_failures(self, tmp_path):
        assets = make_assets(6, types=[AssetType.PHOTO, AssetType.LIVE])
        first = ConversionDriver(FakeConverter(fail={2, 4}), tmp_path, jobs=2).run(assets)
        assert first.failed == [2, 4]
        assert first.done == [0, 1, 3, 5]

        converter = FakeConverter()
        second = ConversionDriver(converter, tmp_path, jobs=2).run(assets)
        assert sorted(converter.calls) == [2, 4]
        assert second.resumed == [0, 1, 3, 5]
        assert second.done == [0, 1, 2, 3, 4, 5]

    def test_completed_ids_are_never_reconverted(self, tmp_path):
        assets = make_assets(4)
        ConversionDriver(FakeConverter(), tmp_path).run(assets)

        converter = FakeConverter()
        result = ConversionDriver(converter, tmp_path).run(assets)
        assert converter.calls == []
        assert result.converted == []

    def test_interrupted_run_resumes(self, tmp_path):
        assets = make_assets(4)
        cache = tmp_path / CACHE_DIR
        cache.mkdir()
        # State left behind by a run killed after two conversions
        for n in (0, 1):
            FakeConverter().convert(assets[n], n, cache)
        write_atomic(tmp_path / PROGRESS_FILE,
                     ProgressRecord(fingerprints=[a.fingerprint for a in assets], done={0, 1}).to_dict())

        converter = FakeConverter()
        ConversionDriver(converter, tmp_path).run(assets)
        assert sorted(converter.calls) == [2, 3]

    def test_unexpected_error_still_flushes_progress(self, tmp_path):
        assets = make_assets(4)

        class BrokenDisk(FakeConverter):
            def convert(self, asset, n, cache_dir):
                if n == 3:
                    time.sleep(0.2)
                    raise OSError("disk full")
                super().convert(asset, n, cache_dir)

        with pytest.raises(OSError):
            ConversionDriver(BrokenDisk(), tmp_path, jobs=1).run(assets)
        assert ProgressRecord.load(tmp_path / PROGRESS_FILE).done == {0, 1, 2}

        converter = FakeConverter()
        ConversionDriver(converter, tmp_path).run(assets)
        assert converter.calls == [3]

    def test_changed_source_discards_progress(self, tmp_path):
        assets = make_assets(3)
        ConversionDriver(FakeConverter(), tmp_path).run(assets)

        assets[1].fingerprint += "-edited"
        converter = FakeConverter()
        ConversionDriver(converter, tmp_path).run(assets)
        assert sorted(converter.calls) == [0, 1, 2]

    def test_lost_cache_file_is_reconverted(self, tmp_path):
        assets = make_assets(3)
        ConversionDriver(FakeConverter(), tmp_path).run(assets)
        (tmp_path / CACHE_DIR / thumb_cache_name(1)).unlink()

        converter = FakeConverter()
        ConversionDriver(converter, tmp_path).run(assets)
        assert converter.calls == [1]

    def test_entries_are_renumbered_densely(self, tmp_path):
        assets = make_assets(5, types=[AssetType.PHOTO, AssetType.VIDEO])
        driver = ConversionDriver(FakeConverter(fail={1}), tmp_path)
        result = driver.run(assets)

        entries = driver.entries(assets, result.done)
        assert [e.id for e in entries] == [0, 1, 2, 3]
        assert entries[1].thumbnail_path.name == thumb_cache_name(2)
        assert entries[2].type is AssetType.VIDEO
        assert entries[2].asset_path is None


class TestBuildJob:
    def test_build_produces_decryptable_album(self, built_album, mixed_assets, album_key):
        album_dir = built_album / ALBUM
        manifest = read_manifest(album_dir, album_key)

        assert manifest.totalAssets == len(mixed_assets)
        assert len(manifest.chunks) > 1
        assert sum(m.count for m in manifest.months) == len(mixed_assets)
        for chunk in manifest.chunks:
            thumbs = unpack_archive(album_key.open((album_dir / chunk.thumbnailsFile).read_bytes()))
            assert f"thumb{chunk.startIndex}.avif" in thumbs
            assert (album_dir / chunk.originalsFile).exists()

    def test_successful_build_cleans_up(self, built_album):
        album_dir = built_album / ALBUM
        assert not (album_dir / PROGRESS_FILE).exists()
        assert not (album_dir / CACHE_DIR).exists()

    def test_failures_are_skipped_and_retried(self, tmp_path, source_dir, album_key):
        assets = make_assets(5)
        output = tmp_path / "output"
        album_dir = output / ALBUM

        result = build_album(source_dir, output, assets, converter=FakeConverter(fail={3}))
        assert result.success
        assert (result.converted, result.failed) == (4, 1)
        assert read_manifest(album_dir, album_key).totalAssets == 4
        assert (album_dir / PROGRESS_FILE).exists()

        converter = FakeConverter()
        result = build_album(source_dir, output, assets, converter=converter)
        assert converter.calls == [3]
        assert result.failed == 0
        assert read_manifest(album_dir, album_key).totalAssets == 5
        assert not (album_dir / PROGRESS_FILE).exists()

    def test_rebuild_removes_stale_chunks(self, tmp_path, source_dir, album_key):
        assets = make_assets(6)
        output = tmp_path / "output"
        build_album(source_dir, output, assets, chunk_size=1)
        assert (output / ALBUM / "thumbs-5.enc").exists()

        build_album(source_dir, output, assets, chunk_size=10 ** 9)
        names = sorted(p.name for p in (output / ALBUM).glob("*.enc"))
        assert names == ["manifest.enc", "originals-0.enc", "thumbs-0.enc"]

    def test_wrong_password_cannot_read_manifest(self, built_album):
        key = AlbumKey.derive(PASSWORD + "!", ALBUM, KeyRole.DECRYPT)
        with pytest.raises(AuthenticationError):
            read_manifest(built_album / ALBUM, key)

    def test_empty_source(self, tmp_path, source_dir):
        result = build_album(source_dir, tmp_path / "output", [])
        assert result.success
        assert result.total_assets == 0
