"""Shared fixtures and test doubles."""

import threading
import time
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from galleria.config import BuildConfig, ViewerConfig
from galleria.converter import expected_outputs
from galleria.crypto import AlbumKey, KeyRole
from galleria.errors import ConversionError, TransportError
from galleria.job import BuildJob
from galleria.models import AssetType, ScannedAsset
from galleria.transport import DirectoryTransport, Transport

ALBUM = "summer-2024"
PASSWORD = "correct horse battery staple"


class FakeConverter:
    """Writes placeholder cache files instead of running ffmpeg."""

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.calls = []
        self._lock = threading.Lock()

    def convert(self, asset, n, cache_dir):
        with self._lock:
            self.calls.append(n)
        if n in self.fail:
            raise ConversionError(n, "simulated failure")
        for name in expected_outputs(asset.type, n):
            (Path(cache_dir) / name).write_bytes(f"{name}:{asset.fingerprint}".encode())


class FakeScanner:
    def __init__(self, assets):
        self.assets = list(assets)

    def scan(self, source_dir):
        return list(self.assets)


class CountingTransport(Transport):
    """Local transport that counts fetches per file and can be told to fail."""

    def __init__(self, album_dir, fail=(), delay=0.0):
        self.inner = DirectoryTransport(album_dir)
        self.fail = set(fail)
        self.delay = delay
        self.counts = {}
        self.closed = False
        self._lock = threading.Lock()

    def fetch(self, name):
        with self._lock:
            self.counts[name] = self.counts.get(name, 0) + 1
        if self.delay:
            time.sleep(self.delay)
        if name in self.fail:
            raise TransportError(name, "simulated outage")
        return self.inner.fetch(name)

    def close(self):
        self.closed = True


def make_assets(count, types=None, start=datetime(2024, 1, 20, 9, 30), step=timedelta(days=9)):
    """Scanned assets spread over several months, oldest first."""
    assets = []
    for i in range(count):
        asset_type = types[i % len(types)] if types else AssetType.PHOTO
        image = Path(f"img{i}.jpg") if asset_type is not AssetType.VIDEO else None
        video = Path(f"img{i}.mov") if asset_type is not AssetType.PHOTO else None
        assets.append(ScannedAsset(
            type=asset_type,
            date=start + step * i,
            image_path=image,
            video_path=video,
            fingerprint=f"{asset_type.value}|img{i}@100@{i}",
        ))
    return assets


def build_album(source, output, assets, converter=None, chunk_size=100, album=ALBUM, password=PASSWORD):
    job = BuildJob(
        album, password,
        config=BuildConfig(chunk_size=chunk_size, jobs=2),
        converter=converter or FakeConverter(),
        scanner=FakeScanner(assets),
    )
    return job.run(source, output)


@pytest.fixture(scope="session")
def album_key():
    return AlbumKey.derive(PASSWORD, ALBUM, KeyRole.ENCRYPT)


@pytest.fixture
def source_dir(tmp_path):
    path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture
def viewer_config(tmp_path):
    return ViewerConfig(cache_dir=tmp_path / "viewer-cache", handshake_timeout=10.0)


@pytest.fixture
def mixed_assets():
    return make_assets(9, types=[AssetType.PHOTO, AssetType.VIDEO, AssetType.LIVE])


@pytest.fixture
def built_album(tmp_path, source_dir, mixed_assets):
    """Output root holding one album built from placeholder conversions."""
    output = tmp_path / "output"
    result = build_album(source_dir, output, mixed_assets)
    assert result.success
    return output
