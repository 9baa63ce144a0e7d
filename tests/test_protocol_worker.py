"""Tests for the decode worker and its message protocol."""

import pytest

from galleria.archive import pack_archive
from galleria.cache import CacheState
from galleria.errors import AuthenticationError, MalformedArchiveError, TransportError
from galleria.models import ChunkKind
from galleria.protocol import (
    ChunkError, ChunkReady, DecryptManifestRequest, FetchChunkRequest, InitReady,
    InitRequest, ManifestDecrypted, ManifestError, expect,
)
from galleria.store import AssetStore
from galleria.worker import DecodeWorker
from conftest import ALBUM, PASSWORD, CountingTransport


@pytest.fixture
def worker(built_album, tmp_path):
    store = AssetStore(tmp_path / "worker.sqlite")
    worker = DecodeWorker(CountingTransport(built_album / ALBUM), store)
    yield worker
    store.close()


class TestExpect:
    def test_accepts_allowed_variants(self):
        assert isinstance(expect(InitRequest(ALBUM, PASSWORD), InitReady()), InitReady)
        error = ChunkError(ChunkKind.VIDEOS, 0, TransportError("x", "y"))
        assert expect(FetchChunkRequest(ChunkKind.VIDEOS, 0, "videos-0.enc"), error) is error

    def test_rejects_response_for_another_request(self):
        with pytest.raises(TypeError):
            expect(DecryptManifestRequest(), InitReady())

    def test_rejects_unknown_request(self):
        with pytest.raises(TypeError):
            expect(object(), InitReady())

    def test_password_is_not_in_repr(self):
        assert PASSWORD not in repr(InitRequest(ALBUM, PASSWORD))


class TestDecodeWorker:
    def test_handshake(self, worker):
        assert isinstance(worker.handle(InitRequest(ALBUM, PASSWORD)), InitReady)
        response = worker.handle(DecryptManifestRequest())
        assert isinstance(response, ManifestDecrypted)
        assert response.cache_state is CacheState.FIRST
        assert response.manifest.totalAssets == 9

    def test_wrong_password(self, worker):
        worker.handle(InitRequest(ALBUM, "wrong"))
        response = worker.handle(DecryptManifestRequest())
        assert isinstance(response, ManifestError)
        assert isinstance(response.error, AuthenticationError)

    def test_missing_album(self, worker):
        worker.transport.inner.album_dir = worker.transport.inner.album_dir.parent / "nope"
        worker.handle(InitRequest(ALBUM, PASSWORD))
        response = worker.handle(DecryptManifestRequest())
        assert isinstance(response.error, TransportError)

    def test_fetch_chunk_persists_entries_and_meta(self, worker):
        worker.handle(InitRequest(ALBUM, PASSWORD))
        manifest = worker.handle(DecryptManifestRequest()).manifest
        chunk = manifest.chunks[0]

        response = worker.handle(FetchChunkRequest(ChunkKind.THUMBNAILS, 0, chunk.thumbnailsFile))
        assert isinstance(response, ChunkReady)
        expected_ids = list(range(chunk.startIndex, chunk.endIndex + 1))
        assert sorted(response.ids) == expected_ids
        assert worker.store.keys("thumbnails") == expected_ids
        assert worker.store.keys("meta") == expected_ids
        assert response.meta["1"]["type"] == "video"

    def test_fetch_chunk_error_carries_identity(self, worker):
        worker.handle(InitRequest(ALBUM, PASSWORD))
        response = worker.handle(FetchChunkRequest(ChunkKind.VIDEOS, 5, "videos-5.enc"))
        assert isinstance(response, ChunkError)
        assert (response.kind, response.chunk_id) == (ChunkKind.VIDEOS, 5)

    def test_archive_without_asset_entries(self, worker, built_album, album_key):
        (built_album / ALBUM / "originals-9.enc").write_bytes(
            album_key.seal(pack_archive({"readme.txt": b"hi"})))
        worker.handle(InitRequest(ALBUM, PASSWORD))
        response = worker.handle(FetchChunkRequest(ChunkKind.ORIGINALS, 9, "originals-9.enc"))
        assert isinstance(response.error, MalformedArchiveError)

    def test_unknown_request(self, worker):
        with pytest.raises(TypeError):
            worker.handle("not a request")
