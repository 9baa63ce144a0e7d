import json
import sqlite3
from typing import Dict, List, Optional, Tuple
import logging

from .archive import META_ENTRY, entry_id, unpack_archive
from .cache import CacheValidator
from .crypto import AlbumKey, KeyRole, sha256_hex
from .errors import GalleryError, MalformedArchiveError
from .manifest import decode_manifest
from .models import ChunkKind
from .protocol import (
	ChunkError, ChunkReady, DecryptManifestRequest, FetchChunkRequest, InitReady,
	InitRequest, ManifestDecrypted, ManifestError, WorkerRequest, WorkerResponse,
)
from .store import AssetStore
from .transport import Transport

logger = logging.getLogger(__name__)


class DecodeWorker:
	"""
	Does the heavy lifting for one album session: key derivation, fetching,
	decryption, decompression, unpacking and store writes.
	Runs inside the session's single decode thread; never called concurrently.
	"""

	def __init__(self, transport: Transport, store: AssetStore):
		self.transport = transport
		self.store = store
		self._key: Optional[AlbumKey] = None
		self.album_name = ""

	def handle(self, request: WorkerRequest) -> WorkerResponse:
		if isinstance(request, InitRequest):
			return self._handle_init(request)
		if isinstance(request, DecryptManifestRequest):
			return self._handle_decrypt_manifest(request)
		if isinstance(request, FetchChunkRequest):
			return self._handle_fetch_chunk(request)
		raise TypeError(f"Unhandled request type: {type(request).__name__}")

	def _decrypt(self, data: bytes) -> bytes:
		if self._key is None:
			raise RuntimeError("Worker not initialized")
		return self._key.open(data)

	def _handle_init(self, request: InitRequest) -> WorkerResponse:
		try:
			self._key = AlbumKey.derive(request.password, request.album_name, KeyRole.DECRYPT)
		except (TypeError, ValueError) as e:
			return ManifestError(e)
		self.album_name = request.album_name
		logger.debug(f"Derived key for album {request.album_name}")
		return InitReady()

	def _handle_decrypt_manifest(self, request: DecryptManifestRequest) -> WorkerResponse:
		try:
			decrypted = self._decrypt(self.transport.fetch(request.file_name))
			manifest = decode_manifest(decrypted)
			cache_state = CacheValidator(self.store).validate(decrypted)
		except (GalleryError, sqlite3.Error) as e:
			return ManifestError(e)

		return ManifestDecrypted(
			manifest=manifest,
			manifest_hash=sha256_hex(decrypted),
			cache_state=cache_state,
		)

	def _handle_fetch_chunk(self, request: FetchChunkRequest) -> WorkerResponse:
		kind, chunk_id = request.kind, request.chunk_id
		try:
			files = unpack_archive(self._decrypt(self.transport.fetch(request.file_name)))
			meta = self._pop_meta(files, request.file_name)
			ids = self._persist(kind, files)
			if meta:
				self.store.put_many(
					"meta", [(int(k), json.dumps(v).encode('utf-8')) for k, v in meta.items()]
				)
		except (GalleryError, sqlite3.Error) as e:
			logger.error(f"Chunk error: {kind.value}-{chunk_id}: {e}")
			return ChunkError(kind, chunk_id, e)

		logger.debug(f"Chunk {kind.value}-{chunk_id} ready: {len(ids)} entries")
		return ChunkReady(kind, chunk_id, tuple(ids), meta)

	@staticmethod
	def _pop_meta(files: Dict[str, bytes], file_name: str) -> Optional[Dict[str, dict]]:
		"""Take meta.json out of a thumbnails archive. Malformed metadata is skipped, not fatal."""
		raw = files.pop(META_ENTRY, None)
		if raw is None:
			return None
		try:
			meta = json.loads(raw.decode('utf-8'))
		except (UnicodeDecodeError, json.JSONDecodeError) as e:
			logger.warning(f"Ignoring malformed {META_ENTRY} in {file_name}: {e}")
			return None
		if not isinstance(meta, dict):
			logger.warning(f"Ignoring malformed {META_ENTRY} in {file_name}: not an object")
			return None
		return {k: v for k, v in meta.items() if k.isdigit() and isinstance(v, dict)}

	def _persist(self, kind: ChunkKind, files: Dict[str, bytes]) -> List[int]:
		items: List[Tuple[int, bytes]] = []
		for name, data in files.items():
			asset_id = entry_id(name)
			if asset_id is None:
				logger.debug(f"Skipping entry without asset id: {name}")
				continue
			items.append((asset_id, data))
		if not items and files:
			raise MalformedArchiveError(f"No asset entries in {kind.value} archive")
		self.store.put_many(kind.value, items)
		return [asset_id for asset_id, _ in items]
