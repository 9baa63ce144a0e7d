import asyncio
import calendar
import json
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Union
import logging

from .cache import CacheState
from .config import RecentAlbums, ViewerConfig
from .errors import HandshakeTimeoutError, SessionClosedError
from .fetcher import ChunkFetcher
from .manifest import Manifest
from .models import Asset, AssetGroup, AssetType, ChunkKind
from .protocol import (
	ChunkReady, DecryptManifestRequest, InitRequest, ManifestError,
	WorkerRequest, WorkerResponse, expect,
)
from .store import AssetStore
from .transport import Transport
from .worker import DecodeWorker

logger = logging.getLogger(__name__)


def build_groups(manifest: Manifest) -> List[AssetGroup]:
	"""Month groups for display, newest month first. Types default to photo until metadata arrives."""
	groups = []
	for month in reversed(manifest.months):
		year_str, month_str = month.date.split("-")[:2]
		year, month_num = int(year_str), int(month_str)
		assets = [Asset(id=month.startId + i, date=month.date) for i in range(month.count)]
		groups.append(AssetGroup(
			key=f"{year}-{month_num:02d}",
			label=f"{calendar.month_name[month_num]} {year}",
			assets=assets,
		))
	return groups


class AlbumSession:
	"""
	One open album: owns the key, the local store, the decode thread and
	the chunk fetcher. Close it to release all of them; waiters still
	pending at that point fail with SessionClosedError.
	"""

	def __init__(self, album_name: str, transport: Transport,
				 config: Optional[ViewerConfig] = None, store: Optional[AssetStore] = None):
		self.album_name = album_name
		self.config = config or ViewerConfig()
		self.transport = transport
		self.store = store or AssetStore(self.config.store_path(album_name))
		self.manifest: Optional[Manifest] = None
		self.manifest_hash: Optional[str] = None
		self.cache_state: Optional[CacheState] = None
		self.groups: List[AssetGroup] = []
		self.fetcher: Optional[ChunkFetcher] = None

		self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="galleria-decode")
		self._worker = DecodeWorker(transport, self.store)
		self._closed = False

	async def __aenter__(self):
		return self

	async def __aexit__(self, exc_type, exc, tb):
		await self.close()

	@property
	def is_open(self) -> bool:
		return self.manifest is not None and not self._closed

	async def _dispatch(self, request: WorkerRequest) -> WorkerResponse:
		if self._closed:
			raise SessionClosedError("Session is closed")
		loop = asyncio.get_running_loop()
		response = await loop.run_in_executor(self._executor, self._worker.handle, request)
		return expect(request, response)

	# --- Handshake ---

	async def open(self, password: str) -> Manifest:
		"""
		Derive the key, fetch and decrypt the manifest, validate the cache.
		Raises the underlying error (AuthenticationError, TransportError,
		MalformedManifestError) or HandshakeTimeoutError; the session is
		closed on any failure.
		"""
		try:
			return await asyncio.wait_for(self._handshake(password), self.config.handshake_timeout)
		except asyncio.TimeoutError:
			await self.close()
			raise HandshakeTimeoutError(
				f"Opening album {self.album_name} timed out after {self.config.handshake_timeout}s"
			) from None
		except Exception:
			await self.close()
			raise

	async def _handshake(self, password: str) -> Manifest:
		response = await self._dispatch(InitRequest(self.album_name, password))
		if isinstance(response, ManifestError):
			raise response.error

		response = await self._dispatch(DecryptManifestRequest())
		if isinstance(response, ManifestError):
			raise response.error

		self.manifest = response.manifest
		self.manifest_hash = response.manifest_hash
		self.cache_state = response.cache_state
		self.groups = build_groups(self.manifest)
		self.fetcher = ChunkFetcher(self.manifest, self.store, self._dispatch, on_ready=self._chunk_ready)
		await self._load_meta_from_store()

		logger.info(
			f"Opened album {self.album_name}: {self.manifest.totalAssets} assets, "
			f"{len(self.manifest.chunks)} chunk(s), cache {self.cache_state.value}"
		)
		return self.manifest

	# --- Metadata ---

	def _chunk_ready(self, response: ChunkReady):
		if response.meta and response.kind == ChunkKind.THUMBNAILS:
			self.apply_meta(response.meta)

	def apply_meta(self, meta: Dict[str, dict]):
		"""Apply per-asset date and type from a thumbnails chunk's meta.json."""
		for group in self.groups:
			for i, asset in enumerate(group.assets):
				entry = meta.get(str(asset.id))
				if not entry:
					continue
				try:
					asset_type = AssetType(entry.get("type", asset.type))
				except ValueError:
					asset_type = asset.type
				group.assets[i] = Asset(id=asset.id, date=entry.get("date", asset.date), type=asset_type)

	async def _load_meta_from_store(self):
		"""Metadata of chunks cached in earlier sessions is not re-read from the network."""
		loop = asyncio.get_running_loop()
		stored = await loop.run_in_executor(None, self.store.items, "meta")
		meta = {}
		for asset_id, raw in stored.items():
			try:
				meta[str(asset_id)] = json.loads(raw.decode('utf-8'))
			except (UnicodeDecodeError, json.JSONDecodeError):
				logger.warning(f"Ignoring unreadable cached metadata for asset {asset_id}")
		if meta:
			self.apply_meta(meta)

	# --- Assets ---

	def _require_open(self) -> ChunkFetcher:
		if self._closed:
			raise SessionClosedError("Session is closed")
		if self.fetcher is None:
			raise RuntimeError("Album session is not open")
		return self.fetcher

	async def get_asset(self, kind: Union[ChunkKind, str], asset_id: int) -> Optional[bytes]:
		return await self._require_open().get_asset(ChunkKind(kind), asset_id)

	async def get_thumbnail(self, asset_id: int) -> Optional[bytes]:
		return await self.get_asset(ChunkKind.THUMBNAILS, asset_id)

	async def get_original(self, asset_id: int) -> Optional[bytes]:
		return await self.get_asset(ChunkKind.ORIGINALS, asset_id)

	async def get_video(self, asset_id: int) -> Optional[bytes]:
		return await self.get_asset(ChunkKind.VIDEOS, asset_id)

	def request_chunk(self, kind: Union[ChunkKind, str], chunk_id: int):
		"""Prefetch a chunk without waiting for it."""
		self._require_open().request(ChunkKind(kind), chunk_id)

	# --- Teardown ---

	async def close(self):
		if self._closed:
			return
		self._closed = True
		if self.fetcher:
			self.fetcher.close()
		self._executor.shutdown(wait=False, cancel_futures=True)
		# Let a decode already running finish before the store goes away
		loop = asyncio.get_running_loop()
		await loop.run_in_executor(None, self._executor.shutdown, True)
		self.store.close()
		self.transport.close()
		logger.debug(f"Closed album {self.album_name}")


async def open_album(album_name: str, password: str, transport: Transport,
					 config: Optional[ViewerConfig] = None) -> AlbumSession:
	"""Open an album session and remember it in the recent-albums list."""
	config = config or ViewerConfig()
	session = AlbumSession(album_name, transport, config)
	await session.open(password)
	RecentAlbums(config.recent_albums_file).add(album_name)
	return session
