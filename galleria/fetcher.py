import asyncio
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple
import logging

from .errors import ChunkUnavailableError, SessionClosedError
from .manifest import Manifest
from .models import ChunkKind
from .protocol import ChunkError, ChunkReady, FetchChunkRequest, WorkerResponse
from .store import AssetStore

logger = logging.getLogger(__name__)

ChunkKey = Tuple[ChunkKind, int]
Dispatch = Callable[[FetchChunkRequest], Awaitable[WorkerResponse]]


class ChunkState(Enum):
	UNREQUESTED = "unrequested"
	IN_FLIGHT = "in-flight"
	READY = "ready"
	FAILED = "failed"


class ChunkFetcher:
	"""
	Lazily loads chunks into the asset store.

	At most one fetch per (kind, chunk) is outstanding at any time; every
	caller asking for an id inside that chunk waits on the same future.
	A failed chunk is not retried until somebody requests it again.
	"""

	def __init__(self, manifest: Manifest, store: AssetStore, dispatch: Dispatch,
				 on_ready: Optional[Callable[[ChunkReady], None]] = None):
		self.manifest = manifest
		self.store = store
		self._dispatch = dispatch
		self._on_ready = on_ready
		self._states: Dict[ChunkKey, ChunkState] = {}
		self._pending: Dict[ChunkKey, asyncio.Future] = {}
		self._errors: Dict[ChunkKey, Exception] = {}
		self._tasks: Set[asyncio.Task] = set()
		self._closed = False

	def state(self, kind: ChunkKind, chunk_id: int) -> ChunkState:
		return self._states.get((ChunkKind(kind), chunk_id), ChunkState.UNREQUESTED)

	def error(self, kind: ChunkKind, chunk_id: int) -> Optional[Exception]:
		return self._errors.get((ChunkKind(kind), chunk_id))

	def request(self, kind: ChunkKind, chunk_id: int) -> Optional[asyncio.Future]:
		"""
		Start loading a chunk unless it is already loaded or loading.
		Returns the future that resolves to True/False when the chunk
		settles, or None when there is nothing to wait for.
		"""
		if self._closed:
			raise SessionClosedError("Session is closed")

		kind = ChunkKind(kind)
		key = (kind, chunk_id)
		state = self._states.get(key, ChunkState.UNREQUESTED)
		if state is ChunkState.READY:
			return None
		if state is ChunkState.IN_FLIGHT:
			return self._pending[key]

		if chunk_id < 0 or chunk_id >= len(self.manifest.chunks):
			return None
		file_name = self.manifest.chunks[chunk_id].file_for(kind)
		if not file_name:
			# e.g. no videos in this chunk
			return None

		future = asyncio.get_running_loop().create_future()
		self._pending[key] = future
		self._states[key] = ChunkState.IN_FLIGHT
		self._errors.pop(key, None)

		task = asyncio.ensure_future(self._load(key, FetchChunkRequest(kind, chunk_id, file_name)))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
		logger.debug(f"Requested chunk {kind.value}-{chunk_id}")
		return future

	async def _load(self, key: ChunkKey, request: FetchChunkRequest):
		try:
			response = await self._dispatch(request)
		except asyncio.CancelledError:
			raise
		except Exception as e:
			response = ChunkError(request.kind, request.chunk_id, e)

		if self._closed:
			return

		future = self._pending.pop(key)
		if isinstance(response, ChunkReady):
			self._states[key] = ChunkState.READY
			if self._on_ready:
				self._on_ready(response)
			future.set_result(True)
		else:
			self._states[key] = ChunkState.FAILED
			self._errors[key] = response.error
			future.set_result(False)

	async def wait(self, kind: ChunkKind, chunk_id: int) -> bool:
		"""Request a chunk if needed and wait until it settles. True when ready."""
		future = self.request(kind, chunk_id)
		if future is None:
			return self.state(kind, chunk_id) is ChunkState.READY
		# A cancelled caller must not cancel the shared fetch
		return await asyncio.shield(future)

	async def _read(self, kind: ChunkKind, asset_id: int) -> Optional[bytes]:
		loop = asyncio.get_running_loop()
		return await loop.run_in_executor(None, self.store.get, kind.value, asset_id)

	async def get_asset(self, kind: ChunkKind, asset_id: int) -> Optional[bytes]:
		"""
		Bytes of one asset, loading its chunk on a cache miss.
		Returns None for ids outside the manifest or kinds the chunk lacks.
		Raises ChunkUnavailableError if the owning chunk failed to load.
		"""
		kind = ChunkKind(kind)
		existing = await self._read(kind, asset_id)
		if existing is not None:
			return existing

		chunk = self.manifest.chunk_for_id(asset_id)
		if chunk is None or not chunk.file_for(kind):
			return None

		if not await self.wait(kind, chunk.chunkId):
			error = self._errors.get((kind, chunk.chunkId))
			raise ChunkUnavailableError(kind.value, chunk.chunkId, str(error) if error else "")

		return await self._read(kind, asset_id)

	def close(self):
		"""Abandon every waiter. Pending chunk loads are not cancelled mid-decode."""
		if self._closed:
			return
		self._closed = True
		for key, future in self._pending.items():
			if not future.done():
				future.set_exception(SessionClosedError(f"Session closed while loading {key[0].value}-{key[1]}"))
		self._pending.clear()
		for task in list(self._tasks):
			task.cancel()
