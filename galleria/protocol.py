"""
Messages exchanged between an album session and its decode worker.

Every request type has a fixed set of possible responses; callers decode
them with `expect`, which rejects anything outside that set.
"""
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Type, Union

from .cache import CacheState
from .manifest import Manifest
from .models import ChunkKind


# --- Requests ---

@dataclass(frozen=True)
class InitRequest:
	album_name: str
	password: str = field(repr=False)


@dataclass(frozen=True)
class DecryptManifestRequest:
	file_name: str = "manifest.enc"


@dataclass(frozen=True)
class FetchChunkRequest:
	kind: ChunkKind
	chunk_id: int
	file_name: str


WorkerRequest = Union[InitRequest, DecryptManifestRequest, FetchChunkRequest]


# --- Responses ---

@dataclass(frozen=True)
class InitReady:
	pass


@dataclass(frozen=True)
class ManifestDecrypted:
	manifest: Manifest
	manifest_hash: str
	cache_state: CacheState


@dataclass(frozen=True)
class ManifestError:
	error: Exception


@dataclass(frozen=True)
class ChunkReady:
	kind: ChunkKind
	chunk_id: int
	ids: Tuple[int, ...]
	meta: Optional[Dict[str, dict]] = None


@dataclass(frozen=True)
class ChunkError:
	kind: ChunkKind
	chunk_id: int
	error: Exception


WorkerResponse = Union[InitReady, ManifestDecrypted, ManifestError, ChunkReady, ChunkError]

RESPONSES: Dict[Type, Tuple[Type, ...]] = {
	InitRequest: (InitReady, ManifestError),
	DecryptManifestRequest: (ManifestDecrypted, ManifestError),
	FetchChunkRequest: (ChunkReady, ChunkError),
}


def expect(request: WorkerRequest, response: WorkerResponse) -> WorkerResponse:
	"""Check that a response is one of the variants allowed for its request."""
	allowed = RESPONSES.get(type(request))
	if allowed is None:
		raise TypeError(f"Unknown request type: {type(request).__name__}")
	if not isinstance(response, allowed):
		raise TypeError(
			f"Unexpected response {type(response).__name__} to {type(request).__name__}"
		)
	return response
