from enum import Enum
import logging

from .crypto import sha256_hex
from .store import AssetStore

logger = logging.getLogger(__name__)

MANIFEST_HASH_KEY = "manifest-hash"


class CacheState(Enum):
	FIRST = "first"
	UNCHANGED = "unchanged"
	INVALIDATED = "invalidated"


class CacheValidator:
	"""
	Detects a changed manifest for an album and wipes its local store.

	Cached entries are trusted as long as the manifest hash is unchanged;
	individual chunks are not re-verified.
	"""

	def __init__(self, store: AssetStore):
		self.store = store

	@property
	def recorded_hash(self):
		return self.store.get_info(MANIFEST_HASH_KEY)

	def validate(self, manifest_bytes: bytes) -> CacheState:
		"""Compare the decrypted manifest's hash against the last one recorded for this album."""
		new_hash = sha256_hex(manifest_bytes)
		stored_hash = self.recorded_hash

		if stored_hash is None:
			self.store.set_info(MANIFEST_HASH_KEY, new_hash)
			logger.debug(f"Recorded manifest hash {new_hash[:12]}")
			return CacheState.FIRST

		if stored_hash == new_hash:
			return CacheState.UNCHANGED

		logger.info(f"Manifest changed ({stored_hash[:12]} -> {new_hash[:12]}), clearing cache")
		self.store.clear()
		self.store.set_info(MANIFEST_HASH_KEY, new_hash)
		return CacheState.INVALIDATED
