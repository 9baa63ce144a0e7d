"""Exception types shared by the producer and the viewer."""

ALBUM_OPEN_FAILED = "Wrong password or album not found"


class GalleryError(Exception):
	"""Base class for every error raised by galleria."""


class AuthenticationError(GalleryError):
	"""Envelope tag did not verify: wrong password, wrong album or corrupted bytes."""

	def __init__(self, message: str = "Envelope authentication failed"):
		super().__init__(message)


class MalformedArchiveError(GalleryError):
	"""Container structure is truncated or invalid."""


class MalformedManifestError(GalleryError):
	"""Manifest is not decodable or its chunk ranges are inconsistent."""


class TransportError(GalleryError):
	"""Fetching an album file failed."""

	def __init__(self, name: str, reason: str):
		super().__init__(f"Failed to fetch {name}: {reason}")
		self.name = name
		self.reason = reason


class ConversionError(GalleryError):
	"""External transcoder failed for one asset."""

	def __init__(self, asset_id: int, reason: str):
		super().__init__(f"Conversion failed for asset {asset_id}: {reason}")
		self.asset_id = asset_id
		self.reason = reason


class ChunkUnavailableError(GalleryError):
	"""A chunk could not be fetched or decoded. Retry by requesting it again."""

	def __init__(self, kind: str, chunk_id: int, reason: str = ""):
		message = f"Chunk {kind}-{chunk_id} unavailable"
		if reason:
			message += f": {reason}"
		super().__init__(message)
		self.kind = kind
		self.chunk_id = chunk_id
		self.reason = reason


class SessionClosedError(GalleryError):
	"""The album session was closed while work was pending."""


class HandshakeTimeoutError(GalleryError):
	"""Key setup and manifest fetch did not finish in time."""
