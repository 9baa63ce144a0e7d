from .crypto import AlbumKey, KeyRole
from .errors import (
	ALBUM_OPEN_FAILED, AuthenticationError, ChunkUnavailableError, ConversionError,
	GalleryError, HandshakeTimeoutError, MalformedArchiveError, MalformedManifestError,
	SessionClosedError, TransportError,
)
from .job import BuildJob
from .session import AlbumSession, open_album

__all__ = [
	"AlbumKey", "KeyRole",
	"ALBUM_OPEN_FAILED", "AuthenticationError", "ChunkUnavailableError", "ConversionError",
	"GalleryError", "HandshakeTimeoutError", "MalformedArchiveError", "MalformedManifestError",
	"SessionClosedError", "TransportError",
	"BuildJob", "AlbumSession", "open_album",
]
