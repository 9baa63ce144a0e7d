import requests
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import quote, urljoin
import logging

from .errors import TransportError

logger = logging.getLogger(__name__)

ALBUM_URL_PREFIX = "gallery"


class Transport(ABC):
	"""Source of an album's sealed files (manifest.enc, thumbs-N.enc, ...)."""

	@abstractmethod
	def fetch(self, name: str) -> bytes:
		"""Return the raw bytes of one album file or raise TransportError."""

	def close(self):
		pass


class HttpTransport(Transport):
	def __init__(self, album_url: str, timeout: float = 60.0, session: requests.Session = None):
		self.album_url = album_url if album_url.endswith("/") else album_url + "/"
		self.timeout = timeout
		self.session = session or requests.Session()

	@classmethod
	def for_album(cls, base_url: str, album_name: str, **kwargs) -> 'HttpTransport':
		"""Album files are served at <base>/gallery/<album>/."""
		base = base_url if base_url.endswith("/") else base_url + "/"
		return cls(urljoin(base, f"{ALBUM_URL_PREFIX}/{quote(album_name, safe='')}/"), **kwargs)

	def fetch(self, name: str) -> bytes:
		url = urljoin(self.album_url, quote(name))
		try:
			resp = self.session.get(url, timeout=self.timeout)
			resp.raise_for_status()
		except requests.RequestException as e:
			logger.error(f"Request failed: GET {url} - {e}")
			raise TransportError(name, str(e)) from e
		logger.debug(f"Fetched {name} ({len(resp.content)} bytes)")
		return resp.content

	def close(self):
		self.session.close()


class DirectoryTransport(Transport):
	"""Reads album files straight from a local output directory."""

	def __init__(self, album_dir: Path):
		self.album_dir = Path(album_dir)

	def fetch(self, name: str) -> bytes:
		path = self.album_dir / name
		if path.parent != self.album_dir:
			raise TransportError(name, "invalid file name")
		try:
			with open(path, 'rb') as f:
				return f.read()
		except OSError as e:
			raise TransportError(name, e.strerror or str(e)) from e


def transport_for(source: str, album_name: str, timeout: float = 60.0) -> Transport:
	"""Pick a transport: http(s) URLs go to the album host, anything else is a local output root."""
	if source.startswith(("http://", "https://")):
		return HttpTransport.for_album(source, album_name, timeout=timeout)
	return DirectoryTransport(Path(source) / album_name)
