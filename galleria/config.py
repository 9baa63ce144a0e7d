import json
import os
from pathlib import Path
from typing import List, Optional
from dataclasses import dataclass, asdict, field
import logging

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500 * 1024 * 1024  # 500MB of originals + videos per chunk
MIN_CHUNK_SIZE = 1


def default_cache_dir() -> Path:
	base = os.environ.get("XDG_CACHE_HOME")
	return (Path(base) if base else Path.home() / ".cache") / "galleria"


class _JsonConfig:
	"""Shared JSON persistence for the config dataclasses."""

	def to_dict(self) -> dict:
		data = asdict(self)
		for key, value in data.items():
			if isinstance(value, Path):
				data[key] = str(value)
		return data

	@classmethod
	def from_dict(cls, data: dict):
		# Only use known fields
		known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
		return cls(**known)

	def save(self, path: Path):
		"""Save config to JSON file."""
		path.parent.mkdir(parents=True, exist_ok=True)
		with open(path, 'w', encoding='utf-8') as f:
			json.dump(self.to_dict(), f, indent=2)
		logger.debug(f"Saved {type(self).__name__} to {path}")

	@classmethod
	def load(cls, path: Path):
		"""Load config from JSON file, or return defaults if not found."""
		if not path.exists():
			logger.debug(f"No config found at {path}, using defaults")
			return cls()

		try:
			with open(path, 'r', encoding='utf-8') as f:
				data = json.load(f)
			return cls.from_dict(data)
		except (json.JSONDecodeError, IOError) as e:
			logger.warning(f"Failed to load config: {e}, using defaults")
			return cls()


@dataclass
class BuildConfig(_JsonConfig):
	"""Producer settings."""
	chunk_size: int = DEFAULT_CHUNK_SIZE
	jobs: int = 0  # 0 = host parallelism
	compress: bool = True

	@property
	def parallelism(self) -> int:
		return self.jobs if self.jobs > 0 else (os.cpu_count() or 1)

	def validate(self) -> bool:
		if self.chunk_size < MIN_CHUNK_SIZE:
			logger.error("Chunk size must be positive")
			return False
		if self.jobs < 0:
			logger.error("Job count cannot be negative")
			return False
		return True


@dataclass
class ViewerConfig(_JsonConfig):
	"""Viewer settings."""
	cache_dir: Path = field(default_factory=default_cache_dir)
	handshake_timeout: float = 30.0   # key setup + manifest fetch only
	request_timeout: float = 60.0     # per HTTP request

	def __post_init__(self):
		if isinstance(self.cache_dir, str):
			self.cache_dir = Path(self.cache_dir)

	def store_path(self, album_name: str) -> Path:
		"""Per-album store file. Album names are hashed so any string is a safe file name."""
		from .crypto import sha256_hex
		return self.cache_dir / f"album-{sha256_hex(album_name.encode('utf-8'))[:32]}.sqlite"

	@property
	def recent_albums_file(self) -> Path:
		return self.cache_dir / "recent-albums.json"


class RecentAlbums:
	"""Most recently opened album names, newest first."""

	LIMIT = 10

	def __init__(self, path: Path):
		self.path = path

	def get(self) -> List[str]:
		if not self.path.exists():
			return []
		try:
			with open(self.path, 'r', encoding='utf-8') as f:
				data = json.load(f)
		except (json.JSONDecodeError, IOError) as e:
			logger.warning(f"Error reading recent albums: {e}")
			return []
		if not isinstance(data, list):
			return []
		return [name for name in data if isinstance(name, str)]

	def add(self, album_name: str):
		names = [album_name] + [n for n in self.get() if n != album_name]
		names = names[:self.LIMIT]
		try:
			self.path.parent.mkdir(parents=True, exist_ok=True)
			with open(self.path, 'w', encoding='utf-8') as f:
				json.dump(names, f)
		except IOError as e:
			logger.warning(f"Error saving recent albums: {e}")

	def remove(self, album_name: Optional[str] = None):
		names = [] if album_name is None else [n for n in self.get() if n != album_name]
		if self.path.exists() or names:
			self.path.parent.mkdir(parents=True, exist_ok=True)
			with open(self.path, 'w', encoding='utf-8') as f:
				json.dump(names, f)
