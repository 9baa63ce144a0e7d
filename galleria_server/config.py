from dataclasses import dataclass
from pathlib import Path
import logging

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
	"""Configuration for the album host."""
	host: str = "127.0.0.1"
	port: int = 8080
	debug: bool = False
	root_dir: Path = None  # output root: one subdirectory per album
	
	def __post_init__(self):
		if self.root_dir is None:
			self.root_dir = Path.cwd() / "output"
		elif isinstance(self.root_dir, str):
			self.root_dir = Path(self.root_dir)
		
		self.root_dir = self.root_dir.resolve()
	
	def album_dir(self, album_name: str) -> Path:
		return self.root_dir / album_name
	
	def list_albums(self) -> list:
		"""Album directories that contain a manifest."""
		if not self.root_dir.is_dir():
			return []
		try:
			return sorted(
				item.name for item in self.root_dir.iterdir()
				if item.is_dir() and (item / "manifest.enc").is_file()
			)
		except PermissionError as e:
			logger.warning(f"Cannot list albums in {self.root_dir}: {e}")
			return []
