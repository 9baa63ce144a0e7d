import sqlite3
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

PARTITIONS = ("thumbnails", "originals", "videos", "meta")
GENERATION_KEY = "generation"


class AssetStore:
	"""
	Persistent key-value cache of decoded assets for one album.
	Values are addressed by (partition, integer id). A generation counter
	is bumped every time the store is wiped.
	"""

	def __init__(self, db_path: Path):
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._lock = threading.RLock()
		self.conn = self._get_connection()
		self._initialize_schema()

	def _get_connection(self) -> sqlite3.Connection:
		"""Returns a tuned SQLite connection."""
		conn = sqlite3.connect(self.db_path, check_same_thread=False)
		conn.execute("PRAGMA journal_mode=WAL;")
		conn.execute("PRAGMA synchronous=NORMAL;")
		return conn

	def _initialize_schema(self):
		with self._lock, self.conn:
			self.conn.execute("""
				CREATE TABLE IF NOT EXISTS entries (
					partition TEXT NOT NULL,
					id INTEGER NOT NULL,
					value BLOB NOT NULL,
					PRIMARY KEY (partition, id)
				);
			""")
			self.conn.execute("""
				CREATE TABLE IF NOT EXISTS info (
					key TEXT PRIMARY KEY,
					value TEXT
				);
			""")
			self.conn.execute(
				"INSERT OR IGNORE INTO info (key, value) VALUES (?, ?)", (GENERATION_KEY, "0")
			)

	def close(self):
		with self._lock:
			self.conn.close()

	@staticmethod
	def _check_partition(partition: str):
		if partition not in PARTITIONS:
			raise KeyError(f"Unknown partition: {partition}")

	# --- Entries ---

	def get(self, partition: str, key: int) -> Optional[bytes]:
		self._check_partition(partition)
		with self._lock:
			row = self.conn.execute(
				"SELECT value FROM entries WHERE partition = ? AND id = ?", (partition, key)
			).fetchone()
		return bytes(row[0]) if row else None

	def put(self, partition: str, key: int, value: bytes):
		self.put_many(partition, [(key, value)])

	def put_many(self, partition: str, items: Iterable[Tuple[int, bytes]]) -> int:
		"""Write several entries in one transaction. Returns the number written."""
		self._check_partition(partition)
		rows = [(partition, key, sqlite3.Binary(value)) for key, value in items]
		with self._lock, self.conn:
			self.conn.executemany(
				"INSERT OR REPLACE INTO entries (partition, id, value) VALUES (?, ?, ?)", rows
			)
		return len(rows)

	def keys(self, partition: str) -> List[int]:
		self._check_partition(partition)
		with self._lock:
			cursor = self.conn.execute(
				"SELECT id FROM entries WHERE partition = ? ORDER BY id", (partition,)
			)
			return [row[0] for row in cursor]

	def items(self, partition: str) -> Dict[int, bytes]:
		self._check_partition(partition)
		with self._lock:
			cursor = self.conn.execute(
				"SELECT id, value FROM entries WHERE partition = ? ORDER BY id", (partition,)
			)
			return {row[0]: bytes(row[1]) for row in cursor}

	def count(self, partition: Optional[str] = None) -> int:
		with self._lock:
			if partition is None:
				return self.conn.execute("SELECT COUNT(*) FROM entries").fetchone()[0]
			self._check_partition(partition)
			return self.conn.execute(
				"SELECT COUNT(*) FROM entries WHERE partition = ?", (partition,)
			).fetchone()[0]

	# --- Info ---

	def get_info(self, key: str) -> Optional[str]:
		with self._lock:
			row = self.conn.execute("SELECT value FROM info WHERE key = ?", (key,)).fetchone()
		return row[0] if row else None

	def set_info(self, key: str, value: str):
		with self._lock, self.conn:
			self.conn.execute("INSERT OR REPLACE INTO info (key, value) VALUES (?, ?)", (key, value))

	@property
	def generation(self) -> int:
		return int(self.get_info(GENERATION_KEY) or 0)

	def clear(self) -> int:
		"""Wipe every entry and every info key, bump the generation. Returns the new generation."""
		with self._lock, self.conn:
			generation = self.generation + 1
			self.conn.execute("DELETE FROM entries")
			self.conn.execute("DELETE FROM info")
			self.conn.execute(
				"INSERT INTO info (key, value) VALUES (?, ?)", (GENERATION_KEY, str(generation))
			)
		logger.info(f"Cleared asset store {self.db_path.name} (generation {generation})")
		return generation
