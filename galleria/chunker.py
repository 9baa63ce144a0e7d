import json
import os
from pathlib import Path
from typing import Callable, Dict, Generator, List, Sequence, Tuple
import logging

from .archive import META_ENTRY, asset_name, pack_archive, thumb_name, video_name
from .config import DEFAULT_CHUNK_SIZE, MIN_CHUNK_SIZE
from .crypto import AlbumKey
from .manifest import ChunkInfo
from .models import ChunkEntry

logger = logging.getLogger(__name__)


class ChunkPlanner:
	"""
	Splits an ordered asset sequence into contiguous chunks.
	Only originals and videos count toward the budget; thumbnails are tiny
	and always shipped. A chunk closes as soon as its tally reaches the
	ceiling, so a single oversized asset ends up alone in its chunk.
	"""

	def __init__(self, max_size: int = DEFAULT_CHUNK_SIZE):
		self.max_size = max_size

	@property
	def max_size(self) -> int:
		return self._max_size

	@max_size.setter
	def max_size(self, value: int):
		if value < MIN_CHUNK_SIZE:
			raise ValueError(f"Chunk size must be at least {MIN_CHUNK_SIZE} bytes")
		self._max_size = value

	def plan(self, sizes: Sequence[int]) -> List[Tuple[int, int]]:
		"""Inclusive (start, end) index ranges for a list of payload sizes."""
		groups = self.iter_chunks(range(len(sizes)), size_of=lambda i: sizes[i])
		return [(group[0], group[-1]) for group in groups]

	def iter_chunks(self, entries: Sequence, size_of: Callable[[object], int] = ChunkEntry.payload_size
					) -> Generator[List, None, None]:
		"""Yield entry groups one at a time, sizing each entry only when reached."""
		current = []
		tally = 0
		for i, entry in enumerate(entries):
			current.append(entry)
			tally += size_of(entry)
			if tally >= self._max_size or i == len(entries) - 1:
				yield current
				current = []
				tally = 0


def _read(path: Path) -> bytes:
	with open(path, 'rb') as f:
		return f.read()


class ChunkWriter:
	"""Packs, compresses, seals and writes the archives of one chunk at a time."""

	def __init__(self, output_dir: Path, key: AlbumKey, compress: bool = True):
		self.output_dir = Path(output_dir)
		self.key = key
		self.compress = compress

	def _write_sealed(self, files: Dict[str, bytes], file_name: str):
		"""archive -> gzip -> encrypt -> write (via a temp file so readers never see half a chunk)."""
		sealed = self.key.seal(pack_archive(files, compressed=self.compress))
		target = self.output_dir / file_name
		tmp = self.output_dir / f".{file_name}.tmp"
		with open(tmp, 'wb') as f:
			f.write(sealed)
		os.replace(tmp, target)
		logger.debug(f"Wrote {file_name} ({len(files)} entries, {len(sealed)} bytes)")

	def write(self, chunk_id: int, entries: List[ChunkEntry]) -> ChunkInfo:
		"""Produce thumbs-N.enc, originals-N.enc and, when needed, videos-N.enc."""
		thumb_files: Dict[str, bytes] = {}
		asset_files: Dict[str, bytes] = {}
		video_files: Dict[str, bytes] = {}
		meta: Dict[str, dict] = {}

		for e in entries:
			thumb_files[thumb_name(e.id, e.thumbnail_path.suffix.lstrip('.') or "avif")] = _read(e.thumbnail_path)
			if e.asset_path:
				asset_files[asset_name(e.id, e.asset_path.suffix.lstrip('.') or "avif")] = _read(e.asset_path)
			if e.video_path:
				video_files[video_name(e.id, e.video_path.suffix.lstrip('.') or "mp4")] = _read(e.video_path)
			meta[str(e.id)] = {"date": e.date, "type": e.type.value}

		thumb_files[META_ENTRY] = json.dumps(meta).encode('utf-8')

		thumbnails_file = f"thumbs-{chunk_id}.enc"
		self._write_sealed(thumb_files, thumbnails_file)

		# Always written, possibly empty, so every chunk names an originals file
		originals_file = f"originals-{chunk_id}.enc"
		self._write_sealed(asset_files, originals_file)

		videos_file = None
		if video_files:
			videos_file = f"videos-{chunk_id}.enc"
			self._write_sealed(video_files, videos_file)

		return ChunkInfo(
			chunkId=chunk_id,
			thumbnailsFile=thumbnails_file,
			originalsFile=originals_file,
			videosFile=videos_file,
			startIndex=entries[0].id,
			endIndex=entries[-1].id,
		)


def create_chunks(entries: Sequence[ChunkEntry], output_dir: Path, key: AlbumKey,
				  max_size: int = DEFAULT_CHUNK_SIZE, compress: bool = True) -> List[ChunkInfo]:
	"""
	Create chunked, encrypted archives from converted assets on disk.
	Entry ids must be dense and ascending from 0. Files are read lazily per
	chunk so memory stays bounded by one chunk's worth of bytes.
	"""
	for expected, entry in enumerate(entries):
		if entry.id != expected:
			raise ValueError(f"Entry ids must be dense: expected {expected}, got {entry.id}")

	planner = ChunkPlanner(max_size)
	writer = ChunkWriter(output_dir, key, compress=compress)
	chunks: List[ChunkInfo] = []

	for chunk_id, group in enumerate(planner.iter_chunks(entries)):
		info = writer.write(chunk_id, group)
		chunks.append(info)
		video_tag = " +videos" if info.videosFile else ""
		logger.info(f"Chunk {chunk_id}: assets {info.startIndex}-{info.endIndex}{video_tag}")

	return chunks
