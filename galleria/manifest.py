import bisect
import json
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import List, Optional, Sequence
import logging

from .errors import MalformedManifestError
from .models import ChunkKind

logger = logging.getLogger(__name__)


@dataclass
class ChunkInfo:
	"""One chunk: an inclusive id range and its archive file names."""
	chunkId: int
	thumbnailsFile: str
	originalsFile: str
	videosFile: Optional[str]
	startIndex: int
	endIndex: int

	def file_for(self, kind: ChunkKind) -> Optional[str]:
		if kind == ChunkKind.THUMBNAILS:
			return self.thumbnailsFile
		if kind == ChunkKind.ORIGINALS:
			return self.originalsFile
		return self.videosFile

	def contains(self, asset_id: int) -> bool:
		return self.startIndex <= asset_id <= self.endIndex


@dataclass
class MonthGroup:
	date: str  # "YYYY-MM-01"
	startId: int
	count: int


@dataclass
class Manifest:
	totalAssets: int
	chunks: List[ChunkInfo] = field(default_factory=list)
	months: List[MonthGroup] = field(default_factory=list)

	def chunk_for_id(self, asset_id: int) -> Optional[ChunkInfo]:
		"""Owning chunk of an asset id; chunks are sorted and contiguous."""
		if asset_id < 0 or asset_id >= self.totalAssets or not self.chunks:
			return None
		starts = [c.startIndex for c in self.chunks]
		pos = bisect.bisect_right(starts, asset_id) - 1
		if pos < 0:
			return None
		chunk = self.chunks[pos]
		return chunk if chunk.contains(asset_id) else None

	def to_dict(self) -> dict:
		return asdict(self)


def month_key(date: datetime) -> str:
	return f"{date.year:04d}-{date.month:02d}-01"


def build_months(dates: Sequence[datetime]) -> List[MonthGroup]:
	"""
	Group asset dates by calendar month.
	Dates must already be sorted ascending; each date's index is its asset id.
	"""
	months: List[MonthGroup] = []
	current: Optional[MonthGroup] = None

	for asset_id, date in enumerate(dates):
		key = month_key(date)
		if current is None or current.date != key:
			current = MonthGroup(date=key, startId=asset_id, count=1)
			months.append(current)
		else:
			current.count += 1

	return months


def generate_manifest(dates: Sequence[datetime], chunks: List[ChunkInfo]) -> Manifest:
	manifest = Manifest(totalAssets=len(dates), chunks=list(chunks), months=build_months(dates))
	validate(manifest)
	return manifest


def encode_manifest(manifest: Manifest) -> bytes:
	return json.dumps(manifest.to_dict(), separators=(",", ":"), ensure_ascii=False).encode('utf-8')


def _require_int(data: dict, key: str, where: str) -> int:
	value = data.get(key)
	if not isinstance(value, int) or isinstance(value, bool):
		raise MalformedManifestError(f"{where}: '{key}' must be an integer")
	return value


def _require_str(data: dict, key: str, where: str, nullable: bool = False) -> Optional[str]:
	value = data.get(key)
	if value is None and nullable:
		return None
	if not isinstance(value, str):
		raise MalformedManifestError(f"{where}: '{key}' must be a string")
	return value


def validate(manifest: Manifest):
	"""Reject non-contiguous chunk ranges or a total that disagrees with them."""
	expected_start = 0
	for position, chunk in enumerate(manifest.chunks):
		if chunk.chunkId != position:
			raise MalformedManifestError(f"Chunk at position {position} has id {chunk.chunkId}")
		if chunk.startIndex != expected_start:
			raise MalformedManifestError(
				f"Chunk {chunk.chunkId} starts at {chunk.startIndex}, expected {expected_start}"
			)
		if chunk.endIndex < chunk.startIndex:
			raise MalformedManifestError(
				f"Chunk {chunk.chunkId} has empty range {chunk.startIndex}-{chunk.endIndex}"
			)
		expected_start = chunk.endIndex + 1

	if manifest.totalAssets != expected_start:
		raise MalformedManifestError(
			f"Manifest total {manifest.totalAssets} does not match chunk extents ({expected_start})"
		)


def decode_manifest(data: bytes) -> Manifest:
	try:
		raw = json.loads(data.decode('utf-8'))
	except (UnicodeDecodeError, json.JSONDecodeError) as e:
		raise MalformedManifestError(f"Manifest is not valid JSON: {e}") from None

	if not isinstance(raw, dict):
		raise MalformedManifestError("Manifest must be a JSON object")
	if not isinstance(raw.get("chunks"), list) or not isinstance(raw.get("months"), list):
		raise MalformedManifestError("Manifest requires 'chunks' and 'months' lists")

	total = _require_int(raw, "totalAssets", "manifest")
	chunks = []
	for i, item in enumerate(raw["chunks"]):
		if not isinstance(item, dict):
			raise MalformedManifestError(f"chunk[{i}] must be an object")
		where = f"chunk[{i}]"
		chunks.append(ChunkInfo(
			chunkId=_require_int(item, "chunkId", where),
			thumbnailsFile=_require_str(item, "thumbnailsFile", where),
			originalsFile=_require_str(item, "originalsFile", where),
			videosFile=_require_str(item, "videosFile", where, nullable=True),
			startIndex=_require_int(item, "startIndex", where),
			endIndex=_require_int(item, "endIndex", where),
		))

	months = []
	for i, item in enumerate(raw["months"]):
		if not isinstance(item, dict):
			raise MalformedManifestError(f"month[{i}] must be an object")
		where = f"month[{i}]"
		months.append(MonthGroup(
			date=_require_str(item, "date", where),
			startId=_require_int(item, "startId", where),
			count=_require_int(item, "count", where),
		))

	manifest = Manifest(totalAssets=total, chunks=chunks, months=months)
	validate(manifest)
	return manifest
