import shutil
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence
import logging

from .chunker import create_chunks
from .config import BuildConfig
from .converter import Transcoder, asset_cache_name, expected_outputs, thumb_cache_name, video_cache_name
from .crypto import AlbumKey, KeyRole
from .errors import ConversionError
from .manifest import ChunkInfo, encode_manifest, generate_manifest
from .models import AssetType, ChunkEntry, ScannedAsset
from .progress import ProgressRecord, ProgressWriter
from .scanner import SourceScanner

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.enc"
PROGRESS_FILE = ".progress.json"
CACHE_DIR = ".cache"


class AssetConverter(Protocol):
	def convert(self, asset: ScannedAsset, n: int, cache_dir: Path) -> None: ...


class AssetState(Enum):
	PENDING = "pending"
	CONVERTING = "converting"
	DONE = "done"
	FAILED = "failed"


@dataclass
class ConversionResult:
	states: Dict[int, AssetState] = field(default_factory=dict)
	converted: List[int] = field(default_factory=list)  # converted during this run
	resumed: List[int] = field(default_factory=list)    # already done by an earlier run

	@property
	def done(self) -> List[int]:
		return sorted(i for i, s in self.states.items() if s is AssetState.DONE)

	@property
	def failed(self) -> List[int]:
		return sorted(i for i, s in self.states.items() if s is AssetState.FAILED)


class ConversionDriver:
	"""
	Converts scanned assets into a cache directory with a bounded worker pool
	and records every finished id in a progress record, so an interrupted
	build resumes where it stopped.

	Only the calling (orchestrator) thread touches the record; workers just
	convert. Failed ids are left pending and retried by the next run.
	"""

	def __init__(self, converter: AssetConverter, work_dir: Path, jobs: int = 0):
		self.converter = converter
		self.work_dir = Path(work_dir)
		self.cache_dir = self.work_dir / CACHE_DIR
		self.progress_path = self.work_dir / PROGRESS_FILE
		self.jobs = jobs if jobs > 0 else BuildConfig().parallelism

	def _outputs_present(self, asset: ScannedAsset, n: int) -> bool:
		return all((self.cache_dir / name).exists() for name in expected_outputs(asset.type, n))

	def _load_record(self, scanned: Sequence[ScannedAsset]) -> ProgressRecord:
		fingerprints = [a.fingerprint for a in scanned]
		record = ProgressRecord.load(self.progress_path)

		if record is not None and record.matches(fingerprints):
			missing = {i for i in record.done if not self._outputs_present(scanned[i], i)}
			if missing:
				logger.warning(f"{len(missing)} recorded asset(s) lost their cache files, reconverting")
				record.done -= missing
			logger.info(f"Resuming: {len(record.done)}/{len(scanned)} assets already converted")
			return record

		if record is not None:
			logger.info("Source tree changed since the last run, discarding progress and cache")
		self.discard()
		return ProgressRecord(fingerprints=fingerprints)

	def discard(self):
		"""Remove the progress record and every cached conversion."""
		if self.progress_path.exists():
			self.progress_path.unlink()
		if self.cache_dir.exists():
			shutil.rmtree(self.cache_dir)

	def run(self, scanned: Sequence[ScannedAsset]) -> ConversionResult:
		self.work_dir.mkdir(parents=True, exist_ok=True)
		record = self._load_record(scanned)
		self.cache_dir.mkdir(parents=True, exist_ok=True)

		writer = ProgressWriter(self.progress_path)
		writer.submit(record.to_dict())

		result = ConversionResult()
		for i in range(len(scanned)):
			result.states[i] = AssetState.DONE if i in record.done else AssetState.PENDING
		result.resumed = sorted(record.done)

		pending = [i for i in range(len(scanned)) if i not in record.done]
		total = len(scanned)
		finished = len(record.done)

		logger.info(f"Converting {len(pending)} assets ({self.jobs} parallel jobs)...")
		try:
			with ThreadPoolExecutor(max_workers=self.jobs, thread_name_prefix="galleria-convert") as pool:
				futures = {}
				for i in pending:
					futures[pool.submit(self.converter.convert, scanned[i], i, self.cache_dir)] = i
					result.states[i] = AssetState.CONVERTING

				for future in as_completed(futures):
					i = futures[future]
					asset = scanned[i]
					try:
						future.result()
					except ConversionError as e:
						result.states[i] = AssetState.FAILED
						logger.error(f"✗ [{asset.type.value}] {asset.label}: {e.reason}")
						continue

					result.states[i] = AssetState.DONE
					result.converted.append(i)
					record.done.add(i)
					writer.submit(record.to_dict())
					finished += 1
					logger.info(f"[{finished}/{total}] ✓ [{asset.type.value}] {asset.label}")
		finally:
			# Completions recorded before an unexpected error still reach disk
			writer.flush()
		logger.debug(f"Progress record written {writer.writes} time(s)")
		return result

	def entries(self, scanned: Sequence[ScannedAsset], done: Sequence[int]) -> List[ChunkEntry]:
		"""
		Chunk entries for the converted assets, renumbered densely in scan
		order so failed assets leave no gaps in the id space.
		"""
		entries = []
		for new_id, n in enumerate(sorted(done)):
			asset = scanned[n]
			entries.append(ChunkEntry(
				id=new_id,
				type=asset.type,
				date=asset.date.isoformat(),
				thumbnail_path=self.cache_dir / thumb_cache_name(n),
				asset_path=self.cache_dir / asset_cache_name(n) if asset.type is not AssetType.VIDEO else None,
				video_path=self.cache_dir / video_cache_name(n) if asset.type is not AssetType.PHOTO else None,
			))
		return entries


class JobResult:
	def __init__(self, success: bool):
		self.success = success
		self.total_assets: int = 0
		self.converted: int = 0
		self.failed: int = 0
		self.chunks: int = 0
		self.months: int = 0
		self.error_messages: list[str] = []

	def add_error(self, error: str) -> None:
		logger.error(error)
		self.error_messages.append(error)


class BuildJob:
	"""
	Offline album build: scan -> derive key -> convert (resumable) ->
	chunk + encrypt -> encrypted manifest.
	"""

	def __init__(self, album_name: str, password: str, config: Optional[BuildConfig] = None,
				 converter: Optional[AssetConverter] = None, scanner: Optional[SourceScanner] = None):
		self.album_name = album_name
		self.password = password
		self.config = config or BuildConfig()
		self.converter = converter or Transcoder()
		self.scanner = scanner or SourceScanner()

	def run(self, source_dir: Path, output_dir: Path) -> JobResult:
		"""
		Build the album into <output_dir>/<album_name>.
		Per-asset conversion failures are counted, not fatal. I/O errors propagate.
		"""
		job_result = JobResult(False)
		album_dir = Path(output_dir).resolve() / self.album_name

		logger.info(f"Source: {Path(source_dir).resolve()}")
		logger.info(f"Album:  {self.album_name}")
		logger.info(f"Output: {album_dir}")

		scanned = self.scanner.scan(Path(source_dir))
		job_result.total_assets = len(scanned)
		if not scanned:
			logger.info("No assets found.")
			job_result.success = True
			return job_result

		logger.info("Deriving encryption key...")
		key = AlbumKey.derive(self.password, self.album_name, KeyRole.ENCRYPT)

		driver = ConversionDriver(self.converter, album_dir, jobs=self.config.jobs)
		conversion = driver.run(scanned)
		done = conversion.done
		job_result.converted = len(done)
		job_result.failed = len(conversion.failed)
		for n in conversion.failed:
			job_result.add_error(f"Skipped {scanned[n].label}: conversion failed")

		failed_note = f" ({job_result.failed} failed)" if job_result.failed else ""
		logger.info(f"Converted {len(done)}/{len(scanned)} assets{failed_note}")

		entries = driver.entries(scanned, done)
		logger.info("Creating encrypted chunks...")
		chunks = create_chunks(entries, album_dir, key, max_size=self.config.chunk_size,
							   compress=self.config.compress)
		job_result.chunks = len(chunks)

		logger.info("Generating encrypted manifest...")
		manifest = generate_manifest([scanned[n].date for n in done], chunks)
		with open(album_dir / MANIFEST_FILE, 'wb') as f:
			f.write(key.seal(encode_manifest(manifest)))
		job_result.months = len(manifest.months)

		self._remove_stale_chunks(album_dir, chunks)
		if job_result.failed == 0:
			# Keep progress around otherwise, so a rerun only retries the failures
			driver.discard()

		job_result.success = True
		logger.info(
			f"Done! {manifest.totalAssets} assets in {len(chunks)} chunk(s), {len(manifest.months)} month(s)"
		)
		return job_result

	@staticmethod
	def _remove_stale_chunks(album_dir: Path, chunks: Sequence[ChunkInfo]):
		"""Chunk files left over from an earlier build of the same album."""
		keep = set()
		for chunk in chunks:
			keep.update(f for f in (chunk.thumbnailsFile, chunk.originalsFile, chunk.videosFile) if f)
		for path in album_dir.glob("*-*.enc"):
			prefix, _, number = path.stem.rpartition("-")
			if prefix in ("thumbs", "originals", "videos") and number.isdigit() and path.name not in keep:
				path.unlink()
				logger.debug(f"Removed stale chunk file {path.name}")
