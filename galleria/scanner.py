import json
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from PIL import Image, UnidentifiedImageError
import logging

from .models import AssetType, ScannedAsset

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'jpg', 'jpeg', 'png', 'heic', 'heif', 'webp', 'tiff', 'tif'}
VIDEO_EXTENSIONS = {'mov', 'mp4', 'avi', 'mkv', 'm4v'}

EXIF_IFD = 0x8769
TAG_DATETIME_ORIGINAL = 36867
TAG_DATETIME_DIGITIZED = 36868
TAG_DATETIME = 306
EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"


def _mtime(path: Path) -> datetime:
	return datetime.fromtimestamp(path.stat().st_mtime)


def _parse_exif_date(value) -> Optional[datetime]:
	if not isinstance(value, str):
		return None
	try:
		return datetime.strptime(value.strip().rstrip("\0")[:19], EXIF_DATE_FORMAT)
	except ValueError:
		return None


def extract_image_date(path: Path) -> datetime:
	"""Capture date from EXIF (original, digitized, modified), falling back to file mtime."""
	try:
		with Image.open(path) as img:
			exif = img.getexif()
			sub = exif.get_ifd(EXIF_IFD)
			for value in (sub.get(TAG_DATETIME_ORIGINAL), sub.get(TAG_DATETIME_DIGITIZED), exif.get(TAG_DATETIME)):
				date = _parse_exif_date(value)
				if date:
					return date
	except (UnidentifiedImageError, OSError, ValueError) as e:
		logger.debug(f"No EXIF date for {path.name}: {e}")
	return _mtime(path)


def extract_video_date(path: Path) -> datetime:
	"""Creation time from ffprobe, falling back to file mtime."""
	try:
		result = subprocess.run(
			["ffprobe", "-v", "quiet", "-print_format", "json",
			 "-show_entries", "format_tags=creation_time", str(path)],
			capture_output=True, check=True, timeout=60,
		)
		creation_time = json.loads(result.stdout).get("format", {}).get("tags", {}).get("creation_time")
		if creation_time:
			parsed = datetime.fromisoformat(creation_time.replace("Z", "+00:00"))
			if parsed.tzinfo is not None:
				parsed = parsed.astimezone().replace(tzinfo=None)
			return parsed
	except (OSError, subprocess.SubprocessError, ValueError, AttributeError) as e:
		logger.debug(f"ffprobe gave no date for {path.name}: {e}")
	return _mtime(path)


def fingerprint(asset_type: AssetType, paths: List[Path], root: Path) -> str:
	"""Stable identity of an asset's source files: relative path, size and mtime of each."""
	parts = [asset_type.value]
	for path in paths:
		st = path.stat()
		parts.append(f"{path.relative_to(root).as_posix()}@{st.st_size}@{st.st_mtime_ns}")
	return "|".join(parts)


class SourceScanner:
	"""
	Finds photos and videos under a directory. An image and a video that
	share a file stem in the same folder form one live photo.
	"""

	def __init__(self, image_date=extract_image_date, video_date=extract_video_date):
		self._image_date = image_date
		self._video_date = video_date

	def scan(self, source_dir: Path) -> List[ScannedAsset]:
		"""Returns assets sorted by date ascending (oldest first)."""
		root = Path(source_dir).resolve()
		if not root.is_dir():
			raise NotADirectoryError(f"Source is not a directory: {root}")

		stems: Dict[Tuple[Path, str], Dict[str, List[Path]]] = {}
		for path in sorted(root.rglob("*")):
			if not path.is_file() or any(p.startswith(".") for p in path.relative_to(root).parts):
				continue
			ext = path.suffix.lower().lstrip('.')
			if ext in IMAGE_EXTENSIONS:
				bucket = "images"
			elif ext in VIDEO_EXTENSIONS:
				bucket = "videos"
			else:
				continue
			group = stems.setdefault((path.parent, path.stem), {"images": [], "videos": []})
			group[bucket].append(path)

		assets: List[ScannedAsset] = []
		for group in stems.values():
			images, videos = group["images"], group["videos"]
			if images and videos:
				# Only the first image and video of a stem pair up
				image, video = images.pop(0), videos.pop(0)
				assets.append(ScannedAsset(
					type=AssetType.LIVE, date=self._image_date(image),
					image_path=image, video_path=video,
					fingerprint=fingerprint(AssetType.LIVE, [image, video], root),
				))
			for image in images:
				assets.append(ScannedAsset(
					type=AssetType.PHOTO, date=self._image_date(image), image_path=image,
					fingerprint=fingerprint(AssetType.PHOTO, [image], root),
				))
			for video in videos:
				assets.append(ScannedAsset(
					type=AssetType.VIDEO, date=self._video_date(video), video_path=video,
					fingerprint=fingerprint(AssetType.VIDEO, [video], root),
				))

		# Fingerprint breaks date ties so the order is reproducible across scans
		assets.sort(key=lambda a: (a.date, a.fingerprint))

		counts = {t: sum(1 for a in assets if a.type is t) for t in AssetType}
		logger.info(
			f"Found {len(assets)} assets ({counts[AssetType.PHOTO]} photos, "
			f"{counts[AssetType.LIVE]} live, {counts[AssetType.VIDEO]} videos)"
		)
		return assets
