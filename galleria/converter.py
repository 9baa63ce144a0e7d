import os
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional
import logging

from .errors import ConversionError
from .models import AssetType, ScannedAsset

logger = logging.getLogger(__name__)

# Quality settings
IMAGE_CRF = 23
THUMB_CRF = 32
VIDEO_CRF = 28
THUMB_SIZE = 256
FFMPEG_TIMEOUT = 60 * 60


# --- Cache file naming ---

def thumb_cache_name(n: int) -> str:
	return f"{n}.thumb.avif"


def asset_cache_name(n: int) -> str:
	return f"{n}.asset.avif"


def video_cache_name(n: int) -> str:
	return f"{n}.video.mp4"


def expected_outputs(asset_type: AssetType, n: int) -> List[str]:
	"""Cache files a finished conversion of asset n leaves behind."""
	names = [thumb_cache_name(n)]
	if asset_type in (AssetType.PHOTO, AssetType.LIVE):
		names.append(asset_cache_name(n))
	if asset_type in (AssetType.VIDEO, AssetType.LIVE):
		names.append(video_cache_name(n))
	return names


class Transcoder:
	"""
	Converts one scanned asset into AVIF stills, an AVIF thumbnail and an
	AV1 video by shelling out to ffmpeg. Outputs are written to a temp
	directory first and renamed into the cache only when every step succeeded.
	"""

	def __init__(self, ffmpeg: str = "ffmpeg"):
		self.ffmpeg = ffmpeg

	def _run(self, n: int, args: List[str]):
		cmd = [self.ffmpeg, "-y", "-loglevel", "error", *args]
		try:
			subprocess.run(cmd, capture_output=True, check=True, timeout=FFMPEG_TIMEOUT)
		except subprocess.CalledProcessError as e:
			stderr = (e.stderr or b"").decode('utf-8', 'replace').strip().splitlines()
			raise ConversionError(n, stderr[-1] if stderr else f"ffmpeg exited with {e.returncode}") from e
		except subprocess.TimeoutExpired as e:
			raise ConversionError(n, "ffmpeg timed out") from e
		except OSError as e:
			raise ConversionError(n, f"cannot run {self.ffmpeg}: {e}") from e

	def _image_args(self, source: Path, out: Path) -> List[str]:
		return ["-autorotate", "-i", str(source),
				"-c:v", "libsvtav1", "-crf", str(IMAGE_CRF), "-preset", "6",
				"-pix_fmt", "yuv420p10le", "-frames:v", "1", str(out)]

	def _image_thumb_args(self, source: Path, out: Path) -> List[str]:
		return ["-autorotate", "-i", str(source),
				"-vf", f"scale={THUMB_SIZE}:{THUMB_SIZE}:force_original_aspect_ratio=decrease",
				"-c:v", "libsvtav1", "-crf", str(THUMB_CRF), "-preset", "6",
				"-pix_fmt", "yuv420p10le", "-frames:v", "1", str(out)]

	def _video_args(self, source: Path, out: Path) -> List[str]:
		return ["-i", str(source),
				"-c:v", "libsvtav1", "-crf", str(VIDEO_CRF), "-preset", "6",
				"-pix_fmt", "yuv420p10le", "-c:a", "libopus", "-b:a", "96k", str(out)]

	def _video_thumb_args(self, source: Path, out: Path) -> List[str]:
		return ["-i", str(source),
				"-vf", f"thumbnail,scale={THUMB_SIZE}:{THUMB_SIZE}:force_original_aspect_ratio=decrease",
				"-frames:v", "1", "-c:v", "libsvtav1", "-crf", str(THUMB_CRF), "-preset", "6",
				"-pix_fmt", "yuv420p10le", str(out)]

	def convert(self, asset: ScannedAsset, n: int, cache_dir: Path):
		"""Convert asset n into cache_dir. Raises ConversionError."""
		cache_dir = Path(cache_dir)
		with tempfile.TemporaryDirectory(prefix=f".tmp-{n}-", dir=cache_dir) as tmp:
			tmp = Path(tmp)
			thumb = tmp / thumb_cache_name(n)
			image: Optional[Path] = None
			video: Optional[Path] = None

			if asset.type in (AssetType.PHOTO, AssetType.LIVE):
				if not asset.image_path:
					raise ConversionError(n, "missing image file")
				image = tmp / asset_cache_name(n)
				self._run(n, self._image_args(asset.image_path, image))
				self._run(n, self._image_thumb_args(asset.image_path, thumb))

			if asset.type in (AssetType.VIDEO, AssetType.LIVE):
				if not asset.video_path:
					raise ConversionError(n, "missing video file")
				video = tmp / video_cache_name(n)
				self._run(n, self._video_args(asset.video_path, video))
				if asset.type is AssetType.VIDEO:
					self._run(n, self._video_thumb_args(asset.video_path, thumb))

			# Thumbnail goes last: its presence marks the conversion as complete
			for produced in (image, video, thumb):
				if produced:
					os.replace(produced, cache_dir / produced.name)
