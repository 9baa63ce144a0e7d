import json
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Set
import logging

logger = logging.getLogger(__name__)

PROGRESS_VERSION = 1


@dataclass
class ProgressRecord:
	"""
	Which assets of a build are already converted.
	Only valid for the exact source fingerprint list it was created with.
	"""
	fingerprints: List[str]
	done: Set[int] = field(default_factory=set)
	version: int = PROGRESS_VERSION

	def matches(self, fingerprints: Sequence[str]) -> bool:
		return self.version == PROGRESS_VERSION and list(fingerprints) == self.fingerprints

	def to_dict(self) -> dict:
		return {
			"version": self.version,
			"fingerprints": list(self.fingerprints),
			"done": sorted(self.done),
		}

	@classmethod
	def from_dict(cls, data: dict) -> 'ProgressRecord':
		fingerprints = data.get("fingerprints")
		done = data.get("done")
		if not isinstance(fingerprints, list) or not isinstance(done, list):
			raise ValueError("Progress record requires 'fingerprints' and 'done' lists")
		if not all(isinstance(i, int) and 0 <= i < len(fingerprints) for i in done):
			raise ValueError("Progress record has out-of-range ids")
		return cls(
			fingerprints=[str(f) for f in fingerprints],
			done=set(done),
			version=data.get("version", 0),
		)

	@classmethod
	def load(cls, path: Path) -> Optional['ProgressRecord']:
		"""Load a record, or None if there is none or it is unreadable."""
		if not path.exists():
			return None
		try:
			with open(path, 'r', encoding='utf-8') as f:
				return cls.from_dict(json.load(f))
		except (json.JSONDecodeError, ValueError, IOError) as e:
			logger.warning(f"Discarding unreadable progress record {path}: {e}")
			return None


def write_atomic(path: Path, data: dict):
	"""Readers see either the previous record or the new one, never a partial file."""
	tmp = path.with_name(path.name + ".tmp")
	with open(tmp, 'w', encoding='utf-8') as f:
		json.dump(data, f)
		f.flush()
		os.fsync(f.fileno())
	os.replace(tmp, path)


class ProgressWriter:
	"""
	Single-writer persistence for the progress record.

	At most one write is in flight. Snapshots submitted while a write is
	running replace each other, and only the latest is written once the
	current write finishes.
	"""

	def __init__(self, path: Path):
		self.path = Path(path)
		self.writes = 0
		self._cond = threading.Condition()
		self._pending: Optional[dict] = None
		self._busy = False
		self._error: Optional[OSError] = None

	def submit(self, snapshot: dict):
		with self._cond:
			self._pending = snapshot
			if self._busy:
				return
			self._busy = True
		threading.Thread(target=self._drain, name="galleria-progress", daemon=True).start()

	def _drain(self):
		while True:
			with self._cond:
				snapshot = self._pending
				self._pending = None
				if snapshot is None:
					self._busy = False
					self._cond.notify_all()
					return
			try:
				write_atomic(self.path, snapshot)
			except OSError as e:
				logger.error(f"Failed to write progress record {self.path}: {e}")
				with self._cond:
					self._error = e
				continue
			with self._cond:
				self.writes += 1

	def flush(self):
		"""Block until every submitted snapshot is on disk. Re-raises a write failure."""
		with self._cond:
			self._cond.wait_for(lambda: not self._busy)
			error, self._error = self._error, None
		if error:
			raise error
