"""
Tar-compatible container for a flat namespace of named blobs.

Layout: for every entry a 512-byte ustar header followed by the blob,
padded to a multiple of 512 bytes. The stream ends with two zero blocks.
The whole stream may be gzip-compressed; unpack detects that from the
gzip magic bytes.
"""
import gzip
import re
import zlib
from typing import Dict, Mapping, Optional
import logging

from .errors import MalformedArchiveError

logger = logging.getLogger(__name__)

BLOCK_SIZE = 512
NAME_SIZE = 100
SIZE_OFFSET = 124
SIZE_LENGTH = 12
MAX_ENTRY_SIZE = 8 ** 11 - 1  # 11 octal digits
GZIP_MAGIC = b"\x1f\x8b"
META_ENTRY = "meta.json"

_ZERO_BLOCK = bytes(BLOCK_SIZE)
_ID_PATTERN = re.compile(r"(\d+)\.\w+$")
_OCTAL_FIELD = re.compile(rb"[0-7]+")


def _padded(size: int) -> int:
	return (size + BLOCK_SIZE - 1) // BLOCK_SIZE * BLOCK_SIZE


def _octal(value: int, width: int) -> bytes:
	"""Zero-padded octal field terminated by NUL."""
	return f"{value:0{width - 1}o}".encode('ascii') + b"\0"


def _encode_name(name: str) -> bytes:
	if not name:
		raise ValueError("Entry name cannot be empty")
	if not name.isprintable():
		raise ValueError(f"Entry name must be printable: {name!r}")
	raw = name.encode('utf-8')
	if len(raw) > NAME_SIZE:
		raise ValueError(f"Entry name longer than {NAME_SIZE} bytes: {name!r}")
	return raw


def _build_header(raw_name: bytes, size: int) -> bytes:
	header = bytearray(BLOCK_SIZE)
	header[0:len(raw_name)] = raw_name
	header[100:108] = _octal(0o644, 8)   # mode
	header[108:116] = _octal(0, 8)       # uid
	header[116:124] = _octal(0, 8)       # gid
	header[124:136] = _octal(size, 12)
	header[136:148] = _octal(0, 12)      # mtime
	header[148:156] = b" " * 8           # checksum placeholder
	header[156:157] = b"0"               # regular file
	header[257:263] = b"ustar\0"
	header[263:265] = b"00"
	checksum = sum(header)
	header[148:156] = f"{checksum:06o}".encode('ascii') + b"\0 "
	return bytes(header)


def pack(entries: Mapping[str, bytes]) -> bytes:
	"""
	Pack a name -> bytes mapping into a tar stream.
	Entry order follows the mapping's iteration order.
	"""
	out = bytearray()
	for name, blob in entries.items():
		raw_name = _encode_name(name)
		size = len(blob)
		if size > MAX_ENTRY_SIZE:
			raise ValueError(f"Entry {name} too large for archive: {size} bytes")
		out += _build_header(raw_name, size)
		out += blob
		out += bytes(_padded(size) - size)
	out += _ZERO_BLOCK * 2
	return bytes(out)


def _parse_name(header: memoryview, offset: int) -> str:
	field = bytes(header[0:NAME_SIZE])
	raw = field.split(b"\0", 1)[0]
	if not raw:
		raise MalformedArchiveError(f"Empty entry name in header at offset {offset}")
	try:
		return raw.decode('utf-8')
	except UnicodeDecodeError:
		raise MalformedArchiveError(f"Undecodable entry name at offset {offset}") from None


def _parse_size(header: memoryview, offset: int) -> int:
	field = bytes(header[SIZE_OFFSET:SIZE_OFFSET + SIZE_LENGTH])
	text = field.split(b"\0", 1)[0].strip(b" ")
	if not text:
		raise MalformedArchiveError(f"Missing size field at offset {offset}")
	# Octal digits only, no sign or separators
	if not _OCTAL_FIELD.fullmatch(text):
		raise MalformedArchiveError(f"Invalid size field {field!r} at offset {offset}")
	return int(text, 8)


def unpack_tar(data: bytes) -> Dict[str, bytes]:
	"""
	Read an uncompressed tar stream.
	Stops at the first all-zero header block. Truncated or undecodable
	streams raise MalformedArchiveError; no partial result is returned.
	"""
	view = memoryview(data)
	total = len(view)
	entries: Dict[str, bytes] = {}
	offset = 0

	while offset < total:
		if total - offset < BLOCK_SIZE:
			raise MalformedArchiveError(f"Truncated header at offset {offset}")

		header = view[offset:offset + BLOCK_SIZE]
		if header == _ZERO_BLOCK:
			break

		name = _parse_name(header, offset)
		size = _parse_size(header, offset)
		offset += BLOCK_SIZE

		if offset + _padded(size) > total:
			raise MalformedArchiveError(
				f"Entry {name} truncated: needs {size} bytes, {total - offset} available"
			)
		if name in entries:
			raise MalformedArchiveError(f"Duplicate entry name: {name}")

		entries[name] = bytes(view[offset:offset + size])
		offset += _padded(size)

	return entries


def is_compressed(data: bytes) -> bool:
	return len(data) >= 2 and bytes(data[:2]) == GZIP_MAGIC


def compress(data: bytes) -> bytes:
	return gzip.compress(data, compresslevel=6, mtime=0)


def decompress(data: bytes) -> bytes:
	try:
		return gzip.decompress(data)
	except (OSError, EOFError, zlib.error) as e:
		raise MalformedArchiveError(f"Corrupt compressed archive: {e}") from None


def pack_archive(entries: Mapping[str, bytes], compressed: bool = True) -> bytes:
	"""Pack entries and, by default, gzip the whole stream."""
	packed = pack(entries)
	if not compressed:
		return packed
	result = compress(packed)
	logger.debug(f"Packed {len(entries)} entries: {len(packed)} -> {len(result)} bytes")
	return result


def unpack_archive(data: bytes) -> Dict[str, bytes]:
	"""Unpack a tar stream, decompressing first when it carries the gzip magic."""
	if is_compressed(data):
		data = decompress(data)
	return unpack_tar(data)


def entry_id(name: str) -> Optional[int]:
	"""Asset id encoded in an entry name (thumb12.avif -> 12), or None."""
	match = _ID_PATTERN.search(name)
	return int(match.group(1)) if match else None


def thumb_name(asset_id: int, ext: str = "avif") -> str:
	return f"thumb{asset_id}.{ext}"


def asset_name(asset_id: int, ext: str = "avif") -> str:
	return f"asset{asset_id}.{ext}"


def video_name(asset_id: int, ext: str = "mp4") -> str:
	return f"video{asset_id}.{ext}"
