import os
import hashlib
from enum import Enum
from pathlib import Path
from typing import Union
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives import hashes
import logging

from .errors import AuthenticationError

logger = logging.getLogger(__name__)

NONCE_SIZE = 12  # 96 bits for AES-GCM
TAG_SIZE = 16
KEY_SIZE = 32    # 256 bits for AES-256
ITERATIONS = 100000


class KeyRole(Enum):
	DECRYPT = "decrypt"
	ENCRYPT = "encrypt"  # encrypt + decrypt


def album_salt(album_name: str) -> bytes:
	"""Deterministic salt for an album: SHA-256 of its UTF-8 name."""
	return hashlib.sha256(album_name.encode('utf-8')).digest()


class AlbumKey:
	"""
	AES-256-GCM key bound to one album.
	Envelope layout: nonce (12 bytes) + ciphertext + tag (16 bytes).
	"""

	def __init__(self, key: bytes, role: KeyRole = KeyRole.DECRYPT):
		if len(key) != KEY_SIZE:
			raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
		self._key = key
		self.role = role
		self._aesgcm = AESGCM(key)

	@classmethod
	def derive(cls, password: Union[str, bytes], album_name: str,
			   role: KeyRole = KeyRole.DECRYPT) -> 'AlbumKey':
		"""
		Derive the album key with PBKDF2-SHA256.
		A wrong password still yields a key; it only fails at envelope authentication.
		"""
		if isinstance(password, str):
			password = password.encode('utf-8')
		kdf = PBKDF2HMAC(
			algorithm=hashes.SHA256(),
			length=KEY_SIZE,
			salt=album_salt(album_name),
			iterations=ITERATIONS,
		)
		return cls(kdf.derive(password), role=role)

	@property
	def can_encrypt(self) -> bool:
		return self.role is KeyRole.ENCRYPT

	@property
	def material(self) -> bytes:
		return self._key

	def seal(self, plaintext: bytes) -> bytes:
		"""Encrypt with a fresh random nonce."""
		if not self.can_encrypt:
			raise PermissionError("Key was derived for decryption only")
		nonce = os.urandom(NONCE_SIZE)
		return nonce + self._aesgcm.encrypt(nonce, bytes(plaintext), None)

	def open(self, envelope: bytes) -> bytes:
		"""Authenticate and decrypt a sealed envelope."""
		if len(envelope) < NONCE_SIZE + TAG_SIZE:
			raise AuthenticationError("Envelope too short")
		nonce = bytes(envelope[:NONCE_SIZE])
		ciphertext = bytes(envelope[NONCE_SIZE:])
		try:
			return self._aesgcm.decrypt(nonce, ciphertext, None)
		except InvalidTag:
			raise AuthenticationError() from None

	def seal_file(self, input_path: Path, output_path: Path):
		"""Encrypt an entire file."""
		with open(input_path, 'rb') as f:
			plaintext = f.read()

		envelope = self.seal(plaintext)

		with open(output_path, 'wb') as f:
			f.write(envelope)

	def open_file(self, input_path: Path, output_path: Path):
		"""Decrypt an entire file. Nothing is written if authentication fails."""
		with open(input_path, 'rb') as f:
			envelope = f.read()

		plaintext = self.open(envelope)

		with open(output_path, 'wb') as f:
			f.write(plaintext)


def sha256_hex(data: bytes) -> str:
	return hashlib.sha256(data).hexdigest()
