"""Tests for key derivation and the AES-GCM envelope."""

import pytest

from galleria.crypto import (
    ITERATIONS, KEY_SIZE, NONCE_SIZE, TAG_SIZE, AlbumKey, KeyRole, album_salt,
)
from galleria.errors import AuthenticationError
from conftest import ALBUM, PASSWORD


def test_derivation_is_deterministic(album_key):
    again = AlbumKey.derive(PASSWORD, ALBUM, KeyRole.ENCRYPT)
    assert again.material == album_key.material
    assert len(album_key.material) == KEY_SIZE


def test_derivation_depends_on_album_and_password(album_key):
    assert AlbumKey.derive(PASSWORD, "other-album").material != album_key.material
    assert AlbumKey.derive("wrong password", ALBUM).material != album_key.material


def test_salt_is_sha256_of_name():
    import hashlib
    assert album_salt("café") == hashlib.sha256("café".encode("utf-8")).digest()
    assert ITERATIONS == 100000


def test_bytes_and_str_passwords_agree(album_key):
    assert AlbumKey.derive(PASSWORD.encode("utf-8"), ALBUM).material == album_key.material


class TestEnvelope:
    def test_round_trip(self, album_key):
        plaintext = b"hello gallery" * 100
        envelope = album_key.seal(plaintext)
        assert len(envelope) == NONCE_SIZE + len(plaintext) + TAG_SIZE
        assert album_key.open(envelope) == plaintext

    def test_empty_plaintext(self, album_key):
        envelope = album_key.seal(b"")
        assert len(envelope) == NONCE_SIZE + TAG_SIZE
        assert album_key.open(envelope) == b""

    def test_fresh_nonce_per_seal(self, album_key):
        assert album_key.seal(b"same")[:NONCE_SIZE] != album_key.seal(b"same")[:NONCE_SIZE]

    @pytest.mark.parametrize("position", [0, NONCE_SIZE, NONCE_SIZE + 3, -1])
    def test_any_flipped_bit_is_rejected(self, album_key, position):
        envelope = bytearray(album_key.seal(b"sensitive bytes"))
        envelope[position] ^= 0x01
        with pytest.raises(AuthenticationError):
            album_key.open(bytes(envelope))

    def test_short_envelope_is_rejected(self, album_key):
        with pytest.raises(AuthenticationError):
            album_key.open(b"\x00" * (NONCE_SIZE + TAG_SIZE - 1))

    def test_wrong_key_is_rejected(self, album_key):
        envelope = album_key.seal(b"secret")
        with pytest.raises(AuthenticationError):
            AlbumKey.derive("wrong password", ALBUM).open(envelope)

    def test_decrypt_only_key_cannot_seal(self, album_key):
        reader = AlbumKey(album_key.material, KeyRole.DECRYPT)
        assert not reader.can_encrypt
        assert reader.open(album_key.seal(b"x")) == b"x"
        with pytest.raises(PermissionError):
            reader.seal(b"x")

    def test_key_length_is_checked(self):
        with pytest.raises(ValueError):
            AlbumKey(b"short")


class TestFileCrypto:
    def test_seal_and_open_file(self, album_key, tmp_path):
        plain = tmp_path / "photo.jpg"
        plain.write_bytes(b"\xff\xd8 jpeg bytes")
        sealed = tmp_path / "photo.jpg.enc"
        restored = tmp_path / "restored.jpg"

        album_key.seal_file(plain, sealed)
        album_key.open_file(sealed, restored)

        assert sealed.read_bytes() != plain.read_bytes()
        assert restored.read_bytes() == plain.read_bytes()

    def test_failed_open_writes_nothing(self, album_key, tmp_path):
        sealed = tmp_path / "photo.enc"
        sealed.write_bytes(album_key.seal(b"data"))
        out = tmp_path / "out.bin"

        with pytest.raises(AuthenticationError):
            AlbumKey.derive("nope", ALBUM).open_file(sealed, out)
        assert not out.exists()
