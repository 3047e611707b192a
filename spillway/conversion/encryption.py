"""
AES-256-GCM segment encryption.

File layout: 12-byte random nonce, then ciphertext with the 16-byte tag
appended. Keys travel as standard base64 of 32 raw bytes.
"""

import base64
import binascii
import logging
import os
import shutil
from pathlib import Path
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import EncryptionError
from .constants import PLAYLIST_EXTENSION, SEGMENT_EXTENSION

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16

PathLike = Union[str, Path]


def _decode_key(key: str) -> bytes:
    try:
        raw = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise EncryptionError("Encryption key is not valid base64") from e
    if len(raw) != KEY_SIZE:
        raise EncryptionError(f"Encryption key must be {KEY_SIZE} bytes, got {len(raw)}")
    return raw


class SegmentEncryptor:
    """Encrypts and decrypts HLS segments with a per-video key."""

    @staticmethod
    def generate_key() -> str:
        return base64.b64encode(AESGCM.generate_key(bit_length=KEY_SIZE * 8)).decode("ascii")

    @staticmethod
    def is_valid_key(key: str) -> bool:
        """Structural check only: base64 that decodes to 32 bytes."""
        if not key:
            return False
        try:
            _decode_key(key)
        except EncryptionError:
            return False
        return True

    def encrypt_data(self, data: bytes, key: str) -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        return nonce + AESGCM(_decode_key(key)).encrypt(nonce, data, None)

    def decrypt_data(self, data: bytes, key: str) -> bytes:
        aesgcm = AESGCM(_decode_key(key))
        if len(data) < NONCE_SIZE + TAG_SIZE:
            raise EncryptionError("Encrypted data is truncated")
        nonce, ciphertext = data[:NONCE_SIZE], data[NONCE_SIZE:]
        try:
            return aesgcm.decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise EncryptionError("Decryption failed: wrong key or corrupted data") from e

    def encrypt_file(self, input_path: PathLike, output_path: PathLike, key: str) -> None:
        data = Path(input_path).read_bytes()
        Path(output_path).write_bytes(self.encrypt_data(data, key))

    def decrypt_file(self, input_path: PathLike, key: str) -> bytes:
        return self.decrypt_data(Path(input_path).read_bytes(), key)

    def encrypt_directory(self, source_dir: Path, output_dir: Path, key: str) -> int:
        """
        Encrypt every segment of source_dir into output_dir.

        Playlists are copied as-is. Returns the number of segments encrypted.
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        encrypted = 0

        for item in sorted(source_dir.iterdir()):
            if item.suffix == SEGMENT_EXTENSION:
                self.encrypt_file(item, output_dir / item.name, key)
                encrypted += 1
            elif item.suffix == PLAYLIST_EXTENSION:
                shutil.copy2(item, output_dir / item.name)

        logger.info(f"[Encrypt] Encrypted {encrypted} segment(s) into {output_dir}")
        return encrypted
