"""
Crypto Service - Authenticated encryption, keyed hashing, tokens, secure erase.

Blob format (at-rest audit log and vault values):

    nonce (12 bytes) || AES-256-GCM ciphertext || tag (16 bytes)

Key lifecycle:
- 256-bit key generated lazily on first need (initialize_key)
- Held only in memory; never written out
- Immutable once set; re-initialization is a no-op

Signatures are HMAC-SHA256, base64-encoded. verify() always recomputes
the expected value and compares in constant time. Tokens are HS256 JWTs
under the same kind of shared secret.
"""

import base64
import hashlib
import hmac
import logging
import os
import secrets
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Union

import aiofiles
import jwt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ...core.errors import (
    AuthenticationFailure,
    KeyNotInitialized,
    MalformedCiphertext,
    StorageError,
)

logger = logging.getLogger(__name__)

BytesLike = Union[bytes, str]

KEY_SIZE = 32  # AES-256
NONCE_SIZE = 12  # 96-bit GCM nonce
TAG_SIZE = 16
MIN_BLOB_SIZE = NONCE_SIZE + TAG_SIZE
SALT_SIZE = 32
ERASE_RANDOM_PASSES = 3
JWT_ALGORITHM = "HS256"


def _to_bytes(value: BytesLike) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


class CryptoService:
    """
    Owns the symmetric key and every cryptographic primitive the agent uses.

    Other components never see the key; they go through encrypt/decrypt.
    """

    def __init__(self, key: Optional[bytes] = None):
        """
        Args:
            key: Optional pre-provisioned 32-byte key. When omitted the key is
                 generated on first initialize_key() call.
        """
        if key is not None and len(key) != KEY_SIZE:
            raise ValueError(f"Encryption key must be {KEY_SIZE} bytes")

        self._key: Optional[bytes] = key
        self._key_lock = threading.Lock()

        logger.info(
            f"CryptoService initialized (key {'provisioned' if key else 'pending'})"
        )

    # === Key lifecycle ===

    @property
    def has_key(self) -> bool:
        return self._key is not None

    def initialize_key(self) -> bool:
        """
        Create the encryption key if none exists.

        Returns:
            True if a key was generated by this call, False if one already existed
        """
        with self._key_lock:
            if self._key is not None:
                return False
            self._key = self.generate_key()

        logger.info("Encryption key initialized")
        return True

    # === Authenticated encryption ===

    def encrypt(self, plaintext: BytesLike) -> bytes:
        """Encrypt with a fresh random nonce. Output: nonce || ciphertext || tag."""
        key = self._key
        if key is None:
            raise KeyNotInitialized("Encryption key not initialized")

        nonce = self.generate_nonce()
        sealed = AESGCM(key).encrypt(nonce, _to_bytes(plaintext), None)
        return nonce + sealed

    def decrypt(self, blob: bytes) -> bytes:
        """
        Decrypt a blob produced by encrypt().

        Raises:
            MalformedCiphertext: blob shorter than nonce + tag
            KeyNotInitialized: no key in memory
            AuthenticationFailure: tag mismatch (tampered blob or wrong key)
        """
        if len(blob) < MIN_BLOB_SIZE:
            raise MalformedCiphertext(
                f"Encrypted data too short: {len(blob)} bytes (minimum {MIN_BLOB_SIZE})"
            )

        key = self._key
        if key is None:
            raise KeyNotInitialized("Encryption key not initialized")

        nonce, sealed = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
        try:
            return AESGCM(key).decrypt(nonce, sealed, None)
        except InvalidTag:
            raise AuthenticationFailure(
                "Ciphertext failed authentication (tampered or wrong key)"
            ) from None

    # === Keyed hashing ===

    def sign(self, payload: BytesLike, secret: BytesLike) -> str:
        """HMAC-SHA256 of payload under secret, base64-encoded."""
        mac = hmac.new(_to_bytes(secret), _to_bytes(payload), hashlib.sha256)
        return base64.b64encode(mac.digest()).decode("ascii")

    def verify(self, payload: BytesLike, secret: BytesLike, signature: str) -> bool:
        """Recompute the HMAC and compare in constant time."""
        if not signature:
            return False
        expected = self.sign(payload, secret)
        return hmac.compare_digest(
            expected.encode("ascii"), signature.encode("utf-8", "surrogateescape")
        )

    def hash_with_salt(self, value: BytesLike, salt: bytes) -> str:
        """One-way SHA-256 digest of value || salt, base64-encoded."""
        digest = hashlib.sha256(_to_bytes(value) + salt).digest()
        return base64.b64encode(digest).decode("ascii")

    def verify_hash(self, value: BytesLike, salt: bytes, expected: str) -> bool:
        computed = self.hash_with_salt(value, salt)
        return hmac.compare_digest(computed.encode("ascii"), expected.encode("utf-8"))

    # === Tokens ===

    def generate_jwt_token(self, payload: Dict[str, Any], secret: BytesLike) -> str:
        """HS256 JSON Web Token carrying payload."""
        return jwt.encode(payload, _to_bytes(secret), algorithm=JWT_ALGORITHM)

    def verify_jwt_token(self, token: str, secret: BytesLike) -> Dict[str, Any]:
        """
        Check signature (and `exp`, when present) and return the claims.

        Raises:
            AuthenticationFailure: forged, malformed or expired token
        """
        try:
            return jwt.decode(token, _to_bytes(secret), algorithms=[JWT_ALGORITHM])
        except jwt.InvalidTokenError as e:
            raise AuthenticationFailure(f"Invalid token: {e}") from e

    # === Randomness ===

    @staticmethod
    def generate_key() -> bytes:
        return secrets.token_bytes(KEY_SIZE)

    @staticmethod
    def generate_salt(size: int = SALT_SIZE) -> bytes:
        return secrets.token_bytes(size)

    @staticmethod
    def generate_nonce() -> bytes:
        return secrets.token_bytes(NONCE_SIZE)

    @staticmethod
    def generate_token(length: int = 32) -> str:
        """URL-safe random string of exactly `length` characters."""
        return secrets.token_urlsafe(length)[:length]

    # === Files ===

    async def file_digest(self, path: Union[str, Path]) -> str:
        """Base64 SHA-256 of a file's contents."""
        try:
            async with aiofiles.open(path, "rb") as f:
                contents = await f.read()
        except OSError as e:
            raise StorageError(f"Cannot read {path}: {e}") from e
        return base64.b64encode(hashlib.sha256(contents).digest()).decode("ascii")

    async def integrity_check(self, path: Union[str, Path], expected_digest: str) -> bool:
        """Recompute the file digest and compare with the expected value."""
        actual = await self.file_digest(path)
        return hmac.compare_digest(
            actual.encode("ascii"), expected_digest.encode("utf-8")
        )

    async def secure_erase(self, path: Union[str, Path]) -> None:
        """
        Overwrite with random data (3 passes), then zeros, then unlink.

        Best effort against residual recovery on simple filesystems; journaling,
        copy-on-write and SSD wear levelling may keep older copies.
        """
        path = Path(path)
        try:
            size = path.stat().st_size
            async with aiofiles.open(path, "r+b") as f:
                for _ in range(ERASE_RANDOM_PASSES):
                    await f.seek(0)
                    await f.write(secrets.token_bytes(size))
                    await f.flush()
                    os.fsync(f.fileno())

                await f.seek(0)
                await f.write(b"\x00" * size)
                await f.flush()
                os.fsync(f.fileno())

            path.unlink()
        except OSError as e:
            logger.error(f"Secure erase failed for {path}: {e}")
            raise StorageError(f"Secure erase failed for {path}: {e}") from e

        logger.info(f"File securely wiped: {path}")
