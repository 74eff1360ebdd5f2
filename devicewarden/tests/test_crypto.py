"""
CryptoService tests.

Covers the AEAD blob layout, tamper detection, HMAC signing and the
file helpers (digest, integrity check, secure erase).
"""

import asyncio
import base64
import time

import pytest

from devicewarden.core.errors import (
    AuthenticationFailure,
    KeyNotInitialized,
    MalformedCiphertext,
    StorageError,
)
from devicewarden.service.crypto import CryptoService, MIN_BLOB_SIZE, NONCE_SIZE, TAG_SIZE


class TestEncryption:
    """Authenticated encryption."""

    @pytest.mark.parametrize(
        "plaintext", [b"", b"x", b"audit log payload" * 100, "unicode ✓ text"]
    )
    def test_round_trip(self, crypto, plaintext):
        """decrypt(encrypt(P)) returns P."""
        expected = plaintext.encode() if isinstance(plaintext, str) else plaintext
        assert crypto.decrypt(crypto.encrypt(plaintext)) == expected

    def test_blob_layout(self, crypto):
        """Blob is nonce || ciphertext || tag."""
        blob = crypto.encrypt(b"hello")
        assert len(blob) == NONCE_SIZE + len(b"hello") + TAG_SIZE

    def test_nonces_never_repeat(self, crypto):
        """Encrypting the same plaintext twice uses different nonces."""
        nonces = {crypto.encrypt(b"same")[:NONCE_SIZE] for _ in range(200)}
        assert len(nonces) == 200

    def test_encrypt_without_key(self):
        """Encrypting before the key exists fails."""
        with pytest.raises(KeyNotInitialized):
            CryptoService().encrypt(b"data")

    def test_short_blob_is_malformed(self, crypto):
        """Anything shorter than nonce + tag is rejected before decryption."""
        with pytest.raises(MalformedCiphertext):
            crypto.decrypt(b"\x00" * (MIN_BLOB_SIZE - 1))

    def test_tampered_blob_fails_authentication(self, crypto):
        """Flipping one ciphertext bit is detected."""
        blob = bytearray(crypto.encrypt(b"sensitive"))
        blob[NONCE_SIZE] ^= 0x01
        with pytest.raises(AuthenticationFailure):
            crypto.decrypt(bytes(blob))

    def test_wrong_key_fails_authentication(self, crypto):
        """A blob from another key never decrypts."""
        other = CryptoService()
        other.initialize_key()
        with pytest.raises(AuthenticationFailure):
            other.decrypt(crypto.encrypt(b"sensitive"))


class TestKeyLifecycle:
    """Key creation and immutability."""

    def test_initialize_is_idempotent(self):
        """Second initialization keeps the first key."""
        service = CryptoService()
        assert service.initialize_key() is True
        blob = service.encrypt(b"data")
        assert service.initialize_key() is False
        assert service.decrypt(blob) == b"data"

    def test_provisioned_key(self):
        """A pre-provisioned key decrypts across service instances."""
        key = CryptoService.generate_key()
        blob = CryptoService(key=key).encrypt(b"persisted")
        assert CryptoService(key=key).decrypt(blob) == b"persisted"

    def test_provisioned_key_wrong_size(self):
        """Keys must be 32 bytes."""
        with pytest.raises(ValueError):
            CryptoService(key=b"short")

    def test_has_key(self):
        """has_key reflects initialization."""
        service = CryptoService()
        assert not service.has_key
        service.initialize_key()
        assert service.has_key


class TestSigning:
    """HMAC-SHA256 signatures."""

    def test_sign_is_deterministic(self, crypto):
        """Same payload and secret give the same signature."""
        assert crypto.sign("payload", "secret") == crypto.sign("payload", "secret")

    def test_signature_is_base64_sha256(self, crypto):
        """Signature decodes to a 32-byte MAC."""
        assert len(base64.b64decode(crypto.sign("payload", "secret"))) == 32

    def test_verify_accepts_own_signature(self, crypto):
        """verify(sign(p, s)) is true."""
        signature = crypto.sign("c-1alice1717243200", "secret")
        assert crypto.verify("c-1alice1717243200", "secret", signature)

    def test_payload_bit_flip_rejected(self, crypto):
        """Any payload change invalidates the signature."""
        payload = b"c-1alice1717243200"
        signature = crypto.sign(payload, b"secret")
        for i in range(len(payload)):
            mutated = bytearray(payload)
            mutated[i] ^= 0x01
            assert not crypto.verify(bytes(mutated), b"secret", signature)

    def test_secret_bit_flip_rejected(self, crypto):
        """Any secret change invalidates the signature."""
        signature = crypto.sign(b"payload", b"secret")
        mutated = bytearray(b"secret")
        mutated[0] ^= 0x01
        assert not crypto.verify(b"payload", bytes(mutated), signature)

    def test_signature_bit_flip_rejected(self, crypto):
        """Any signature change is rejected."""
        raw = bytearray(base64.b64decode(crypto.sign(b"payload", b"secret")))
        raw[-1] ^= 0x01
        tampered = base64.b64encode(bytes(raw)).decode()
        assert not crypto.verify(b"payload", b"secret", tampered)

    def test_empty_signature_rejected(self, crypto):
        """Missing signature never verifies."""
        assert not crypto.verify("payload", "secret", "")


class TestTokens:
    """HS256 JSON Web Tokens."""

    TOKEN_SECRET = "token-secret-that-is-at-least-32-bytes"

    def test_token_round_trip(self, crypto):
        """Claims come back unchanged under the same secret."""
        claims = {"user_id": "123", "exp": int(time.time()) + 3600}
        token = crypto.generate_jwt_token(claims, self.TOKEN_SECRET)
        assert token.count(".") == 2
        assert crypto.verify_jwt_token(token, self.TOKEN_SECRET)["user_id"] == "123"

    def test_wrong_secret(self, crypto):
        """A token signed under another secret is rejected."""
        token = crypto.generate_jwt_token({"user_id": "123"}, self.TOKEN_SECRET)
        with pytest.raises(AuthenticationFailure):
            crypto.verify_jwt_token(token, self.TOKEN_SECRET + "-other")

    def test_expired_token(self, crypto):
        """Expired tokens are rejected."""
        token = crypto.generate_jwt_token(
            {"user_id": "123", "exp": int(time.time()) - 60}, self.TOKEN_SECRET
        )
        with pytest.raises(AuthenticationFailure):
            crypto.verify_jwt_token(token, self.TOKEN_SECRET)

    def test_malformed_token(self, crypto):
        """Garbage is an AuthenticationFailure, not a crash."""
        with pytest.raises(AuthenticationFailure):
            crypto.verify_jwt_token("not.a.token", self.TOKEN_SECRET)


class TestHashing:
    """Salted hashes and random material."""

    def test_hash_with_salt(self, crypto):
        """Same value and salt verify; another salt does not."""
        salt = crypto.generate_salt()
        digest = crypto.hash_with_salt("hunter2", salt)
        assert crypto.verify_hash("hunter2", salt, digest)
        assert not crypto.verify_hash("hunter2", crypto.generate_salt(), digest)
        assert not crypto.verify_hash("hunter3", salt, digest)

    def test_random_material(self):
        """Generated keys, salts, nonces and tokens have the right shape."""
        assert len(CryptoService.generate_key()) == 32
        assert len(CryptoService.generate_salt()) == 32
        assert len(CryptoService.generate_nonce()) == 12
        assert len(CryptoService.generate_token(20)) == 20
        assert CryptoService.generate_key() != CryptoService.generate_key()


class TestFiles:
    """Digest, integrity check, secure erase."""

    def test_integrity_check(self, crypto, tmp_path):
        """Digest matches until the file changes."""
        path = tmp_path / "policy.bin"
        path.write_bytes(b"original contents")

        digest = asyncio.run(crypto.file_digest(path))
        assert asyncio.run(crypto.integrity_check(path, digest))

        path.write_bytes(b"modified contents")
        assert not asyncio.run(crypto.integrity_check(path, digest))

    def test_digest_missing_file(self, crypto, tmp_path):
        """Unreadable file is a storage error."""
        with pytest.raises(StorageError):
            asyncio.run(crypto.file_digest(tmp_path / "missing"))

    def test_secure_erase_removes_file(self, crypto, tmp_path):
        """Erased file no longer exists."""
        path = tmp_path / "secret.enc"
        path.write_bytes(b"x" * 4096)
        asyncio.run(crypto.secure_erase(path))
        assert not path.exists()

    def test_secure_erase_missing_file(self, crypto, tmp_path):
        """Erasing a missing file is a storage error."""
        with pytest.raises(StorageError):
            asyncio.run(crypto.secure_erase(tmp_path / "missing.enc"))
