"""Crypto service - AES-256-GCM, HMAC-SHA256, secure erase."""

from .service import CryptoService, KEY_SIZE, MIN_BLOB_SIZE, NONCE_SIZE, TAG_SIZE

__all__ = [
    "CryptoService",
    "KEY_SIZE",
    "MIN_BLOB_SIZE",
    "NONCE_SIZE",
    "TAG_SIZE",
]
