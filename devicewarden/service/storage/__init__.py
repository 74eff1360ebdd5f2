"""Encrypted value storage."""

from .vault import EncryptedVault

__all__ = ["EncryptedVault"]
