"""
Encrypted Vault - Named values encrypted at rest.

Each value lives in <storage_dir>/<name>.enc using the same
nonce || ciphertext || tag layout as the audit log. Deletion goes
through secure erase.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

import aiofiles

from ...core.errors import StorageError
from ..audit.store import AUDIT_BLOB_NAME
from ..crypto.service import CryptoService

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
RESERVED_NAMES = {AUDIT_BLOB_NAME[: -len(".enc")]}


class EncryptedVault:
    """Store, retrieve and erase small encrypted values by name."""

    def __init__(self, crypto: CryptoService, storage_dir: Path):
        self.crypto = crypto
        self.storage_dir = Path(storage_dir)

    def _path_for(self, name: str) -> Path:
        if not _NAME_RE.match(name) or name in (".", "..") or name in RESERVED_NAMES:
            raise ValueError(f"Invalid vault entry name: {name!r}")
        return self.storage_dir / f"{name}.enc"

    async def store(self, name: str, data: Union[bytes, str]) -> Path:
        path = self._path_for(name)
        self.crypto.initialize_key()
        blob = self.crypto.encrypt(data)

        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(blob)
            os.chmod(path, 0o600)
        except OSError as e:
            logger.error(f"Failed to store {name}: {e}")
            raise StorageError(f"Failed to store {name}: {e}") from e

        logger.debug(f"Stored encrypted value {name} ({len(blob)} bytes)")
        return path

    async def retrieve(self, name: str) -> Optional[bytes]:
        """Decrypted value, or None if nothing is stored under name."""
        path = self._path_for(name)
        if not path.exists():
            return None

        try:
            async with aiofiles.open(path, "rb") as f:
                blob = await f.read()
        except OSError as e:
            raise StorageError(f"Failed to read {name}: {e}") from e

        return self.crypto.decrypt(blob)

    async def delete(self, name: str) -> bool:
        path = self._path_for(name)
        if not path.exists():
            return False
        await self.crypto.secure_erase(path)
        return True

    def get_stats(self) -> Dict[str, Any]:
        files = list(self.storage_dir.glob("*.enc")) if self.storage_dir.exists() else []
        values = [p for p in files if p.name != AUDIT_BLOB_NAME]
        return {
            "storage_path": str(self.storage_dir),
            "stored_values": len(values),
            "total_size_bytes": sum(p.stat().st_size for p in values),
            "encryption_initialized": self.crypto.has_key,
        }
