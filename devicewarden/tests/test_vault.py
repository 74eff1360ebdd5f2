"""EncryptedVault tests."""

import asyncio

import pytest

from devicewarden.service.storage import EncryptedVault


@pytest.fixture
def vault(crypto, tmp_path):
    return EncryptedVault(crypto, tmp_path / "storage")


class TestEncryptedVault:
    def test_store_and_retrieve(self, vault, tmp_path):
        """Values round-trip and are not stored in clear."""

        async def scenario():
            await vault.store("api_token", b"s3cr3t-value")
            return await vault.retrieve("api_token")

        assert asyncio.run(scenario()) == b"s3cr3t-value"
        raw = (tmp_path / "storage" / "api_token.enc").read_bytes()
        assert b"s3cr3t-value" not in raw

    def test_missing_value(self, vault):
        """Unknown names return None."""
        assert asyncio.run(vault.retrieve("nothing")) is None

    def test_delete(self, vault, tmp_path):
        """Deleted values are gone from disk."""

        async def scenario():
            await vault.store("session", "abc")
            deleted = await vault.delete("session")
            return deleted, await vault.delete("session")

        assert asyncio.run(scenario()) == (True, False)
        assert not (tmp_path / "storage" / "session.enc").exists()

    @pytest.mark.parametrize("name", ["../escape", "a/b", "", "..", "audit_log", "sp ace"])
    def test_invalid_names(self, vault, name):
        """Path tricks and the audit blob name are refused."""
        with pytest.raises(ValueError):
            asyncio.run(vault.store(name, b"x"))

    def test_stats(self, vault):
        """Stats count stored values."""
        asyncio.run(vault.store("one", b"1"))
        stats = vault.get_stats()
        assert stats["stored_values"] == 1
        assert stats["encryption_initialized"] is True
