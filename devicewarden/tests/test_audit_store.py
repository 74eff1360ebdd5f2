"""
AuditStore tests.

Covers severity mapping, bounded FIFO retention, write-through persistence,
fail-closed restore, export formats and secure clear.
"""

import asyncio
import csv
import io
import json

import pytest

from devicewarden.core.errors import (
    AuthenticationFailure,
    MalformedCiphertext,
    StorageError,
    UnsupportedExportFormat,
)
from devicewarden.service.audit import AUDIT_BLOB_NAME, AuditStore, LogSeverity, severity_for
from devicewarden.service.crypto import CryptoService


@pytest.fixture
def memory_store(crypto):
    return AuditStore(crypto, None)


@pytest.fixture
def disk_store(crypto, tmp_path):
    return AuditStore(crypto, tmp_path / "storage")


class TestSeverity:
    @pytest.mark.parametrize(
        "event_type,severity",
        [
            ("login", LogSeverity.INFO),
            ("logout", LogSeverity.INFO),
            ("heartbeat", LogSeverity.INFO),
            ("failed_auth", LogSeverity.WARNING),
            ("rate_limit_exceeded", LogSeverity.WARNING),
            ("command_executed", LogSeverity.SECURITY),
            ("agent_started", LogSeverity.INFO),
        ],
    )
    def test_mapping(self, event_type, severity):
        """Severity is derived from the event type."""
        assert severity_for(event_type) == severity


class TestAppend:
    """log() and retention."""

    def test_capacity_keeps_newest(self, memory_store):
        """10,001 inserts leave the 10,000 most recent entries."""

        async def scenario():
            for i in range(10001):
                await memory_store.log("login", {"i": i})

        asyncio.run(scenario())

        assert len(memory_store) == 10000
        entries = memory_store.query()
        assert entries[0].details["i"] == 10000
        assert entries[-1].details["i"] == 1

    def test_small_capacity_is_fifo(self, crypto):
        """Oldest entries go first regardless of severity."""
        store = AuditStore(crypto, None, max_entries=2)

        async def scenario():
            await store.log("command_executed", {"n": 1})
            await store.log("login", {"n": 2})
            await store.log("login", {"n": 3})

        asyncio.run(scenario())
        assert [e.details["n"] for e in store.query()] == [3, 2]

    def test_disabled_store_skips(self, crypto):
        """Disabled audit logging is a silent no-op."""
        store = AuditStore(crypto, None, enabled=False)
        assert asyncio.run(store.log("login")) is None
        assert len(store) == 0

    def test_user_defaults_to_local_account(self, memory_store, monkeypatch):
        """Without an explicit user the local account is recorded."""
        monkeypatch.setenv("USER", "carol")
        entry = asyncio.run(memory_store.log("login"))
        assert entry.user == "carol"

    def test_explicit_user(self, memory_store):
        """Explicit user wins."""
        entry = asyncio.run(memory_store.log("failed_auth", {}, user="mallory"))
        assert entry.user == "mallory"
        assert entry.severity == LogSeverity.WARNING

    def test_lazy_key_initialization(self):
        """First append creates the key."""
        crypto = CryptoService()
        store = AuditStore(crypto, None)
        asyncio.run(store.log("login"))
        assert crypto.has_key


class TestPersistence:
    """Write-through and restore."""

    def test_entry_is_on_disk_after_log(self, crypto, disk_store, tmp_path):
        """A second store with the same key sees every acknowledged entry."""
        asyncio.run(disk_store.log("command_executed", {"command_id": "c-1"}))

        blob_path = tmp_path / "storage" / AUDIT_BLOB_NAME
        assert blob_path.exists()
        assert b"c-1" not in blob_path.read_bytes()

        restored = AuditStore(crypto, tmp_path / "storage")
        assert asyncio.run(restored.initialize()) == 1
        assert restored.query()[0].details == {"command_id": "c-1"}

    def test_restore_with_wrong_key_is_fatal(self, disk_store, tmp_path):
        """An undecryptable trail stops initialization."""
        asyncio.run(disk_store.log("login"))

        other = CryptoService()
        store = AuditStore(other, tmp_path / "storage")
        with pytest.raises(AuthenticationFailure):
            asyncio.run(store.initialize())

    def test_truncated_blob_is_fatal(self, crypto, tmp_path):
        """A blob too short to decrypt stops initialization."""
        storage = tmp_path / "storage"
        storage.mkdir()
        (storage / AUDIT_BLOB_NAME).write_bytes(b"short")

        with pytest.raises(MalformedCiphertext):
            asyncio.run(AuditStore(crypto, storage).initialize())

    def test_restore_failure_blocks_logging(self, disk_store, tmp_path):
        """A store that failed to restore does not overwrite the old blob."""
        asyncio.run(disk_store.log("login"))
        blob_path = tmp_path / "storage" / AUDIT_BLOB_NAME
        original = blob_path.read_bytes()

        store = AuditStore(CryptoService(), tmp_path / "storage")
        with pytest.raises(AuthenticationFailure):
            asyncio.run(store.log("login"))
        assert blob_path.read_bytes() == original

    def test_storage_failure_propagates(self, crypto, tmp_path):
        """Disk failure raises, and the entry stays in memory."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        store = AuditStore(crypto, blocker)

        with pytest.raises(StorageError):
            asyncio.run(store.log("login"))
        assert len(store) == 1

    def test_flush(self, crypto, disk_store, tmp_path):
        """flush() writes the current log."""

        async def scenario():
            await disk_store.initialize()
            await disk_store.flush()

        asyncio.run(scenario())
        assert (tmp_path / "storage" / AUDIT_BLOB_NAME).exists()


class TestQueryAndExport:
    """Read paths."""

    @pytest.fixture
    def populated(self, memory_store):
        async def scenario():
            await memory_store.log("login", {"n": 1}, user="alice")
            await memory_store.log("failed_auth", {"n": 2}, user="mallory")
            await memory_store.log("login", {"n": 3}, user="bob")
            await memory_store.log("heartbeat", {"note": 'said "hi"'}, user=None)

        asyncio.run(scenario())
        return memory_store

    def test_newest_first(self, populated):
        """Entries come back in reverse insertion order."""
        assert populated.query()[0].event_type == "heartbeat"

    def test_filter_and_limit(self, populated):
        """Exact event type filter, then limit."""
        logins = populated.query(event_type="login")
        assert [e.details["n"] for e in logins] == [3, 1]
        assert len(populated.query(limit=2)) == 2
        assert populated.query(event_type="nope") == []

    def test_json_export(self, populated):
        """JSON export is an array of every entry."""
        data = json.loads(populated.export("json"))
        assert len(data) == 4
        assert data[1]["severity"] == "Info"
        assert data[2]["severity"] == "Warning"

    def test_csv_export(self, populated):
        """CSV has the fixed header, quoted fields and doubled quotes."""
        text = populated.export("CSV").decode()
        lines = text.splitlines()
        assert lines[0] == '"Timestamp","Event Type","User","Severity","Source","Details"'
        assert '"{""note"":' in lines[1]

        rows = list(csv.reader(io.StringIO(text)))
        assert len(rows) == 5
        assert rows[2][1:4] == ["login", "bob", "Info"]
        assert json.loads(rows[1][5]) == {"note": 'said "hi"'}

    def test_csv_unknown_user(self, crypto, monkeypatch):
        """Entries without a user export as Unknown."""
        monkeypatch.delenv("USER", raising=False)
        monkeypatch.delenv("USERNAME", raising=False)
        store = AuditStore(crypto, None)
        asyncio.run(store.log("login"))
        rows = list(csv.reader(io.StringIO(store.export("csv").decode())))
        assert rows[1][2] == "Unknown"

    def test_unsupported_format(self, populated):
        """Unknown formats are rejected."""
        with pytest.raises(UnsupportedExportFormat):
            populated.export("xml")


class TestClear:
    def test_clear_erases_blob(self, disk_store, tmp_path):
        """clear() empties memory and removes the blob."""

        async def scenario():
            await disk_store.log("login")
            await disk_store.log("logout")
            return await disk_store.clear()

        assert asyncio.run(scenario()) == 2
        assert len(disk_store) == 0
        assert not (tmp_path / "storage" / AUDIT_BLOB_NAME).exists()

    def test_erase_runs_outside_lock(self, crypto, disk_store, tmp_path):
        """The lock is free while the detached blob is being overwritten."""
        observed = {}
        real_erase = crypto.secure_erase

        async def watching_erase(path):
            observed["locked"] = disk_store._lock.locked()
            observed["name"] = path.name
            await real_erase(path)

        crypto.secure_erase = watching_erase

        async def scenario():
            await disk_store.log("login")
            await disk_store.clear()
            await disk_store.log("logout")

        asyncio.run(scenario())
        storage = tmp_path / "storage"
        assert observed == {"locked": False, "name": AUDIT_BLOB_NAME + ".erasing"}
        assert sorted(p.name for p in storage.iterdir()) == [AUDIT_BLOB_NAME]
        restored = AuditStore(crypto, storage)
        assert asyncio.run(restored.initialize()) == 1

    def test_stats(self, disk_store):
        """Stats report counts and storage."""
        asyncio.run(disk_store.log("command_executed"))
        stats = disk_store.get_stats()
        assert stats["total_entries"] == 1
        assert stats["max_entries"] == 10000
        assert stats["severity_breakdown"] == {"Security": 1}
        assert stats["storage_size_bytes"] > 0
        assert stats["encrypted_files"] == 1
