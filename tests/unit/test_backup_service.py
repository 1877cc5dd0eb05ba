"""
Unit tests for the snapshot engine.

Tests cover:
- Snapshot creation and the restore round trip
- Version and payload checks on restore
- Archive writing, validation, listing and retention cleanup
- Incremental archives
"""

import asyncio
import json
import os
import zipfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from backup_service import BackupService, SnapshotSelection
from errors import ArchiveIOError, DeserializationError, NotFoundError, ValidationError
from models import (
    AuditLog,
    Client,
    Guest,
    GuestUpgradeRequest,
    Investment,
    Notification,
    Role,
    SystemConfig,
    UserAccount,
)
from schemas import Snapshot, SnapshotType

from tests.conftest import FIXED_NOW

NAIVE_NOW = FIXED_NOW.replace(tzinfo=None)


def _set_mtime(path: Path, when: datetime) -> None:
    stamp = when.timestamp()
    os.utime(path, (stamp, stamp))


def _comparable(payload: bytes) -> dict:
    return Snapshot.model_validate_json(payload).model_dump(exclude={"created_at"})


async def _count(session, model) -> int:
    result = await session.execute(select(func.count(model.id)))
    return result.scalar()


@pytest.fixture
async def populated(db, accounts):
    """A small but complete back office: every collection has rows."""
    admin = await accounts.create(Role.ADMIN, email="admin@example.com")
    employee = await accounts.employee(email="advisor@example.com")
    await accounts.create(Role.GUEST, email="guest@example.com")
    client_account = await accounts.create(Role.CLIENT, email="client@example.com", employee=employee)

    result = await db.execute(select(Client).filter(Client.account_id == client_account.id))
    client = result.scalars().one()
    db.add(Investment(
        investment_id="INV-0001",
        name="Apple Inc.",
        investment_type="STOCK",
        ticker_symbol="AAPL",
        shares=Decimal("10.5"),
        purchase_price_per_share=Decimal("150.25"),
        current_price_per_share=Decimal("171.10"),
        amount=Decimal("1577.63"),
        current_value=Decimal("1796.55"),
        status="ACTIVE",
        client_id=client.id,
        created_by_id=employee.id,
    ))
    db.add(SystemConfig(config_key="system.main", config_value="on", backup_retention_days=14))
    db.add(AuditLog(user_id=admin.id, user_email=admin.email, action="CREATE_USER", entity_type="USER",
                    entity_id=client_account.id, timestamp=NAIVE_NOW - timedelta(days=2)))
    await db.commit()
    return admin


class TestSnapshotCreation:
    """Tests for create_snapshot."""

    @pytest.mark.asyncio
    async def test_full_snapshot_has_every_collection(self, db, backups, populated):
        payload = await backups.create_full_backup(db)

        document = json.loads(payload)
        assert document["version"] == "1.0"
        assert document["type"] == "FULL"
        assert document["createdAt"].startswith("2026-03-14T15:09:26")
        snapshot = Snapshot.model_validate_json(payload)
        assert snapshot.counts() == {
            "accounts": 4, "clients": 1, "employees": 1, "admins": 1,
            "guests": 1, "investments": 1, "configs": 1, "audit_logs": 1,
        }

    @pytest.mark.asyncio
    async def test_accounts_carry_permission_names(self, db, backups, populated):
        snapshot = Snapshot.model_validate_json(await backups.create_full_backup(db))

        guest = next(a for a in snapshot.accounts if a.email == "guest@example.com")
        assert "REQUEST_CLIENT_ACCOUNT" in guest.permissions
        assert list(guest.permissions) == sorted(guest.permissions)

    @pytest.mark.asyncio
    async def test_partial_snapshot_only_selected_collections(self, db, backups, populated):
        payload = await backups.create_partial_backup(db, include_users=False, include_investments=True,
                                                      include_configs=True)

        snapshot = Snapshot.model_validate_json(payload)
        assert snapshot.type == SnapshotType.PARTIAL
        assert snapshot.accounts == ()
        assert len(snapshot.investments) == 1
        assert len(snapshot.configs) == 1

    @pytest.mark.asyncio
    async def test_snapshot_does_not_mutate_storage(self, db, session_factory, backups, populated):
        before = await _count(db, UserAccount)
        await backups.create_full_backup(db)

        async with session_factory() as fresh:
            assert await _count(fresh, UserAccount) == before

    def test_unknown_collection_rejected(self):
        with pytest.raises(ValidationError):
            SnapshotSelection(SnapshotType.PARTIAL, frozenset({"ledgers"}))


class TestRestore:
    """Tests for restore_snapshot."""

    @pytest.mark.asyncio
    async def test_round_trip_reproduces_snapshot(self, db, session_factory, backups, accounts, populated):
        original = await backups.create_full_backup(db)

        # Diverge from the snapshot
        await accounts.create(Role.GUEST, email="late@example.com")
        db.add(Notification(user_id=populated.id, title="t", message="m", notification_type="general"))
        await db.commit()

        counts = await backups.restore_snapshot(db, original, actor=populated)
        assert counts["accounts"] == 4

        async with session_factory() as fresh:
            restored = await backups.create_full_backup(fresh)
            assert _comparable(restored) == _comparable(original)
            assert await _count(fresh, Notification) == 0

    @pytest.mark.asyncio
    async def test_restore_reattaches_client_to_employee(self, db, session_factory, backups, populated):
        original = await backups.create_full_backup(db)

        await backups.restore_snapshot(db, original, actor=populated)

        async with session_factory() as fresh:
            result = await fresh.execute(select(Client))
            client = result.scalars().one()
            assert client.assigned_employee_id is not None

    @pytest.mark.asyncio
    async def test_restore_removes_upgrade_requests(self, db, session_factory, backups, populated):
        original = await backups.create_full_backup(db)
        guest = (await db.execute(select(Guest))).scalars().one()
        db.add(GuestUpgradeRequest(account_id=guest.account_id, additional_info={}))
        await db.commit()

        await backups.restore_snapshot(db, original, actor=populated)

        async with session_factory() as fresh:
            assert await _count(fresh, GuestUpgradeRequest) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("version", ["2.0", "1.0.0", ""])
    async def test_unsupported_version_rejected_without_changes(self, db, session_factory, backups, populated, version):
        document = json.loads(await backups.create_full_backup(db))
        document["version"] = version

        with pytest.raises(DeserializationError):
            await backups.restore_snapshot(db, json.dumps(document).encode(), actor=populated)

        async with session_factory() as fresh:
            assert await _count(fresh, UserAccount) == 4

    @pytest.mark.asyncio
    async def test_missing_version_rejected(self, db, backups, populated):
        document = json.loads(await backups.create_full_backup(db))
        del document["version"]

        with pytest.raises(DeserializationError):
            await backups.restore_snapshot(db, json.dumps(document).encode(), actor=populated)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [b"", b"not json", b"[1, 2, 3]", b'{"version": "1.0", "type": "FULL"}'])
    async def test_malformed_payload_rejected(self, db, backups, populated, payload):
        with pytest.raises(DeserializationError):
            await backups.restore_snapshot(db, payload, actor=populated)

    @pytest.mark.asyncio
    async def test_partial_snapshot_cannot_be_restored(self, db, session_factory, backups, populated):
        payload = await backups.create_partial_backup(db, True, False, False)

        with pytest.raises(ValidationError):
            await backups.restore_snapshot(db, payload, actor=populated)

        async with session_factory() as fresh:
            assert await _count(fresh, Investment) == 1

    @pytest.mark.asyncio
    async def test_failed_insert_rolls_back_everything(self, db, session_factory, backups, populated):
        document = json.loads(await backups.create_full_backup(db))
        duplicate = dict(document["accounts"][0], id=999)
        document["accounts"].append(duplicate)

        with pytest.raises(IntegrityError):
            await backups.restore_snapshot(db, json.dumps(document).encode(), actor=populated)

        async with session_factory() as fresh:
            assert await _count(fresh, UserAccount) == 4
            assert await _count(fresh, Investment) == 1
            assert await _count(fresh, AuditLog) == 1

    def test_validate_snapshot(self, backups):
        assert backups.validate_snapshot(b'{"version": "9"}') is False
        assert backups.validate_snapshot(b"") is False


class TestArchives:
    """Tests for archive writing, validation and listing."""

    def test_write_creates_directory_and_both_entries(self, backups, backup_dir):
        path = backups.write_snapshot_to_archive(b'{"version": "1.0"}', SnapshotType.FULL)

        assert path == backup_dir / "backup-20260314-150926.zip"
        with zipfile.ZipFile(path) as zf:
            assert set(zf.namelist()) == {"backup.json", "metadata.json"}
            metadata = json.loads(zf.read("metadata.json"))
        assert metadata["version"] == "1.0"
        assert metadata["type"] == "FULL"
        assert metadata["system"] == "DD Finance Test"

    def test_same_second_writes_do_not_collide(self, backups):
        first = backups.write_snapshot_to_archive(b"{}")
        second = backups.write_snapshot_to_archive(b"{}")

        assert first != second
        assert second.name == "backup-20260314-150926-1.zip"
        assert first.exists() and second.exists()

    def test_failed_write_leaves_nothing_behind(self, backups, backup_dir, monkeypatch):
        def broken_writestr(self, *args, **kwargs):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(zipfile.ZipFile, "writestr", broken_writestr)

        with pytest.raises(ArchiveIOError):
            backups.write_snapshot_to_archive(b"{}")
        assert list(backup_dir.iterdir()) == []

    def test_validate_archive(self, backups, tmp_path):
        valid = backups.write_snapshot_to_archive(b"{}")
        assert backups.validate_archive(valid) is True
        assert backups.validate_archive(str(valid)) is True

        assert backups.validate_archive(None) is False
        assert backups.validate_archive(tmp_path / "missing.zip") is False
        assert backups.validate_archive(tmp_path) is False

        not_zip = tmp_path / "notes.zip"
        not_zip.write_text("plain text")
        assert backups.validate_archive(not_zip) is False

        payload_only = tmp_path / "payload-only.zip"
        with zipfile.ZipFile(payload_only, "w") as zf:
            zf.writestr("backup.json", "{}")
        assert backups.validate_archive(payload_only) is False

    def test_list_archives_newest_first(self, backup_dir):
        assert BackupService(backup_dir).list_archives() == []

        backup_dir.mkdir()
        for name in ["backup-20260101-000000.zip", "backup-20260301-120000.zip", "backup-20260215-080000.zip"]:
            (backup_dir / name).write_bytes(b"")
        (backup_dir / "readme.txt").write_text("ignored")

        names = [p.name for p in BackupService(backup_dir).list_archives()]
        assert names == ["backup-20260301-120000.zip", "backup-20260215-080000.zip", "backup-20260101-000000.zip"]

    def test_same_second_archives_listed_in_write_order(self, backups):
        first = backups.write_snapshot_to_archive(b"{}")
        second = backups.write_snapshot_to_archive(b"{}")
        third = backups.write_snapshot_to_archive(b"{}")

        assert [p.name for p in backups.list_archives()] == [third.name, second.name, first.name]
        assert backups.list_archives()[0].name == "backup-20260314-150926-2.zip"

    def test_collision_counter_compared_numerically(self, backup_dir):
        backup_dir.mkdir()
        for name in ["backup-20260314-150926-2.zip", "backup-20260314-150926-10.zip", "backup-20260314-150926.zip"]:
            (backup_dir / name).write_bytes(b"")

        names = [p.name for p in BackupService(backup_dir).list_archives()]

        assert names == ["backup-20260314-150926-10.zip", "backup-20260314-150926-2.zip", "backup-20260314-150926.zip"]

    def test_full_and_incremental_in_same_second_ordered_by_write_time(self, backup_dir):
        backup_dir.mkdir()
        incremental = backup_dir / "backup-incremental-20260314-150926.zip"
        full = backup_dir / "backup-20260314-150926.zip"
        incremental.write_bytes(b"")
        full.write_bytes(b"")
        _set_mtime(incremental, FIXED_NOW - timedelta(seconds=30))
        _set_mtime(full, FIXED_NOW)

        assert BackupService(backup_dir).list_archives() == [full, incremental]

    def test_metadata_and_last_timestamp(self, backups):
        assert backups.get_last_backup_timestamp() is None

        path = backups.write_snapshot_to_archive(b"{}")
        metadata = backups.get_archive_metadata(path)

        assert metadata["type"] == "FULL"
        assert metadata["size"] > 0
        assert backups.get_last_backup_timestamp() == "2026-03-14T15:09:26"

    def test_resolve_archive_rejects_foreign_names(self, backups):
        backups.write_snapshot_to_archive(b"{}")

        assert backups.resolve_archive("backup-20260314-150926.zip").exists()
        with pytest.raises(NotFoundError):
            backups.resolve_archive("../../etc/passwd")
        with pytest.raises(NotFoundError):
            backups.resolve_archive("backup-20200101-000000.zip")


class TestCleanup:
    """Tests for retention cleanup."""

    @pytest.fixture
    def aged_archives(self, backup_dir):
        backup_dir.mkdir()
        ages = {"backup-20260101-000000.zip": 40, "backup-20260201-000000.zip": 31, "backup-20260305-000000.zip": 10}
        for name, days in ages.items():
            path = backup_dir / name
            path.write_bytes(b"")
            _set_mtime(path, FIXED_NOW - timedelta(days=days))
        return backup_dir

    def test_deletes_only_archives_older_than_retention(self, backups, aged_archives):
        assert backups.cleanup_old_archives(30) == 2
        assert [p.name for p in aged_archives.iterdir()] == ["backup-20260305-000000.zip"]

    def test_default_retention_from_constructor(self, backup_dir, aged_archives):
        service = BackupService(backup_dir, retention_days=35, clock=lambda: FIXED_NOW)
        assert service.cleanup_old_archives() == 1

    def test_count_excludes_failed_deletions(self, backups, aged_archives, monkeypatch):
        original_unlink = Path.unlink

        def flaky_unlink(self, *args, **kwargs):
            if self.name == "backup-20260101-000000.zip":
                raise PermissionError(13, "Permission denied")
            return original_unlink(self, *args, **kwargs)

        monkeypatch.setattr(Path, "unlink", flaky_unlink)

        assert backups.cleanup_old_archives(30) == 1
        assert (aged_archives / "backup-20260101-000000.zip").exists()

    def test_negative_retention_rejected(self, backups):
        with pytest.raises(ValidationError):
            backups.cleanup_old_archives(-1)


class TestBackupOperations:
    """Tests for perform_backup, perform_restore and incremental archives."""

    @pytest.mark.asyncio
    async def test_backup_then_restore_from_file(self, db, session_factory, backups, accounts, populated):
        path = await backups.perform_backup(db)
        assert backups.validate_archive(path)

        await accounts.create(Role.GUEST, email="after-backup@example.com")
        await backups.perform_restore(db, path, actor=populated)

        async with session_factory() as fresh:
            assert await _count(fresh, UserAccount) == 4

    @pytest.mark.asyncio
    async def test_restore_from_invalid_archive(self, db, backups, populated, tmp_path):
        bogus = tmp_path / "backup-20260101-000000.zip"
        bogus.write_text("nope")

        with pytest.raises(ValidationError):
            await backups.perform_restore(db, bogus, actor=populated)

    @pytest.mark.asyncio
    async def test_restore_from_uploaded_bytes(self, db, session_factory, backups, populated):
        path = await backups.perform_backup(db)

        counts = await backups.restore_from_archive_bytes(db, path.read_bytes(), actor=populated)
        assert counts["investments"] == 1

        with pytest.raises(ValidationError):
            await backups.restore_from_archive_bytes(db, b"garbage", actor=populated)

    @pytest.mark.asyncio
    async def test_incremental_holds_audit_logs_newer_than_last_archive(self, db, backups, populated):
        last = await backups.perform_backup(db)
        reference = FIXED_NOW - timedelta(days=1)
        _set_mtime(last, reference)
        db.add(AuditLog(action="APPROVE_UPGRADE", entity_type="UPGRADE_REQUEST", entity_id=1,
                        timestamp=NAIVE_NOW - timedelta(hours=1)))
        await db.commit()

        path = await backups.perform_incremental_backup(db, last)

        assert path.name == "backup-incremental-20260314-150926.zip"
        with zipfile.ZipFile(path) as zf:
            assert zf.namelist() == ["backup.json"]
            snapshot = Snapshot.model_validate_json(zf.read("backup.json"))
        assert snapshot.type == SnapshotType.INCREMENTAL
        assert snapshot.based_on == last.name
        assert [log.action for log in snapshot.audit_logs] == ["APPROVE_UPGRADE"]
        assert snapshot.accounts == ()

    @pytest.mark.asyncio
    async def test_incremental_falls_back_to_last_day(self, db, backups, populated, tmp_path):
        db.add(AuditLog(action="RECENT", timestamp=NAIVE_NOW - timedelta(hours=3)))
        await db.commit()

        path = await backups.perform_incremental_backup(db, tmp_path / "does-not-exist.zip")

        with zipfile.ZipFile(path) as zf:
            snapshot = Snapshot.model_validate_json(zf.read("backup.json"))
        # populated's CREATE_USER entry is two days old
        assert [log.action for log in snapshot.audit_logs] == ["RECENT"]
        assert snapshot.based_on is None
        assert backups.validate_archive(path) is False

    @pytest.mark.asyncio
    async def test_archive_io_runs_off_the_event_loop(self, db, backups, populated, monkeypatch):
        offloaded = []
        real_to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(func.__name__)
            return await real_to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)

        full = await backups.perform_backup(db)
        await backups.perform_incremental_backup(db, full)
        await backups.perform_restore(db, full, actor=populated)

        assert offloaded == ["write_snapshot_to_archive", "_write_archive", "_read_payload"]

    def test_constructor_does_not_touch_disk(self, tmp_path):
        BackupService(tmp_path / "later")
        assert not (tmp_path / "later").exists()
