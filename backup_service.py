"""
Backup Service - snapshot, archive and restore of the back-office state.

A snapshot is a versioned JSON document holding up to eight collections
(accounts, clients, employees, admins, guests, investments, configs and
audit logs). Snapshots are packaged as zip archives:

    <backup dir>/backup-<yyyyMMdd-HHmmss>.zip              backup.json + metadata.json
    <backup dir>/backup-incremental-<yyyyMMdd-HHmmss>.zip  backup.json only

Invariants:
    - Creating a snapshot never mutates storage
    - Archives are written to a temp file and renamed; a failed write leaves nothing behind
    - Restore accepts only the supported version and only FULL snapshots
    - Restore is one transaction: clear in child-to-parent order, insert in
      parent-to-child order, roll back everything on any failure
    - Snapshot creation and restore are serialised by the maintenance lock
"""

import asyncio
import io
import json
import logging
import os
import re
import tempfile
import zipfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError
from sqlalchemy import delete, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from errors import ArchiveIOError, DeserializationError, NotFoundError, SerializationError, ValidationError
from models import (
    Admin,
    AuditLog,
    Client,
    Employee,
    Guest,
    GuestUpgradeRequest,
    Investment,
    Notification,
    Permission,
    SystemConfig,
    UserAccount,
    user_account_permissions,
)
from schemas import (
    AccountRecord,
    AdminRecord,
    AuditLogRecord,
    ClientRecord,
    EmployeeRecord,
    GuestRecord,
    InvestmentRecord,
    Snapshot,
    SnapshotType,
    SystemConfigRecord,
)

log = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"
PAYLOAD_ENTRY = "backup.json"
METADATA_ENTRY = "metadata.json"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
FULL_PREFIX = "backup"
INCREMENTAL_PREFIX = "backup-incremental"
ARCHIVE_NAME_PATTERN = re.compile(r"^backup-(?:incremental-)?(\d{8}-\d{6})(?:-(\d+))?\.zip$")

# collection name -> (ORM model, snapshot record schema)
COLLECTIONS = {
    "accounts": (UserAccount, AccountRecord),
    "clients": (Client, ClientRecord),
    "employees": (Employee, EmployeeRecord),
    "admins": (Admin, AdminRecord),
    "guests": (Guest, GuestRecord),
    "investments": (Investment, InvestmentRecord),
    "configs": (SystemConfig, SystemConfigRecord),
    "audit_logs": (AuditLog, AuditLogRecord),
}
USER_COLLECTIONS = frozenset({"accounts", "clients", "employees", "admins", "guests"})
DELETION_ORDER = ("audit_logs", "investments", "guests", "admins", "employees", "clients", "accounts", "configs")
INSERTION_ORDER = tuple(reversed(DELETION_ORDER))


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class SnapshotSelection:
    """Which collections a snapshot carries.

    Attributes:
        snapshot_type: FULL, PARTIAL or INCREMENTAL
        collections: Names from COLLECTIONS
        audit_logs_since: Only audit logs strictly newer than this (incremental)
        based_on: Reference to the archive an incremental snapshot follows
    """

    snapshot_type: SnapshotType
    collections: FrozenSet[str]
    audit_logs_since: Optional[datetime] = None
    based_on: Optional[str] = None

    def __post_init__(self) -> None:
        unknown = set(self.collections) - set(COLLECTIONS)
        if unknown:
            raise ValidationError(f"Unknown snapshot collections: {sorted(unknown)}", field_name="collections")

    @classmethod
    def full(cls) -> "SnapshotSelection":
        return cls(SnapshotType.FULL, frozenset(COLLECTIONS))

    @classmethod
    def partial(
        cls,
        include_users: bool = False,
        include_investments: bool = False,
        include_configs: bool = False,
        include_audit_logs: bool = False,
    ) -> "SnapshotSelection":
        collections = set()
        if include_users:
            collections |= USER_COLLECTIONS
        if include_investments:
            collections.add("investments")
        if include_configs:
            collections.add("configs")
        if include_audit_logs:
            collections.add("audit_logs")
        return cls(SnapshotType.PARTIAL, frozenset(collections))

    @classmethod
    def incremental(cls, since: datetime, based_on: Optional[str] = None) -> "SnapshotSelection":
        return cls(
            SnapshotType.INCREMENTAL,
            frozenset({"audit_logs"}),
            audit_logs_since=_to_naive_utc(since),
            based_on=based_on,
        )


class BackupService:
    """Creates, archives, validates, restores and expires snapshots.

    Attributes:
        backup_directory: Where archives live (created on first write)
        retention_days: Default age limit for cleanup_old_archives
        system_name: Written into every archive's metadata entry

    Example:
        >>> service = BackupService("/var/ddfinance/backups", retention_days=30)
        >>> path = await service.perform_backup(db)
        >>> service.validate_archive(path)
        True
    """

    def __init__(
        self,
        backup_directory: Union[str, Path],
        retention_days: int = 30,
        system_name: str = "Due Diligence Finance",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.backup_directory = Path(backup_directory)
        self.retention_days = retention_days
        self.system_name = system_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._maintenance_lock = asyncio.Lock()

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now

    # ==================== SNAPSHOT CREATION ====================

    async def create_snapshot(self, db: AsyncSession, selection: SnapshotSelection) -> bytes:
        """Read the selected collections and return the encoded snapshot."""
        async with self._maintenance_lock:
            snapshot = await self._build_snapshot(db, selection)
        return self._serialize(snapshot)

    async def create_full_backup(self, db: AsyncSession) -> bytes:
        log.info("Creating full system backup")
        return await self.create_snapshot(db, SnapshotSelection.full())

    async def create_partial_backup(
        self,
        db: AsyncSession,
        include_users: bool,
        include_investments: bool,
        include_configs: bool,
    ) -> bytes:
        log.info(
            f"Creating partial backup - Users: {include_users}, "
            f"Investments: {include_investments}, Configs: {include_configs}"
        )
        return await self.create_snapshot(
            db, SnapshotSelection.partial(include_users, include_investments, include_configs)
        )

    async def _build_snapshot(self, db: AsyncSession, selection: SnapshotSelection) -> Snapshot:
        collections: Dict[str, Any] = {}
        for name in INSERTION_ORDER:
            if name in selection.collections:
                collections[name] = await self._read_collection(db, name, selection.audit_logs_since)

        snapshot = Snapshot(
            version=BACKUP_VERSION,
            created_at=_to_naive_utc(self._now()),
            type=selection.snapshot_type,
            based_on=selection.based_on,
            **collections,
        )
        log.info(f"Built {snapshot.type.value} snapshot: {snapshot.counts()}")
        return snapshot

    async def _read_collection(self, db: AsyncSession, name: str, since: Optional[datetime] = None) -> tuple:
        model, record = COLLECTIONS[name]
        stmt = select(model).order_by(model.id)
        if model is UserAccount:
            stmt = stmt.options(selectinload(UserAccount.permissions))
        if model is AuditLog and since is not None:
            stmt = stmt.filter(AuditLog.timestamp > since)

        result = await db.execute(stmt)
        return tuple(record.model_validate(row) for row in result.scalars().all())

    def _serialize(self, snapshot: Snapshot) -> bytes:
        try:
            return snapshot.model_dump_json(by_alias=True, indent=2).encode("utf-8")
        except (PydanticSerializationError, ValueError, TypeError) as e:
            log.error(f"Failed to serialize {snapshot.type.value} snapshot", exc_info=True)
            raise SerializationError("Failed to serialize snapshot") from e

    def _deserialize(self, payload: bytes) -> Snapshot:
        if not payload:
            raise DeserializationError("Snapshot payload is empty")
        try:
            raw = json.loads(payload)
        except ValueError as e:
            raise DeserializationError("Snapshot payload is not valid JSON") from e
        if not isinstance(raw, dict):
            raise DeserializationError("Snapshot payload must be a JSON object")

        version = raw.get("version")
        if not isinstance(version, str) or not version.strip():
            raise DeserializationError("Snapshot version tag is missing or malformed")
        if version != BACKUP_VERSION:
            raise DeserializationError(
                f"Unsupported snapshot version {version!r}; expected {BACKUP_VERSION!r}",
                details={"version": version},
            )

        try:
            return Snapshot.model_validate(raw)
        except PydanticValidationError as e:
            raise DeserializationError(
                "Snapshot payload does not match the expected structure",
                details={"errors": e.error_count()},
            ) from e

    def validate_snapshot(self, payload: bytes) -> bool:
        """True when the payload decodes and carries the supported version."""
        try:
            self._deserialize(payload)
        except DeserializationError as e:
            log.warning(f"Snapshot payload rejected: {e.message}")
            return False
        return True

    # ==================== ARCHIVES ====================

    def write_snapshot_to_archive(self, payload: bytes, snapshot_type: SnapshotType = SnapshotType.FULL) -> Path:
        """Package ``payload`` with a metadata entry as backup-<timestamp>.zip."""
        metadata = {
            "version": BACKUP_VERSION,
            "created": _to_naive_utc(self._now()).isoformat(),
            "type": snapshot_type.value,
            "system": self.system_name,
        }
        entries = {
            PAYLOAD_ENTRY: payload,
            METADATA_ENTRY: json.dumps(metadata, indent=2).encode("utf-8"),
        }
        return self._write_archive(entries, FULL_PREFIX)

    def _write_archive(self, entries: Dict[str, bytes], prefix: str) -> Path:
        try:
            self.backup_directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log.error(f"Cannot create backup directory {self.backup_directory}", exc_info=True)
            raise ArchiveIOError("Could not create backup directory") from e

        target = self._next_archive_path(prefix)
        tmp_path: Optional[Path] = None
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=".backup-", suffix=".zip.tmp", dir=self.backup_directory)
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "wb") as fh:
                with zipfile.ZipFile(fh, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                    for name, data in entries.items():
                        zf.writestr(name, data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, target)
        except OSError as e:
            log.error(f"Failed to write backup archive {target}", exc_info=True)
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise ArchiveIOError("Could not write backup archive") from e

        log.info(f"Backup archive created: {target}")
        return target

    def _next_archive_path(self, prefix: str) -> Path:
        stamp = self._now().strftime(TIMESTAMP_FORMAT)
        candidate = self.backup_directory / f"{prefix}-{stamp}.zip"
        counter = 1
        while candidate.exists():
            candidate = self.backup_directory / f"{prefix}-{stamp}-{counter}.zip"
            counter += 1
        return candidate

    def validate_archive(self, path: Union[str, Path, None]) -> bool:
        """True only for a readable zip holding both backup.json and metadata.json.

        Never raises; unreadable paths are reported as invalid.
        """
        if not path:
            return False
        path = Path(path)
        try:
            if not path.is_file():
                return False
            with zipfile.ZipFile(path) as zf:
                names = set(zf.namelist())
        except (OSError, zipfile.BadZipFile) as e:
            log.warning(f"Backup archive {path} is unreadable: {e}")
            return False
        return {PAYLOAD_ENTRY, METADATA_ENTRY} <= names

    def list_archives(self) -> List[Path]:
        """Archive files, newest first by the timestamp in their name."""
        if not self.backup_directory.is_dir():
            return []
        try:
            archives = [p for p in self.backup_directory.iterdir() if p.is_file() and p.suffix == ".zip"]
        except OSError:
            log.error(f"Failed to list backups in {self.backup_directory}", exc_info=True)
            return []
        return sorted(archives, key=self._archive_sort_key, reverse=True)

    @staticmethod
    def _archive_sort_key(path: Path):
        # name stamp, then same-second collision counter, then write time
        match = ARCHIVE_NAME_PATTERN.match(path.name)
        stamp = match.group(1) if match else ""
        counter = int(match.group(2)) if match and match.group(2) else 0
        try:
            modified = path.stat().st_mtime
        except OSError:
            modified = 0.0
        return (stamp, counter, modified)

    def resolve_archive(self, name: str) -> Path:
        """Map an archive file name to its path inside the backup directory."""
        if not ARCHIVE_NAME_PATTERN.match(name or ""):
            raise NotFoundError(f"Backup {name!r} not found", entity="backup", entity_id=name)
        path = self.backup_directory / name
        if not path.is_file():
            raise NotFoundError(f"Backup {name!r} not found", entity="backup", entity_id=name)
        return path

    def cleanup_old_archives(self, retention_days: Optional[int] = None) -> int:
        """Delete archives last modified before now - retention_days.

        Returns the number of files actually deleted; per-file failures are
        logged and skipped.
        """
        days = self.retention_days if retention_days is None else retention_days
        if days < 0:
            raise ValidationError("Retention days must not be negative", field_name="retention_days")
        log.info(f"Cleaning up backups older than {days} days")

        cutoff = (self._now() - timedelta(days=days)).timestamp()
        deleted = 0
        for path in self.list_archives():
            try:
                modified = path.stat().st_mtime
            except OSError as e:
                log.warning(f"Cannot stat backup {path}: {e}")
                continue
            if modified >= cutoff:
                continue
            try:
                path.unlink()
            except OSError:
                log.error(f"Failed to delete backup: {path}", exc_info=True)
                continue
            deleted += 1
            log.info(f"Deleted old backup: {path}")
        return deleted

    def get_archive_metadata(self, path: Union[str, Path]) -> Dict[str, Any]:
        path = Path(path)
        metadata: Dict[str, Any] = {"path": str(path)}
        try:
            stat = path.stat()
            metadata["size"] = stat.st_size
            metadata["created"] = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat()
            with zipfile.ZipFile(path) as zf:
                if METADATA_ENTRY in zf.namelist():
                    metadata.update(json.loads(zf.read(METADATA_ENTRY)))
        except (OSError, zipfile.BadZipFile, ValueError):
            log.error(f"Failed to get backup metadata for {path}", exc_info=True)

        metadata.setdefault("version", BACKUP_VERSION)
        metadata.setdefault("type", "UNKNOWN")
        return metadata

    def get_last_backup_timestamp(self) -> Optional[str]:
        """ISO timestamp encoded in the newest archive's name, None without archives."""
        archives = self.list_archives()
        if not archives:
            return None
        match = ARCHIVE_NAME_PATTERN.match(archives[0].name)
        if not match:
            log.error(f"Failed to parse timestamp from backup filename: {archives[0].name}")
            return ""
        return datetime.strptime(match.group(1), TIMESTAMP_FORMAT).isoformat()

    # ==================== BACKUP OPERATIONS ====================

    async def perform_backup(self, db: AsyncSession) -> Path:
        """Full snapshot written to a new archive."""
        log.info("Performing system backup")
        async with self._maintenance_lock:
            snapshot = await self._build_snapshot(db, SnapshotSelection.full())
        return await asyncio.to_thread(self.write_snapshot_to_archive, self._serialize(snapshot), SnapshotType.FULL)

    async def perform_incremental_backup(self, db: AsyncSession, last_archive_path: Union[str, Path, None]) -> Path:
        """Audit logs newer than ``last_archive_path``'s mtime, as a payload-only archive.

        Only audit logs are change-tracked; other collections are not part of
        an incremental archive.
        """
        log.info(f"Performing incremental backup based on: {last_archive_path}")
        since, from_archive = self._last_backup_time(last_archive_path)
        # basedOn names only an archive that exists; never a server path
        based_on = Path(last_archive_path).name if from_archive else None
        selection = SnapshotSelection.incremental(since, based_on=based_on)

        async with self._maintenance_lock:
            snapshot = await self._build_snapshot(db, selection)
        return await asyncio.to_thread(
            self._write_archive, {PAYLOAD_ENTRY: self._serialize(snapshot)}, INCREMENTAL_PREFIX
        )

    def _last_backup_time(self, backup_path: Union[str, Path, None]) -> Tuple[datetime, bool]:
        """Reference time for an increment and whether it came from ``backup_path``."""
        try:
            modified = Path(backup_path).stat().st_mtime
            return datetime.fromtimestamp(modified, tz=timezone.utc), True
        except (OSError, TypeError, ValueError):
            fallback = self._now() - timedelta(days=1)
            log.warning(f"Cannot read {backup_path}; using {fallback.isoformat()} as reference time")
            return fallback, False

    # ==================== RESTORE ====================

    async def perform_restore(self, db: AsyncSession, backup_path: Union[str, Path], actor: UserAccount) -> Dict[str, int]:
        """Validate an archive on disk and restore its payload."""
        log.info(f"Performing system restore from: {backup_path}")
        payload = await asyncio.to_thread(self._read_payload, backup_path)
        return await self.restore_snapshot(db, payload, actor)

    def _read_payload(self, backup_path: Union[str, Path]) -> bytes:
        if not self.validate_archive(backup_path):
            raise ValidationError(f"Invalid backup file: {Path(backup_path).name}", field_name="backup")
        try:
            with zipfile.ZipFile(backup_path) as zf:
                return zf.read(PAYLOAD_ENTRY)
        except (OSError, zipfile.BadZipFile) as e:
            log.error(f"Failed to read backup archive {backup_path}", exc_info=True)
            raise ArchiveIOError("Could not read backup archive") from e

    async def restore_from_archive_bytes(self, db: AsyncSession, data: bytes, actor: UserAccount) -> Dict[str, int]:
        """Restore from an uploaded archive held in memory."""
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                if not {PAYLOAD_ENTRY, METADATA_ENTRY} <= set(zf.namelist()):
                    raise ValidationError("Uploaded file is not a backup archive", field_name="file")
                payload = zf.read(PAYLOAD_ENTRY)
        except zipfile.BadZipFile as e:
            raise ValidationError("Uploaded file is not a zip archive", field_name="file") from e
        return await self.restore_snapshot(db, payload, actor)

    async def restore_snapshot(self, db: AsyncSession, payload: bytes, actor: UserAccount) -> Dict[str, int]:
        """Replace every collection with the snapshot's contents.

        Destructive: rows outside the snapshot that reference accounts
        (upgrade requests, notifications) are removed too. Returns per
        collection counts of restored rows.
        """
        snapshot = self._deserialize(payload)
        if snapshot.type != SnapshotType.FULL:
            raise ValidationError(
                f"Only FULL snapshots can be restored, got {snapshot.type.value}", field_name="type"
            )

        actor_email = actor.email
        async with self._maintenance_lock:
            log.warning(f"Restore requested by {actor_email}: clearing existing data (snapshot of {snapshot.created_at.isoformat()})")
            try:
                await self._clear_all_data(db)
                await self._insert_snapshot(db, snapshot)
                await self._resync_sequences(db)
                await db.commit()
            except Exception:
                await db.rollback()
                log.error("System restore failed; all changes rolled back", exc_info=True)
                raise

        log.info(f"System restore completed by {actor_email}: {snapshot.counts()}")
        return snapshot.counts()

    async def _clear_all_data(self, db: AsyncSession) -> None:
        # Rows outside the snapshot that point at accounts
        await db.execute(delete(Notification).execution_options(synchronize_session=False))
        await db.execute(delete(GuestUpgradeRequest).execution_options(synchronize_session=False))
        await db.execute(delete(user_account_permissions))
        # Clients reference employees, which are cleared first
        await db.execute(
            update(Client).values(assigned_employee_id=None).execution_options(synchronize_session=False)
        )
        for name in DELETION_ORDER:
            model, _ = COLLECTIONS[name]
            await db.execute(delete(model).execution_options(synchronize_session=False))
        db.expunge_all()

    async def _insert_snapshot(self, db: AsyncSession, snapshot: Snapshot) -> None:
        result = await db.execute(select(Permission))
        catalogue = {perm.permission_type: perm for perm in result.scalars().all()}
        assignments = []

        for name in INSERTION_ORDER:
            model, _ = COLLECTIONS[name]
            rows = []
            for record in getattr(snapshot, name):
                values = record.model_dump(exclude={"permissions"})
                if name == "clients":
                    employee_id = values.pop("assigned_employee_id")
                    row = model(**values)
                    if employee_id is not None:
                        assignments.append((row, employee_id))
                elif name == "accounts":
                    row = model(**values)
                    unknown = [perm for perm in record.permissions if perm not in catalogue]
                    if unknown:
                        log.warning(f"Account {record.id}: dropping unknown permissions {unknown}")
                    row.permissions = [catalogue[perm] for perm in record.permissions if perm in catalogue]
                else:
                    row = model(**values)
                rows.append(row)

            db.add_all(rows)
            await db.flush()

            if name == "employees":
                for client, employee_id in assignments:
                    client.assigned_employee_id = employee_id
                await db.flush()
            log.info(f"Restored {len(rows)} {name}")

    async def _resync_sequences(self, db: AsyncSession) -> None:
        """Move PostgreSQL id sequences past the restored ids."""
        if db.get_bind().dialect.name != "postgresql":
            return
        for name in INSERTION_ORDER:
            table = COLLECTIONS[name][0].__tablename__
            await db.execute(text(
                f"SELECT setval(pg_get_serial_sequence('{table}', 'id'), "
                f"COALESCE((SELECT MAX(id) FROM {table}), 0) + 1, false)"
            ))


def build_backup_service() -> BackupService:
    from config import settings

    return BackupService(
        settings.BACKUP_DIRECTORY,
        retention_days=settings.BACKUP_RETENTION_DAYS,
        system_name=settings.SYSTEM_NAME,
    )


backup_service = build_backup_service()
