from datetime import datetime, timezone
from typing import List, Optional
import asyncio
import logging

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse

from deps import BackupServiceDep, CurrentAdminUserDep, SessionDep, UpgradeServiceDep, get_current_admin_user
from models import UpgradeRequestStatus
from schemas import BackupArchive, BackupCleanupResult, RejectUpgradeRequest, RestoreResult, UpgradeRequest

log = logging.getLogger(__name__)

# Use the callable `get_current_admin_user` in Depends to avoid wrapping an Annotated type
admin_router = APIRouter(tags=["admin"], dependencies=[Depends(get_current_admin_user)])


def _archive_out(path) -> BackupArchive:
    stat = path.stat()
    return BackupArchive(
        name=path.name,
        path=str(path),
        size=stat.st_size,
        modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    )


# ==================== UPGRADE REQUESTS ====================

@admin_router.get("/upgrade-requests", response_model=List[UpgradeRequest])
async def list_upgrade_requests(
    db_session: SessionDep,
    upgrades: UpgradeServiceDep,
    request_status: Optional[UpgradeRequestStatus] = Query(default=None, alias="status"),
    skip: int = 0,
    limit: int = 100,
):
    return await upgrades.list_requests(db_session, status=request_status, skip=skip, limit=limit)

@admin_router.post("/upgrade-requests/{request_id}/approve", response_model=UpgradeRequest)
async def approve_upgrade_request(
    request_id: int,
    db_session: SessionDep,
    upgrades: UpgradeServiceDep,
    current_admin: CurrentAdminUserDep,
):
    return await upgrades.approve_request(db_session, request_id, actor=current_admin)

@admin_router.post("/upgrade-requests/{request_id}/reject", response_model=UpgradeRequest)
async def reject_upgrade_request(
    request_id: int,
    payload: RejectUpgradeRequest,
    db_session: SessionDep,
    upgrades: UpgradeServiceDep,
    current_admin: CurrentAdminUserDep,
):
    return await upgrades.reject_request(db_session, request_id, payload.reason, actor=current_admin)


# ==================== BACKUPS ====================

@admin_router.post("/backups", response_model=BackupArchive, status_code=status.HTTP_201_CREATED)
async def create_backup(db_session: SessionDep, backups: BackupServiceDep, current_admin: CurrentAdminUserDep):
    log.info(f"Full backup requested by {current_admin.email}")
    path = await backups.perform_backup(db_session)
    return _archive_out(path)

@admin_router.post("/backups/incremental", response_model=BackupArchive, status_code=status.HTTP_201_CREATED)
async def create_incremental_backup(db_session: SessionDep, backups: BackupServiceDep, current_admin: CurrentAdminUserDep):
    archives = await asyncio.to_thread(backups.list_archives)
    last_archive = archives[0] if archives else None
    log.info(f"Incremental backup requested by {current_admin.email} (based on {last_archive})")
    path = await backups.perform_incremental_backup(db_session, last_archive)
    return _archive_out(path)

@admin_router.get("/backups", response_model=List[BackupArchive])
async def list_backups(backups: BackupServiceDep):
    archives = await asyncio.to_thread(backups.list_archives)
    return [_archive_out(path) for path in archives]

@admin_router.delete("/backups/cleanup", response_model=BackupCleanupResult)
async def cleanup_backups(
    backups: BackupServiceDep,
    current_admin: CurrentAdminUserDep,
    retention_days: Optional[int] = Query(default=None, ge=0),
):
    days = backups.retention_days if retention_days is None else retention_days
    deleted = await asyncio.to_thread(backups.cleanup_old_archives, days)
    log.info(f"Backup cleanup by {current_admin.email}: {deleted} archive(s) removed")
    return BackupCleanupResult(retention_days=days, deleted=deleted)

@admin_router.post("/backups/restore", response_model=RestoreResult)
async def restore_uploaded_backup(
    db_session: SessionDep,
    backups: BackupServiceDep,
    current_admin: CurrentAdminUserDep,
    file: UploadFile = File(...),
):
    data = await file.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")
    counts = await backups.restore_from_archive_bytes(db_session, data, actor=current_admin)
    return RestoreResult(restored=True, source=file.filename or "upload", counts=counts)

@admin_router.get("/backups/{name}")
async def get_backup_metadata(name: str, backups: BackupServiceDep):
    path = backups.resolve_archive(name)
    return await asyncio.to_thread(backups.get_archive_metadata, path)

@admin_router.get("/backups/{name}/download")
async def download_backup(name: str, backups: BackupServiceDep):
    path = backups.resolve_archive(name)
    return FileResponse(path, media_type="application/zip", filename=path.name)

@admin_router.post("/backups/{name}/restore", response_model=RestoreResult)
async def restore_backup(name: str, db_session: SessionDep, backups: BackupServiceDep, current_admin: CurrentAdminUserDep):
    path = backups.resolve_archive(name)
    counts = await backups.perform_restore(db_session, path, actor=current_admin)
    return RestoreResult(restored=True, source=path.name, counts=counts)
