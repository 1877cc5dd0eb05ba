import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import asyncio
import logging
from typing import Optional

import crud
from auth import auth_router
from auth_utils import hash_password
from backup_service import backup_service
from config import settings
from database import SessionLocal, Base, engine
from errors import (
    ArchiveIOError,
    DependencyError,
    DeserializationError,
    NotFoundError,
    SerializationError,
    ServiceError,
    ValidationError,
)
from models import Admin, Role, UserAccount
from permission_service import permission_service
from routers.admin import admin_router
from routers.guest import router as guest_router
from routers.notifications import router as notifications_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
log = logging.getLogger(__name__)

cleanup_task: Optional[asyncio.Task] = None


async def create_db_and_tables():
    """Creates all database tables defined in models.py."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info("Tables created successfully")

async def test_db_connection() -> bool:
    """Tests the database connection."""
    try:
        async with SessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        log.error(f"Database connection failed: {e}")
        return False
    log.info("Database connection successful!")
    return True

async def create_admin_user():
    """Ensures the default admin account exists with the full permission set."""
    async with SessionLocal() as db:
        await permission_service.ensure_permissions(db)

        email = settings.ADMIN_EMAIL.strip().lower()
        account = await crud.get_account_by_email(db, email)
        if account:
            if account.role != Role.ADMIN.value:
                log.warning(f"Configured admin {email} exists with role {account.role}; leaving it unchanged")
            return

        account = UserAccount(
            email=email,
            hashed_password=hash_password(settings.ADMIN_PASSWORD),
            first_name="Admin",
            last_name="User",
            role=Role.ADMIN.value,
            permissions=await permission_service.get_permission_set(db, Role.ADMIN),
        )
        db.add(account)
        await db.flush()
        db.add(Admin(admin_id=f"ADM-{account.id:06d}", account_id=account.id, super_admin=True))
        await db.commit()
        log.info(f"Default admin account {email} created")

async def run_backup_cleanup(interval_hours: int):
    """Periodically delete archives older than the retention window."""
    while True:
        await asyncio.sleep(interval_hours * 3600)
        try:
            deleted = await asyncio.to_thread(backup_service.cleanup_old_archives)
            log.info(f"Scheduled backup cleanup removed {deleted} archive(s)")
        except ServiceError:
            log.error("Scheduled backup cleanup failed", exc_info=True)


app = FastAPI(title=settings.SYSTEM_NAME)

# --- Error mapping ---
# Validation and not-found errors carry caller-facing detail; everything else
# is logged here and reported as a generic failure.

ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    DependencyError: status.HTTP_502_BAD_GATEWAY,
    ArchiveIOError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    SerializationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    DeserializationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code < 500:
        log.warning(f"{exc.code} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})

    log.error(f"{exc.code} on {request.url.path}: {exc.message} {exc.details}", exc_info=exc)
    message = "Dependency failure" if isinstance(exc, DependencyError) else "Operation failed"
    return JSONResponse(status_code=status_code, content={"detail": message, "code": exc.code})

@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    log.error(f"Database error on {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Operation failed", "code": "DATABASE_ERROR"},
    )


@app.on_event("startup")
async def startup_event():
    global cleanup_task
    try:
        log.info("Initializing application...")
        await create_db_and_tables()
        await test_db_connection()
        await create_admin_user()
    except (SQLAlchemyError, ServiceError, OSError):
        log.error("Startup issue; application will continue in limited mode", exc_info=True)

    if settings.BACKUP_CLEANUP_INTERVAL_HOURS > 0:
        cleanup_task = asyncio.create_task(run_backup_cleanup(settings.BACKUP_CLEANUP_INTERVAL_HOURS))
        log.info(f"Backup cleanup scheduled every {settings.BACKUP_CLEANUP_INTERVAL_HOURS}h")
    log.info("Application ready")

@app.on_event("shutdown")
async def shutdown_event():
    if cleanup_task is not None:
        cleanup_task.cancel()


# --- Routers ---
app.include_router(auth_router, prefix="/auth")
app.include_router(admin_router, prefix="/api/admin")
app.include_router(guest_router)
app.include_router(notifications_router)


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8000)
