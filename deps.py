# deps.py
# Dependency injections for routes: database session, authentication, role checks and services.

import logging
from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

import auth_utils
import crud
from backup_service import BackupService, backup_service
from database import SessionLocal
from models import Role, UserAccount
from upgrade_service import UpgradeRequestService, upgrade_service

log = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


# -----------------------
#  DATABASE DEPENDENCY
# -----------------------
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

SessionDep = Annotated[AsyncSession, Depends(get_db)]


# -----------------------
#  SERVICES
# -----------------------
def get_backup_service() -> BackupService:
    return backup_service

def get_upgrade_service() -> UpgradeRequestService:
    return upgrade_service

BackupServiceDep = Annotated[BackupService, Depends(get_backup_service)]
UpgradeServiceDep = Annotated[UpgradeRequestService, Depends(get_upgrade_service)]


# ------------------------------------------------
#  TOKEN HANDLING (BEARER)
# ------------------------------------------------
async def get_current_user(
    db: SessionDep,
    token: Annotated[Optional[str], Depends(oauth2_scheme)] = None,
) -> UserAccount:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if token is None:
        log.warning("Authentication failed: No token provided.")
        raise credentials_exception

    email = auth_utils.subject_from_token(token)
    if email is None:
        log.warning("Authentication failed: Invalid or expired token.")
        raise credentials_exception

    account = await crud.get_account_by_email(db, email=email)
    if account is None:
        log.warning(f"Authentication failed: Account {email} not found.")
        raise credentials_exception
    if not account.active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive account")

    return account


CurrentUserDep = Annotated[UserAccount, Depends(get_current_user)]


# -----------------------
#  ROLE CHECKS
# -----------------------
def require_role(*roles: Role):
    """Dependency factory admitting only accounts whose role is one of ``roles``."""
    allowed = {role.value for role in roles}

    async def checker(current_user: CurrentUserDep) -> UserAccount:
        if current_user.role not in allowed:
            log.warning(f"Account {current_user.email} ({current_user.role}) denied; requires {sorted(allowed)}")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return current_user

    return checker


get_current_admin_user = require_role(Role.ADMIN)

CurrentAdminUserDep = Annotated[UserAccount, Depends(get_current_admin_user)]
