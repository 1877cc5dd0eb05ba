# crud.py
# Query helpers shared by the services and routers.

from typing import List, Optional

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import models

# ===== ACCOUNTS =====

async def get_account(db: AsyncSession, account_id: int, with_permissions: bool = False) -> Optional[models.UserAccount]:
    stmt = select(models.UserAccount).filter(models.UserAccount.id == account_id)
    if with_permissions:
        stmt = stmt.options(selectinload(models.UserAccount.permissions))
    result = await db.execute(stmt)
    return result.scalars().first()

async def get_account_by_email(db: AsyncSession, email: str) -> Optional[models.UserAccount]:
    result = await db.execute(select(models.UserAccount).filter(models.UserAccount.email == email))
    return result.scalars().first()

async def get_accounts_by_role(db: AsyncSession, role: models.Role) -> List[models.UserAccount]:
    result = await db.execute(
        select(models.UserAccount)
        .filter(models.UserAccount.role == role.value, models.UserAccount.active.is_(True))
        .order_by(models.UserAccount.id)
    )
    return list(result.scalars().all())

# ===== ROLE RECORDS =====

async def get_guest_by_account(db: AsyncSession, account_id: int) -> Optional[models.Guest]:
    result = await db.execute(select(models.Guest).filter(models.Guest.account_id == account_id))
    return result.scalars().first()

async def get_client_by_account(db: AsyncSession, account_id: int) -> Optional[models.Client]:
    result = await db.execute(select(models.Client).filter(models.Client.account_id == account_id))
    return result.scalars().first()

async def get_least_loaded_employee(db: AsyncSession) -> Optional[models.Employee]:
    """Employee holding the fewest clients; ties go to the lowest employee id."""
    client_count = func.count(models.Client.id)
    result = await db.execute(
        select(models.Employee)
        .outerjoin(models.Client, models.Client.assigned_employee_id == models.Employee.id)
        .group_by(models.Employee.id)
        .order_by(client_count.asc(), models.Employee.id.asc())
        .limit(1)
    )
    return result.scalars().first()

# ===== UPGRADE REQUESTS =====

async def get_upgrade_request(db: AsyncSession, request_id: int) -> Optional[models.GuestUpgradeRequest]:
    result = await db.execute(
        select(models.GuestUpgradeRequest).filter(models.GuestUpgradeRequest.id == request_id)
    )
    return result.scalars().first()

async def get_pending_upgrade_request(db: AsyncSession, account_id: int) -> Optional[models.GuestUpgradeRequest]:
    result = await db.execute(
        select(models.GuestUpgradeRequest).filter(
            models.GuestUpgradeRequest.account_id == account_id,
            models.GuestUpgradeRequest.status == models.UpgradeRequestStatus.PENDING.value,
        )
    )
    return result.scalars().first()

async def get_upgrade_requests_for_account(db: AsyncSession, account_id: int) -> List[models.GuestUpgradeRequest]:
    """Newest first."""
    result = await db.execute(
        select(models.GuestUpgradeRequest)
        .filter(models.GuestUpgradeRequest.account_id == account_id)
        .order_by(models.GuestUpgradeRequest.request_date.desc(), models.GuestUpgradeRequest.id.desc())
    )
    return list(result.scalars().all())

async def get_latest_rejected_request(db: AsyncSession, account_id: int) -> Optional[models.GuestUpgradeRequest]:
    result = await db.execute(
        select(models.GuestUpgradeRequest)
        .filter(
            models.GuestUpgradeRequest.account_id == account_id,
            models.GuestUpgradeRequest.status == models.UpgradeRequestStatus.REJECTED.value,
        )
        .order_by(models.GuestUpgradeRequest.processed_date.desc())
        .limit(1)
    )
    return result.scalars().first()

async def get_upgrade_requests(
    db: AsyncSession,
    status: Optional[models.UpgradeRequestStatus] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.GuestUpgradeRequest]:
    stmt = select(models.GuestUpgradeRequest)
    if status is not None:
        stmt = stmt.filter(models.GuestUpgradeRequest.status == status.value)
    stmt = stmt.order_by(models.GuestUpgradeRequest.request_date.asc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())

# ===== NOTIFICATIONS =====
# Every lookup is scoped to the recipient so one account can never read
# or acknowledge another account's inbox.

def _inbox(recipient_id: int):
    return select(models.Notification).filter(models.Notification.user_id == recipient_id)

async def list_inbox(db: AsyncSession, recipient_id: int, unread_only: bool = False, skip: int = 0, limit: int = 50):
    stmt = _inbox(recipient_id)
    if unread_only:
        stmt = stmt.filter(models.Notification.is_read.is_(False))
    stmt = stmt.order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
    result = await db.execute(stmt.offset(skip).limit(limit))
    return list(result.scalars().all())

async def count_unread(db: AsyncSession, recipient_id: int) -> int:
    result = await db.execute(
        select(func.count(models.Notification.id)).filter(
            models.Notification.user_id == recipient_id, models.Notification.is_read.is_(False)
        )
    )
    return result.scalar() or 0

async def get_inbox_item(db: AsyncSession, recipient_id: int, notification_id: int):
    result = await db.execute(_inbox(recipient_id).filter(models.Notification.id == notification_id))
    return result.scalars().first()

async def acknowledge(db: AsyncSession, notification: models.Notification) -> models.Notification:
    notification.is_read = True
    await db.commit()
    await db.refresh(notification)
    return notification

async def acknowledge_all(db: AsyncSession, recipient_id: int) -> int:
    result = await db.execute(
        update(models.Notification)
        .where(models.Notification.user_id == recipient_id, models.Notification.is_read.is_(False))
        .values(is_read=True)
    )
    await db.commit()
    return result.rowcount
