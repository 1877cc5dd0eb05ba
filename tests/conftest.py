"""
Shared fixtures: a throwaway SQLite database per test, seeded permission
catalogue, account builders and a recording e-mail sender.
"""

import os

# Settings are read at import time; point them at SQLite before any project import.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["EMAIL_NOTIFICATIONS_ENABLED"] = "false"
os.environ["UPGRADE_REJECTION_COOLDOWN_DAYS"] = "0"

from datetime import datetime, timezone
from typing import List, Optional

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from auth_utils import hash_password
from backup_service import BackupService
from database import Base, build_engine
from models import Admin, Client, Employee, Guest, Role, UserAccount, utcnow
from notification_service import NotificationService
from permission_service import RolePermissionService
from upgrade_service import UpgradeRequestService

FIXED_NOW = datetime(2026, 3, 14, 15, 9, 26, tzinfo=timezone.utc)


class RecordingEmailSender:
    """Stands in for the SES client; records every message."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[dict] = []

    async def send_email(self, to_email, subject, text_body, html_body=None):
        if self.fail:
            raise ConnectionError("mail relay unreachable")
        self.sent.append({"to": to_email, "subject": subject, "body": text_body})
        return {"success": True, "message_id": f"msg-{len(self.sent)}"}


class AccountFactory:
    """Creates accounts together with their role record."""

    def __init__(self, db):
        self.db = db
        self._seq = 0

    async def create(
        self,
        role: Role = Role.GUEST,
        email: Optional[str] = None,
        first_name: str = "Test",
        password: Optional[str] = None,
        employee: Optional[Employee] = None,
    ) -> UserAccount:
        self._seq += 1
        account = UserAccount(
            email=email or f"{role.value.lower()}{self._seq}@example.com",
            hashed_password=hash_password(password) if password else "",
            first_name=first_name,
            last_name="User",
            role=role.value,
        )
        account.permissions = await RolePermissionService().get_permission_set(self.db, role)
        self.db.add(account)
        await self.db.flush()

        if role == Role.GUEST:
            self.db.add(Guest(guest_id=f"GST-{account.id:04d}", account_id=account.id))
        elif role == Role.CLIENT:
            self.db.add(Client(
                client_id=f"CLI-{account.id:04d}",
                account_id=account.id,
                assigned_employee_id=employee.id if employee else None,
            ))
        elif role == Role.EMPLOYEE:
            self.db.add(Employee(employee_id=f"EMP-{account.id:04d}", account_id=account.id, hire_date=utcnow()))
        elif role == Role.ADMIN:
            self.db.add(Admin(admin_id=f"ADM-{account.id:04d}", account_id=account.id, super_admin=True))
        await self.db.commit()
        return account

    async def employee(self, **kwargs) -> Employee:
        account = await self.create(Role.EMPLOYEE, **kwargs)
        result = await self.db.execute(select(Employee).filter(Employee.account_id == account.id))
        employee = result.scalars().one()
        await self.db.commit()
        return employee


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'backoffice.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        await RolePermissionService.ensure_permissions(session)
        yield session


@pytest.fixture
def accounts(db):
    return AccountFactory(db)


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def notifications(email_sender):
    return NotificationService(email_sender=email_sender, system_name="DD Finance Test")


@pytest.fixture
def upgrades(notifications):
    return UpgradeRequestService(notifications, RolePermissionService())


@pytest.fixture
def backup_dir(tmp_path):
    return tmp_path / "backups"


@pytest.fixture
def backups(backup_dir):
    return BackupService(backup_dir, retention_days=30, system_name="DD Finance Test", clock=lambda: FIXED_NOW)
