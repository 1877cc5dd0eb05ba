# models.py
# SQLAlchemy models defining database tables (accounts, role records, investments, upgrade requests, etc.).

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, String, DateTime, ForeignKey, Numeric, Text, Index, JSON, Table, text
from sqlalchemy.orm import relationship
from database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, enum.Enum):
    GUEST = "GUEST"
    CLIENT = "CLIENT"
    EMPLOYEE = "EMPLOYEE"
    ADMIN = "ADMIN"


class UpgradeRequestStatus(str, enum.Enum):
    # PENDING -> APPROVED or PENDING -> REJECTED, never reversed
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class InvestmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SOLD = "SOLD"
    CANCELLED = "CANCELLED"


user_account_permissions = Table(
    "user_account_permissions",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("user_accounts.id"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id"), primary_key=True),
)


class Permission(Base):
    """Reference data: one row per Permissions enum member, seeded at startup."""
    __tablename__ = "permissions"

    id = Column(Integer, primary_key=True, index=True)
    permission_type = Column(String(64), unique=True, nullable=False, index=True)
    description = Column(String, nullable=True)


class UserAccount(Base):
    __tablename__ = "user_accounts"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False, default="")
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    # STATES: GUEST, CLIENT, EMPLOYEE, ADMIN
    role = Column(String(20), nullable=False, default=Role.GUEST.value, index=True)
    phone_number = Column(String(20), nullable=True)
    address = Column(String(500), nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    created_date = Column(DateTime, default=utcnow, nullable=False)
    last_modified_date = Column(DateTime, nullable=True)

    permissions = relationship("Permission", secondary=user_account_permissions)


class Employee(Base):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(String, unique=True, nullable=False)
    account_id = Column(Integer, ForeignKey("user_accounts.id"), unique=True, nullable=False)
    location_id = Column(String, default="HOMEBASE", nullable=False)
    department = Column(String, default="GENERAL", nullable=False)
    hire_date = Column(DateTime, nullable=True)

    account = relationship("UserAccount")


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(String, nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("user_accounts.id"), unique=True, nullable=False)
    assigned_employee_id = Column(Integer, ForeignKey("employees.id"), nullable=True, index=True)
    registration_date = Column(DateTime, default=utcnow, nullable=False)

    account = relationship("UserAccount")
    assigned_employee = relationship("Employee")


class Admin(Base):
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    admin_id = Column(String, unique=True, nullable=False)
    account_id = Column(Integer, ForeignKey("user_accounts.id"), unique=True, nullable=False)
    super_admin = Column(Boolean, default=False, nullable=False)
    system_access_level = Column(String, default="FULL", nullable=False)  # FULL, LIMITED, READONLY
    department = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    account = relationship("UserAccount")


class Guest(Base):
    __tablename__ = "guests"

    id = Column(Integer, primary_key=True, index=True)
    guest_id = Column(String, unique=True, nullable=False)
    account_id = Column(Integer, ForeignKey("user_accounts.id"), unique=True, nullable=False)
    registration_date = Column(DateTime, default=utcnow, nullable=False)
    last_activity_date = Column(DateTime, nullable=True)
    interest_area = Column(String, nullable=True)
    referral_source = Column(String, nullable=True)
    upgrade_requested = Column(Boolean, default=False, nullable=False)

    account = relationship("UserAccount")


class Investment(Base):
    __tablename__ = "investments"

    id = Column(Integer, primary_key=True, index=True)
    investment_id = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    investment_type = Column(String, nullable=True)  # STOCK, ETF, BOND, ...
    ticker_symbol = Column(String(10), nullable=True, index=True)
    shares = Column(Numeric(18, 6), nullable=True)
    purchase_price_per_share = Column(Numeric(15, 2), nullable=True)
    current_price_per_share = Column(Numeric(15, 2), nullable=True)
    amount = Column(Numeric(15, 2), nullable=True)
    current_value = Column(Numeric(15, 2), nullable=True)
    status = Column(String(20), default=InvestmentStatus.PENDING.value, nullable=False)
    risk_level = Column(String(20), default="MEDIUM", nullable=False)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)
    created_by_id = Column(Integer, ForeignKey("employees.id"), nullable=True)
    created_date = Column(DateTime, default=utcnow, nullable=False)
    last_modified_at = Column(DateTime, nullable=True)
    description = Column(Text, nullable=True)

    client = relationship("Client")
    created_by = relationship("Employee")


class SystemConfig(Base):
    __tablename__ = "system_configs"

    id = Column(Integer, primary_key=True, index=True)
    config_key = Column(String, unique=True, nullable=False)
    config_value = Column(String, nullable=True)
    maintenance_mode = Column(Boolean, default=False, nullable=False)
    session_timeout = Column(Integer, default=30, nullable=False)  # minutes
    backup_enabled = Column(Boolean, default=True, nullable=False)
    backup_schedule = Column(String, default="DAILY", nullable=False)  # DAILY, WEEKLY, MONTHLY
    backup_retention_days = Column(Integer, default=30, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_modified = Column(DateTime, nullable=True)
    modified_by = Column(String, nullable=True)


class AuditLog(Base):
    """
    Append-only audit trail.

    user_id is a plain column rather than a foreign key so entries outlive
    the accounts they mention (and survive a restore in any order).
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    user_email = Column(String, nullable=True)
    # Values: "APPROVE_UPGRADE", "REJECT_UPGRADE", "SUBMIT_UPGRADE", "CREATE_USER", ...
    action = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=True)  # USER, CLIENT, UPGRADE_REQUEST, SYSTEM_CONFIG, ...
    entity_id = Column(Integer, nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)
    details = Column(Text, nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    success = Column(Boolean, default=True, nullable=False)
    error_message = Column(Text, nullable=True)

    def __repr__(self):
        return f"<AuditLog {self.action} by User {self.user_id} on {self.entity_type} {self.entity_id} at {self.timestamp}>"


class GuestUpgradeRequest(Base):
    __tablename__ = "guest_upgrade_requests"
    __table_args__ = (
        # At most one PENDING request per account
        Index(
            "uq_guest_upgrade_requests_pending_account",
            "account_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)
    status = Column(String(20), default=UpgradeRequestStatus.PENDING.value, nullable=False, index=True)
    request_date = Column(DateTime, default=utcnow, nullable=False)
    details = Column(Text, nullable=True)
    additional_info = Column(JSON, nullable=False, default=dict)  # KYC answers, str -> str
    processed_date = Column(DateTime, nullable=True)
    processed_by = Column(String, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    account = relationship("UserAccount")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)
    title = Column(String)
    message = Column(Text)
    notification_type = Column(String)  # e.g., "upgrade_request", "upgrade_approved", "upgrade_rejected"
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    recipient = relationship("UserAccount")
