# schemas.py
# Pydantic models for request/response validation and serialization.

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

class Token(BaseModel):
    access_token: str
    token_type: str
    role: str
    user_id: int
    email: str

class UserAccount(BaseModel):
    id: int
    email: EmailStr
    first_name: str
    last_name: str
    role: str
    active: bool
    created_date: datetime

    class Config:
        from_attributes = True

# ===== NOTIFICATIONS =====

class NotificationBase(BaseModel):
    title: str
    message: str
    notification_type: str
    is_read: bool = False

class Notification(NotificationBase):
    id: int
    user_id: int
    created_at: datetime

    class Config:
        from_attributes = True

class InboxCount(BaseModel):
    unread_count: int

# ===== GUEST UPGRADE REQUESTS =====

class UpgradeRequestCreate(BaseModel):
    """KYC answers a guest supplies when asking to become a client.

    Unknown keys are kept and stored with the request.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    phone_number: Optional[str] = None
    address: Optional[str] = None
    occupation: Optional[str] = None
    employment_status: Optional[str] = None
    annual_income: Optional[Decimal] = None
    investment_goals: Optional[str] = None
    risk_tolerance: Optional[str] = None
    expected_investment_amount: Optional[Decimal] = Field(default=None, ge=0)
    source_of_funds: Optional[str] = None
    agree_to_identity_verification: Optional[bool] = None
    accept_terms_and_conditions: Optional[bool] = None
    details: Optional[str] = None

class UpgradeRequestSubmitted(BaseModel):
    request_id: int
    status: str
    message: str
    estimated_processing_time: str

class UpgradeRequest(BaseModel):
    id: int
    account_id: int
    status: str
    request_date: datetime
    details: Optional[str] = None
    additional_info: Dict[str, str] = {}
    processed_date: Optional[datetime] = None
    processed_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    class Config:
        from_attributes = True

class UpgradeEligibility(BaseModel):
    eligible: bool
    reason: Optional[str] = None

class RejectUpgradeRequest(BaseModel):
    reason: str = Field(min_length=1)

# ===== BACKUPS =====

class BackupArchive(BaseModel):
    name: str
    path: str
    size: int
    modified_at: datetime

class BackupCleanupResult(BaseModel):
    retention_days: int
    deleted: int

class RestoreResult(BaseModel):
    restored: bool
    source: str
    counts: Dict[str, int]

# ===== BACKUP SNAPSHOT =====
# The snapshot document is written with camelCase keys and ISO-8601 timestamps.

class SnapshotType(str, enum.Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"
    INCREMENTAL = "INCREMENTAL"


class _SnapshotModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        frozen=True,
    )


class AccountRecord(_SnapshotModel):
    id: int
    email: str
    hashed_password: str
    first_name: str
    last_name: str
    role: str
    phone_number: Optional[str] = None
    address: Optional[str] = None
    active: bool
    created_date: datetime
    last_modified_date: Optional[datetime] = None
    permissions: Tuple[str, ...] = ()

    @field_validator("permissions", mode="before")
    @classmethod
    def _permission_names(cls, value: Any) -> Any:
        if value is None:
            return ()
        names = [getattr(item, "permission_type", item) for item in value]
        return tuple(sorted(names))


class ClientRecord(_SnapshotModel):
    id: int
    client_id: str
    account_id: int
    assigned_employee_id: Optional[int] = None
    registration_date: datetime


class EmployeeRecord(_SnapshotModel):
    id: int
    employee_id: str
    account_id: int
    location_id: str
    department: str
    hire_date: Optional[datetime] = None


class AdminRecord(_SnapshotModel):
    id: int
    admin_id: str
    account_id: int
    super_admin: bool
    system_access_level: str
    department: Optional[str] = None
    notes: Optional[str] = None


class GuestRecord(_SnapshotModel):
    id: int
    guest_id: str
    account_id: int
    registration_date: datetime
    last_activity_date: Optional[datetime] = None
    interest_area: Optional[str] = None
    referral_source: Optional[str] = None
    upgrade_requested: bool


class InvestmentRecord(_SnapshotModel):
    id: int
    investment_id: str
    name: str
    investment_type: Optional[str] = None
    ticker_symbol: Optional[str] = None
    shares: Optional[Decimal] = None
    purchase_price_per_share: Optional[Decimal] = None
    current_price_per_share: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    current_value: Optional[Decimal] = None
    status: str
    risk_level: str
    client_id: Optional[int] = None
    created_by_id: Optional[int] = None
    created_date: datetime
    last_modified_at: Optional[datetime] = None
    description: Optional[str] = None


class SystemConfigRecord(_SnapshotModel):
    id: int
    config_key: str
    config_value: Optional[str] = None
    maintenance_mode: bool
    session_timeout: int
    backup_enabled: bool
    backup_schedule: str
    backup_retention_days: int
    created_at: datetime
    last_modified: Optional[datetime] = None
    modified_by: Optional[str] = None


class AuditLogRecord(_SnapshotModel):
    id: int
    user_id: Optional[int] = None
    user_email: Optional[str] = None
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    timestamp: datetime
    details: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    success: bool
    error_message: Optional[str] = None


class Snapshot(_SnapshotModel):
    """Point-in-time copy of the selected collections. Built once, never mutated."""

    version: str = Field(min_length=1)
    created_at: datetime
    type: SnapshotType
    based_on: Optional[str] = None

    accounts: Tuple[AccountRecord, ...] = ()
    clients: Tuple[ClientRecord, ...] = ()
    employees: Tuple[EmployeeRecord, ...] = ()
    admins: Tuple[AdminRecord, ...] = ()
    guests: Tuple[GuestRecord, ...] = ()
    investments: Tuple[InvestmentRecord, ...] = ()
    configs: Tuple[SystemConfigRecord, ...] = ()
    audit_logs: Tuple[AuditLogRecord, ...] = ()

    def counts(self) -> Dict[str, int]:
        return {
            "accounts": len(self.accounts),
            "clients": len(self.clients),
            "employees": len(self.employees),
            "admins": len(self.admins),
            "guests": len(self.guests),
            "investments": len(self.investments),
            "configs": len(self.configs),
            "audit_logs": len(self.audit_logs),
        }
