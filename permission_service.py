"""
Role -> permission catalogue.

Every account role has a base permission set. The catalogue rows in the
``permissions`` table are seeded at startup; approval of an upgrade request
swaps an account's permission links for the base set of its new role.
"""

import enum
import logging
from typing import List, Set

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import DependencyError
from models import Permission, Role

log = logging.getLogger(__name__)


class Permissions(enum.Enum):
    # UserAccount level
    VIEW_ACCOUNT = "View the details of your own account."
    VIEW_ACCOUNTS = "View all accounts and details."
    EDIT_MY_DETAILS = "Edit the details of your own account."
    UPDATE_MY_PASSWORD = "Update your own password."
    CREATE_USER = "Create a new account."

    # Admin level
    EDIT_USER = "Edit the details of a specific account."
    DELETE_USER = "Remove an account from the system."
    EDIT_EMPLOYEE = "Edit the details of a specific employee."
    CREATE_EMPLOYEE = "Create a new employee."
    UPDATE_OTHER_PASSWORD = "Update the password of another account."

    # Employee level
    CREATE_CLIENT = "Create a client by upgrading an existing guest account."
    EDIT_CLIENT = "Edit the details of an existing client."
    VIEW_CLIENT = "View the details of a specific client."
    VIEW_CLIENTS = "List all clients."
    ASSIGN_CLIENT = "Assign a client to an employee partner."
    CREATE_INVESTMENT = "Create a new investment for a client."
    EDIT_INVESTMENT = "Edit an existing investment for a client."
    VIEW_EMPLOYEES = "List all employees."
    VIEW_EMPLOYEE = "View the details of a specific employee."

    # Client level
    VIEW_INVESTMENT = "View the details of your own investments."
    MESSAGE_PARTNER = "Message your assigned employee partner."

    # Guest level
    REQUEST_CLIENT_ACCOUNT = "Request an upgrade to client status."

    @property
    def description(self) -> str:
        return self.value


_COMMON = {
    Permissions.VIEW_ACCOUNT,
    Permissions.EDIT_MY_DETAILS,
    Permissions.UPDATE_MY_PASSWORD,
    Permissions.CREATE_USER,
}

_ROLE_SPECIFIC = {
    Role.GUEST: {Permissions.REQUEST_CLIENT_ACCOUNT},
    Role.CLIENT: {Permissions.VIEW_INVESTMENT, Permissions.MESSAGE_PARTNER},
    Role.EMPLOYEE: {
        Permissions.CREATE_INVESTMENT,
        Permissions.EDIT_INVESTMENT,
        Permissions.CREATE_CLIENT,
        Permissions.EDIT_CLIENT,
        Permissions.VIEW_CLIENT,
        Permissions.VIEW_CLIENTS,
        Permissions.ASSIGN_CLIENT,
        Permissions.VIEW_EMPLOYEE,
        Permissions.VIEW_EMPLOYEES,
    },
}


class RolePermissionService:
    """Base permission sets per role and lookup of their catalogue rows."""

    @staticmethod
    def get_permissions_by_role(role: Role) -> Set[Permissions]:
        if role == Role.ADMIN:
            return set(Permissions)
        return _COMMON | _ROLE_SPECIFIC.get(role, set())

    @staticmethod
    async def ensure_permissions(db: AsyncSession) -> int:
        """Insert catalogue rows that are missing. Returns how many were created."""
        result = await db.execute(select(Permission.permission_type))
        existing = set(result.scalars().all())
        created = 0
        for perm in Permissions:
            if perm.name not in existing:
                db.add(Permission(permission_type=perm.name, description=perm.description))
                created += 1
        if created:
            await db.commit()
            log.info(f"Seeded {created} permission catalogue rows")
        return created

    async def get_permission_set(self, db: AsyncSession, role: Role) -> List[Permission]:
        """Catalogue rows for ``role``'s base set.

        Raises DependencyError when the catalogue cannot be read or lacks a row.
        """
        wanted = {perm.name for perm in self.get_permissions_by_role(role)}
        try:
            result = await db.execute(select(Permission).filter(Permission.permission_type.in_(wanted)))
        except SQLAlchemyError as e:
            raise DependencyError(f"Permission lookup failed for role {role.value}") from e
        rows = list(result.scalars().all())

        missing = wanted - {row.permission_type for row in rows}
        if missing:
            log.error(f"Permission catalogue is missing {sorted(missing)} for role {role.value}")
            raise DependencyError(
                f"Permission catalogue incomplete for role {role.value}",
                details={"missing": sorted(missing)},
            )
        return sorted(rows, key=lambda row: row.permission_type)


permission_service = RolePermissionService()
