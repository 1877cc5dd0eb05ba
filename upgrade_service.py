"""
Upgrade Request Service - guest to client upgrade workflow.

Lifecycle of a request: PENDING -> APPROVED or PENDING -> REJECTED.

Approval is one unit of work: request status, account role and permissions,
the new Client record and removal of the Guest record commit together or not
at all. The status change is a conditional UPDATE issued first, so when two
reviewers race only one of them sees the request as PENDING.

E-mails are delivered after commit; a mail failure never undoes a decision.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import crud
import schemas
from audit_service import AuditService
from errors import NotFoundError, ValidationError
from models import Client, GuestUpgradeRequest, Role, UpgradeRequestStatus, UserAccount, utcnow
from notification_service import NotificationService
from permission_service import RolePermissionService

log = logging.getLogger(__name__)

SUBMITTED_MESSAGE = "Upgrade request submitted successfully"
ESTIMATED_PROCESSING_TIME = "2-3 business days"
NOT_PENDING_MESSAGE = "Request is not in pending status"


def _info_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _money(value: Optional[Decimal]) -> str:
    return f"${value:,.2f}" if value is not None else "not provided"


class UpgradeRequestService:
    """Guest -> client upgrade requests: submission, review and eligibility"""

    def __init__(
        self,
        notification_service: NotificationService,
        permission_service: RolePermissionService,
        rejection_cooldown_days: int = 0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.notification_service = notification_service
        self.permission_service = permission_service
        self.rejection_cooldown_days = rejection_cooldown_days
        self._clock = clock or utcnow

    # ==================== ELIGIBILITY ====================

    async def check_eligibility(self, db: AsyncSession, account_id: int) -> schemas.UpgradeEligibility:
        """Whether ``account_id`` may submit a request now. Read-only."""
        account = await crud.get_account(db, account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found", entity="account", entity_id=account_id)

        if await crud.get_pending_upgrade_request(db, account_id):
            return schemas.UpgradeEligibility(eligible=False, reason="You already have a pending upgrade request")

        if account.role != Role.GUEST.value:
            return schemas.UpgradeEligibility(eligible=False, reason="Only guest accounts can request an upgrade")

        if self.rejection_cooldown_days > 0:
            rejected = await crud.get_latest_rejected_request(db, account_id)
            if rejected and rejected.processed_date:
                available_from = rejected.processed_date + timedelta(days=self.rejection_cooldown_days)
                if self._clock() < available_from:
                    return schemas.UpgradeEligibility(
                        eligible=False,
                        reason=f"A previous request was rejected; you can apply again after {available_from.date().isoformat()}",
                    )

        return schemas.UpgradeEligibility(eligible=True)

    # ==================== GUEST ACTIONS ====================

    async def submit_request(
        self,
        db: AsyncSession,
        account_id: int,
        details: Union[schemas.UpgradeRequestCreate, Dict[str, Any]],
    ) -> schemas.UpgradeRequestSubmitted:
        """
        Create a PENDING request for ``account_id`` and alert every admin.

        Raises:
            NotFoundError: the account does not exist
            ValidationError: the account is not eligible (see check_eligibility)
        """
        if not isinstance(details, schemas.UpgradeRequestCreate):
            details = schemas.UpgradeRequestCreate.model_validate(details or {})

        eligibility = await self.check_eligibility(db, account_id)
        if not eligibility.eligible:
            raise ValidationError(eligibility.reason, field_name="account_id")

        account = await crud.get_account(db, account_id)
        guest = await crud.get_guest_by_account(db, account_id)

        request = GuestUpgradeRequest(
            account_id=account_id,
            status=UpgradeRequestStatus.PENDING.value,
            request_date=self._clock(),
            additional_info=self._additional_info(details),
            details=self._summarize(details),
        )
        outbox = []
        try:
            db.add(request)
            if guest is not None:
                guest.upgrade_requested = True
            await db.flush()

            outbox = await self.notification_service.notify_admins_of_upgrade_request(db, request, account)
            AuditService.record(
                db, account, action="SUBMIT_UPGRADE", entity_type="UPGRADE_REQUEST", entity_id=request.id,
            )
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            # Lost a race against a concurrent submission for the same account
            raise ValidationError("You already have a pending upgrade request", field_name="account_id") from e
        except Exception:
            await db.rollback()
            raise

        log.info(f"Upgrade request {request.id} submitted by account {account_id}")
        await self.notification_service.deliver_all(outbox)

        return schemas.UpgradeRequestSubmitted(
            request_id=request.id,
            status=request.status,
            message=SUBMITTED_MESSAGE,
            estimated_processing_time=ESTIMATED_PROCESSING_TIME,
        )

    async def get_latest_request(self, db: AsyncSession, account_id: int) -> GuestUpgradeRequest:
        requests = await crud.get_upgrade_requests_for_account(db, account_id)
        if not requests:
            raise NotFoundError("No upgrade request found", entity="upgrade_request")
        return requests[0]

    async def cancel_request(self, db: AsyncSession, account_id: int) -> None:
        """Withdraw the account's PENDING request"""
        request = await crud.get_pending_upgrade_request(db, account_id)
        if request is None:
            raise NotFoundError("No pending upgrade request found", entity="upgrade_request")

        account = await crud.get_account(db, account_id)
        guest = await crud.get_guest_by_account(db, account_id)
        try:
            await db.delete(request)
            if guest is not None:
                guest.upgrade_requested = False
            AuditService.record(
                db, account, action="CANCEL_UPGRADE", entity_type="UPGRADE_REQUEST", entity_id=request.id,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        log.info(f"Upgrade request {request.id} cancelled by account {account_id}")

    # ==================== ADMIN ACTIONS ====================

    async def list_requests(
        self,
        db: AsyncSession,
        status: Optional[UpgradeRequestStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[GuestUpgradeRequest]:
        return await crud.get_upgrade_requests(db, status=status, skip=skip, limit=limit)

    async def approve_request(self, db: AsyncSession, request_id: int, actor: UserAccount) -> GuestUpgradeRequest:
        """
        Turn the requesting guest into a client.

        Raises:
            NotFoundError: no such request, or the account has no Guest record
            ValidationError: the request is no longer PENDING
            DependencyError: the permission catalogue is incomplete
        """
        request = await self._get_pending(db, request_id)
        now = self._clock()

        try:
            await self._claim(db, request_id, {
                "status": UpgradeRequestStatus.APPROVED.value,
                "processed_date": now,
                "processed_by": actor.email,
            })

            account = await crud.get_account(db, request.account_id, with_permissions=True)
            if account is None:
                raise NotFoundError(f"Account {request.account_id} not found", entity="account", entity_id=request.account_id)
            guest = await crud.get_guest_by_account(db, account.id)
            if guest is None:
                raise NotFoundError("Guest not found for user", entity="guest", entity_id=account.id)

            account.role = Role.CLIENT.value
            account.permissions = await self.permission_service.get_permission_set(db, Role.CLIENT)
            account.last_modified_date = now

            employee = await crud.get_least_loaded_employee(db)
            if employee is None:
                log.warning(f"No employees available; client for account {account.id} left unassigned")
            client = Client(
                client_id=self._generate_client_id(now),
                account_id=account.id,
                assigned_employee_id=employee.id if employee else None,
                registration_date=now,
            )
            db.add(client)
            await db.delete(guest)
            await db.flush()

            outbox = [await self.notification_service.notify_upgrade_approved(db, account)]
            AuditService.record_upgrade_decision(db, actor, request_id, approved=True, account_id=account.id)
            await db.commit()
        except Exception:
            await db.rollback()
            log.error(f"Approval of upgrade request {request_id} failed; nothing was changed", exc_info=True)
            raise

        log.info(
            f"Upgrade request {request_id} approved by {actor.email}: account {account.id} is now client "
            f"{client.client_id} (employee {client.assigned_employee_id})"
        )
        await self.notification_service.deliver_all(outbox)
        await db.refresh(request)
        return request

    async def reject_request(
        self, db: AsyncSession, request_id: int, reason: str, actor: UserAccount
    ) -> GuestUpgradeRequest:
        """Mark a PENDING request REJECTED with ``reason``; the account is left as it is."""
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required", field_name="reason")

        request = await self._get_pending(db, request_id)
        now = self._clock()

        try:
            await self._claim(db, request_id, {
                "status": UpgradeRequestStatus.REJECTED.value,
                "rejection_reason": reason,
                "processed_date": now,
                "processed_by": actor.email,
                "details": f"{request.details or ''}\nRejection reason: {reason}",
            })

            account = await crud.get_account(db, request.account_id)
            outbox = []
            if account is not None:
                outbox.append(await self.notification_service.notify_upgrade_rejected(db, account, reason))
            AuditService.record_upgrade_decision(
                db, actor, request_id, approved=False, account_id=request.account_id, reason=reason,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        log.info(f"Upgrade request {request_id} rejected by {actor.email}")
        await self.notification_service.deliver_all(outbox)
        await db.refresh(request)
        return request

    # ==================== HELPERS ====================

    async def _get_pending(self, db: AsyncSession, request_id: int) -> GuestUpgradeRequest:
        request = await crud.get_upgrade_request(db, request_id)
        if request is None:
            raise NotFoundError(
                f"Upgrade request not found with ID: {request_id}", entity="upgrade_request", entity_id=request_id
            )
        if request.status != UpgradeRequestStatus.PENDING.value:
            raise ValidationError(NOT_PENDING_MESSAGE, field_name="status")
        return request

    async def _claim(self, db: AsyncSession, request_id: int, values: Dict[str, Any]) -> None:
        """Move the request out of PENDING; fails if someone else already did."""
        result = await db.execute(
            update(GuestUpgradeRequest)
            .where(
                GuestUpgradeRequest.id == request_id,
                GuestUpgradeRequest.status == UpgradeRequestStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ValidationError(NOT_PENDING_MESSAGE, field_name="status")

    @staticmethod
    def _generate_client_id(now: datetime) -> str:
        return f"CLI-{int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)}"

    @staticmethod
    def _additional_info(details: schemas.UpgradeRequestCreate) -> Dict[str, str]:
        answers = details.model_dump(by_alias=True, exclude_none=True, exclude={"details"})
        return {key: _info_value(value) for key, value in answers.items() if value is not None}

    @staticmethod
    def _summarize(details: schemas.UpgradeRequestCreate) -> str:
        summary = (
            f"Investment Goals: {details.investment_goals or 'not provided'}\n"
            f"Risk Tolerance: {details.risk_tolerance or 'not provided'}\n"
            f"Expected Investment: {_money(details.expected_investment_amount)}\n"
            f"Annual Income: {_money(details.annual_income)}"
        )
        if details.details:
            summary = f"{summary}\n\n{details.details}"
        return summary


def build_upgrade_service() -> UpgradeRequestService:
    from config import settings
    from notification_service import build_notification_service
    from permission_service import permission_service

    return UpgradeRequestService(
        build_notification_service(),
        permission_service,
        rejection_cooldown_days=settings.UPGRADE_REJECTION_COOLDOWN_DAYS,
    )


upgrade_service = build_upgrade_service()
