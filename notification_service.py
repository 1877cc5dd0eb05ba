"""
Notification Service - in-app inbox plus optional e-mail delivery.

RULE: notifications never fail the workflow that triggers them.
- In-app rows are staged inside a SAVEPOINT so a failed insert is rolled
  back on its own and the caller's transaction carries on.
- E-mails are returned to the caller as OutboundEmail values and delivered
  only after the caller commits; delivery failures are logged, not raised.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

import crud
import notification_templates
from models import GuestUpgradeRequest, Notification, Role, UserAccount

log = logging.getLogger(__name__)


class EmailSender(Protocol):
    async def send_email(self, to_email: str, subject: str, text_body: str, html_body: Optional[str] = None) -> Any:
        ...


@dataclass(frozen=True)
class OutboundEmail:
    to_email: str
    subject: str
    body: str


class NotificationService:
    """Stages in-app notifications and delivers e-mails on a best-effort basis"""

    def __init__(self, email_sender: Optional[EmailSender] = None, system_name: str = "Due Diligence Finance"):
        self.email_sender = email_sender
        self.system_name = system_name

    async def notify(
        self,
        db: AsyncSession,
        recipient: UserAccount,
        subject: str,
        body: str,
        notification_type: str = "general",
        email_body: Optional[str] = None,
    ) -> OutboundEmail:
        """
        Stage an in-app notification for ``recipient`` in the caller's transaction.

        Returns the e-mail to hand to ``deliver_all`` once the caller has committed.
        """
        notification = Notification(
            user_id=recipient.id,
            title=subject,
            message=body,
            notification_type=notification_type,
        )
        try:
            async with db.begin_nested():
                db.add(notification)
        except SQLAlchemyError:
            log.error(f"Failed to stage {notification_type} notification for user {recipient.id}", exc_info=True)

        return OutboundEmail(to_email=recipient.email, subject=subject, body=email_body or body)

    async def deliver(self, recipient_email: str, subject: str, body: str) -> bool:
        """Send one e-mail. Never raises; returns whether the relay accepted it."""
        if self.email_sender is None:
            log.debug(f"Email delivery disabled; skipping '{subject}' to {recipient_email}")
            return False
        try:
            result = await self.email_sender.send_email(to_email=recipient_email, subject=subject, text_body=body)
        except Exception:
            log.error(f"Email delivery to {recipient_email} failed", exc_info=True)
            return False

        if isinstance(result, dict) and not result.get("success", False):
            log.warning(f"Email relay rejected '{subject}' to {recipient_email}: {result.get('error')}")
            return False
        return True

    async def deliver_all(self, outbox: Iterable[OutboundEmail]) -> int:
        delivered = 0
        for message in outbox:
            if await self.deliver(message.to_email, message.subject, message.body):
                delivered += 1
        return delivered

    # ==================== UPGRADE REQUEST EVENTS ====================

    async def notify_admins_of_upgrade_request(
        self, db: AsyncSession, request: GuestUpgradeRequest, requester: UserAccount
    ) -> List[OutboundEmail]:
        admins = await crud.get_accounts_by_role(db, Role.ADMIN)
        if not admins:
            log.warning(f"No admin accounts to notify about upgrade request {request.id}")
            return []

        template = notification_templates.get_upgrade_request_admin_notification(
            requester.email, request.id, request.details or ""
        )
        outbox = []
        for admin in admins:
            outbox.append(await self.notify(
                db, admin, template['subject'], template['in_app'],
                notification_type="upgrade_request", email_body=template['email'],
            ))
        return outbox

    async def notify_upgrade_approved(self, db: AsyncSession, account: UserAccount) -> OutboundEmail:
        template = notification_templates.get_upgrade_approved_notification(account.first_name, self.system_name)
        return await self.notify(
            db, account, template['subject'], template['in_app'],
            notification_type="upgrade_approved", email_body=template['email'],
        )

    async def notify_upgrade_rejected(self, db: AsyncSession, account: UserAccount, reason: str) -> OutboundEmail:
        template = notification_templates.get_upgrade_rejected_notification(account.first_name, reason, self.system_name)
        return await self.notify(
            db, account, template['subject'], template['in_app'],
            notification_type="upgrade_rejected", email_body=template['email'],
        )


def build_notification_service() -> NotificationService:
    from config import settings

    email_sender = None
    if settings.EMAIL_NOTIFICATIONS_ENABLED:
        from ses_service import SESEmailService
        email_sender = SESEmailService()
    return NotificationService(email_sender=email_sender, system_name=settings.SYSTEM_NAME)
