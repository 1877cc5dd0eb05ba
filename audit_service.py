"""
Audit Logging Service - Append-only audit trail of back-office decisions
"""

import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from models import AuditLog, UserAccount, utcnow

log = logging.getLogger(__name__)


class AuditService:
    """Append-only audit logging service.

    Rows are added to the caller's session and committed with the caller's
    transaction, so an audited change and its audit entry land together.
    """

    @staticmethod
    def record(
        db: AsyncSession,
        actor: Optional[UserAccount],
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        details: Optional[str] = None,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Stage an audit entry.

        Actions: SUBMIT_UPGRADE, APPROVE_UPGRADE, REJECT_UPGRADE, CANCEL_UPGRADE
        Entity types: UPGRADE_REQUEST, USER, CLIENT
        """
        entry = AuditLog(
            user_id=actor.id if actor else None,
            user_email=actor.email if actor else None,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            timestamp=utcnow(),
            details=details,
            old_value=json.dumps(old_value, default=str) if old_value is not None else None,
            new_value=json.dumps(new_value, default=str) if new_value is not None else None,
            success=True,
        )
        db.add(entry)
        log.info(f"AUDIT: {action} on {entity_type} {entity_id} by {entry.user_email or 'system'}")
        return entry

    @staticmethod
    def record_upgrade_decision(
        db: AsyncSession,
        actor: UserAccount,
        request_id: int,
        approved: bool,
        account_id: int,
        reason: Optional[str] = None,
    ) -> AuditLog:
        """Log an approve/reject decision on an upgrade request"""
        return AuditService.record(
            db,
            actor,
            action="APPROVE_UPGRADE" if approved else "REJECT_UPGRADE",
            entity_type="UPGRADE_REQUEST",
            entity_id=request_id,
            details=reason,
            old_value={"status": "PENDING"},
            new_value={"status": "APPROVED" if approved else "REJECTED", "account_id": account_id},
        )
