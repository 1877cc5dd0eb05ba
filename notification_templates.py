# notification_templates.py
# Notification templates for upgrade-request events

from typing import Dict


def get_upgrade_request_admin_notification(guest_email: str, request_id: int, details: str = "") -> Dict[str, str]:
    """New upgrade request, sent to every admin"""
    body = f"Guest {guest_email} has requested an upgrade to client status (request #{request_id})."
    if details:
        body = f"{body}\n\n{details}"
    return {
        'subject': 'New Client Upgrade Request',
        'email': f"{body}\n\nPlease review the request in the admin console.",
        'in_app': f"Upgrade request #{request_id} from {guest_email} is awaiting review.",
    }


def get_upgrade_approved_notification(first_name: str, system_name: str) -> Dict[str, str]:
    """Upgrade approved"""
    name = first_name or "there"
    return {
        'subject': 'Your Client Account Has Been Approved',
        'email': (
            f"Hello {name},\n\nYour request to become a client of {system_name} has been approved. "
            "You now have access to client features, and an advisor has been assigned to your account."
        ),
        'in_app': "Your upgrade request was approved. Welcome aboard!",
    }


def get_upgrade_rejected_notification(first_name: str, reason: str, system_name: str) -> Dict[str, str]:
    """Upgrade rejected, with the reviewer's reason"""
    name = first_name or "there"
    return {
        'subject': 'Update on Your Client Upgrade Request',
        'email': (
            f"Hello {name},\n\nYour request to become a client of {system_name} was not approved.\n\n"
            f"Reason: {reason}"
        ),
        'in_app': f"Your upgrade request was not approved. Reason: {reason}",
    }
