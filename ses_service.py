# ses_service.py
# Outbound e-mail relay for back-office notifications, backed by AWS SES.

import asyncio
import logging
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import settings

log = logging.getLogger(__name__)

CHARSET = "UTF-8"


def _content(data: str) -> Dict[str, str]:
    return {"Data": data, "Charset": CHARSET}


class SESEmailService:
    """
    Sends plain-text (optionally HTML) mail through SES.

    ``send_email`` reports the outcome as a dict instead of raising, so a
    relay outage never aborts an upgrade decision that has already committed.
    """

    def __init__(self, client: Any = None, sender: Optional[str] = None, configuration_set: Optional[str] = None):
        self.client = client or boto3.client(
            "ses",
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        )
        self.sender = sender or f"{settings.SES_SENDER_NAME} <{settings.SES_SENDER_EMAIL}>"
        self.configuration_set = configuration_set

    def build_message(self, to_email: str, subject: str, text_body: str, html_body: Optional[str] = None) -> Dict[str, Any]:
        body = {"Text": _content(text_body)}
        if html_body:
            body["Html"] = _content(html_body)
        message = {
            "Source": self.sender,
            "Destination": {"ToAddresses": [to_email]},
            "Message": {"Subject": _content(subject), "Body": body},
        }
        if self.configuration_set:
            message["ConfigurationSetName"] = self.configuration_set
        return message

    async def send_email(
        self,
        to_email: str,
        subject: str,
        text_body: str,
        html_body: Optional[str] = None,
    ) -> Dict[str, Any]:
        message = self.build_message(to_email, subject, text_body, html_body)
        try:
            # the boto3 client blocks
            response = await asyncio.to_thread(self.client.send_email, **message)
        except ClientError as e:
            error = e.response.get("Error", {})
            log.error(f"SES refused mail to {to_email}: {error.get('Code')} {error.get('Message')}")
            return {"success": False, "error": error.get("Code", "ClientError"), "message": error.get("Message", str(e))}
        except BotoCoreError as e:
            log.error(f"SES unreachable while mailing {to_email}: {e}")
            return {"success": False, "error": type(e).__name__, "message": str(e)}

        message_id = response["MessageId"]
        log.info(f"Mailed '{subject}' to {to_email} (MessageId {message_id})")
        return {"success": True, "message_id": message_id, "to_email": to_email}
