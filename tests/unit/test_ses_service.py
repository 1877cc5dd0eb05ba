"""
Unit tests for the SES e-mail relay.

A fake boto client stands in for SES so no AWS credentials are needed.
"""

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from ses_service import SESEmailService


class FakeSESClient:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def send_email(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return {"MessageId": "0100-abc"}


def _relay(client, **kwargs):
    return SESEmailService(client=client, sender="DD Finance <no-reply@ddfinance.test>", **kwargs)


class TestBuildMessage:
    """Tests for the SES request payload."""

    def test_text_only(self):
        message = _relay(FakeSESClient()).build_message("guest@example.com", "Hi", "plain")

        assert message["Source"] == "DD Finance <no-reply@ddfinance.test>"
        assert message["Destination"] == {"ToAddresses": ["guest@example.com"]}
        assert message["Message"]["Body"] == {"Text": {"Data": "plain", "Charset": "UTF-8"}}
        assert "ConfigurationSetName" not in message

    def test_html_and_configuration_set(self):
        message = _relay(FakeSESClient(), configuration_set="backoffice").build_message(
            "guest@example.com", "Hi", "plain", "<p>plain</p>"
        )

        assert message["Message"]["Body"]["Html"]["Data"] == "<p>plain</p>"
        assert message["ConfigurationSetName"] == "backoffice"


class TestSendEmail:
    """Tests for send_email outcomes."""

    @pytest.mark.asyncio
    async def test_success(self):
        client = FakeSESClient()

        result = await _relay(client).send_email("guest@example.com", "Hi", "plain")

        assert result == {"success": True, "message_id": "0100-abc", "to_email": "guest@example.com"}
        assert client.calls[0]["Message"]["Subject"]["Data"] == "Hi"

    @pytest.mark.asyncio
    async def test_rejected_address(self):
        error = ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "Email address is not verified"}}, "SendEmail"
        )

        result = await _relay(FakeSESClient(error)).send_email("guest@example.com", "Hi", "plain")

        assert result["success"] is False
        assert result["error"] == "MessageRejected"

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        error = EndpointConnectionError(endpoint_url="https://email.eu-west-1.amazonaws.com")

        result = await _relay(FakeSESClient(error)).send_email("guest@example.com", "Hi", "plain")

        assert result == {
            "success": False,
            "error": "EndpointConnectionError",
            "message": str(error),
        }
