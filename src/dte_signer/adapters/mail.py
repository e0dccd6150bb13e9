"""
Mail adapters — hand a DTE message to a mail relay, or simulate it.

Adapter layer — implements the MailTransport port.

HttpMailRelay posts one JSON document per message to a relay endpoint:

    {"from": ..., "to": ..., "subject": ..., "html": ...,
     "attachments": [{"filename", "mimeType", "content" (base64)}]}

and expects a 2xx answer with {"success": true}. Retry/backoff via tenacity
on transient errors (network, timeout) only; everything else becomes an
EXTERNAL_SERVICE_ERROR failure.

LoggingMailTransport is used when no relay is configured: it logs the
message and reports success with mode "simulated".
"""

from __future__ import annotations

import base64
from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dte_signer.domain.models import MailMessage
from dte_signer.railway import ErrorCode, Result

log = structlog.get_logger()

RELAY_MODE = "relay"
SIMULATED_MODE = "simulated"


class MailRelayRejected(Exception):
    """The relay answered, but did not accept the message."""


def relay_payload(message: MailMessage) -> dict[str, Any]:
    return {
        "from": message.sender,
        "to": message.recipient,
        "subject": message.subject,
        "html": message.html,
        "attachments": [
            {
                "filename": attachment.filename,
                "mimeType": attachment.content_type,
                "content": base64.b64encode(attachment.content).decode("ascii"),
            }
            for attachment in message.attachments
        ],
    }


class HttpMailRelay:
    """
    Deliver messages through an HTTP mail relay.

    Implements the MailTransport port.
    Uses tenacity retry on transient network errors only.
    """

    def __init__(self, relay_url: str, timeout: int = 30) -> None:
        self._relay_url = relay_url
        self._timeout = timeout

    def deliver(self, message: MailMessage) -> Result[str]:
        return Result.from_computation(
            lambda: self._do_post(message),
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            "Mail relay delivery failed",
        ).peek_failure(
            lambda err: log.error(
                "mail.relay_failed",
                recipient=message.recipient,
                error=str(err.exception) if err.exception else err.message,
            )
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=0.1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    def _do_post(self, message: MailMessage) -> str:
        """HTTP POST with retry — exceptions caught by from_computation."""
        with httpx.Client(timeout=self._timeout, follow_redirects=True) as client:
            response = client.post(self._relay_url, json=relay_payload(message))
            response.raise_for_status()
            body = response.json()
            if not body.get("success"):
                raise MailRelayRejected(str(body.get("error", "relay did not accept the message")))
            log.info(
                "mail.relayed",
                recipient=message.recipient,
                subject=message.subject,
                attachments=len(message.attachments),
            )
            return RELAY_MODE


class LoggingMailTransport:
    """Pretend to deliver: log the message and report success."""

    def deliver(self, message: MailMessage) -> Result[str]:
        log.info(
            "mail.simulated",
            sender=message.sender,
            recipient=message.recipient,
            subject=message.subject,
            attachments=[attachment.filename for attachment in message.attachments],
        )
        return Result.success(SIMULATED_MODE)
