"""
WhatsApp Dispatcher — delivers the short-form report via Twilio.

Configuration (environment variables):
  TWILIO_ACCOUNT_SID    — Twilio account SID
  TWILIO_AUTH_TOKEN     — Twilio auth token
  TWILIO_WHATSAPP_FROM  — Twilio WhatsApp sender (e.g., "+14155238886")
"""

from __future__ import annotations

import asyncio
import logging

from twilio.rest import Client

from medinet import settings
from medinet.gateway.agents.report_agent import WHATSAPP_CHANNEL, render_short_report
from medinet.gateway.channels import DeliveryResult, PatientReport, ReportChannel

logger = logging.getLogger("gateway.dispatchers.whatsapp")

# Twilio's body limit for a single WhatsApp message
MAX_BODY_LENGTH = 1600


def whatsapp_address(number: str) -> str:
    number = number.strip()
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


def truncate_body(text: str, limit: int = MAX_BODY_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class WhatsAppReportDispatcher(ReportChannel):
    """Delivers reports via the Twilio WhatsApp API."""

    channel_name = WHATSAPP_CHANNEL

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        client=None,
    ) -> None:
        self._account_sid = (
            account_sid if account_sid is not None else settings.TWILIO_ACCOUNT_SID
        )
        self._auth_token = (
            auth_token if auth_token is not None else settings.TWILIO_AUTH_TOKEN
        )
        self._from_number = (
            from_number if from_number is not None else settings.TWILIO_WHATSAPP_FROM
        )
        self._client = client

    @property
    def is_configured(self) -> bool:
        has_credentials = bool(self._account_sid and self._auth_token) or self._client is not None
        return has_credentials and bool(self._from_number)

    def _get_client(self):
        """Lazy-initialize the Twilio client."""
        if self._client is None:
            self._client = Client(self._account_sid, self._auth_token)
            logger.info("Twilio client initialized")
        return self._client

    async def send(self, report: PatientReport) -> DeliveryResult:
        to_number = report.doctor.whatsapp or report.doctor.phone or ""
        if not self.is_configured:
            return self.skip("Twilio WhatsApp credentials not set", to_number)
        if not to_number:
            return self.skip(f"Dr. {report.doctor.name} has no WhatsApp number")

        body = truncate_body(render_short_report(report))
        try:
            message = await asyncio.to_thread(
                self._get_client().messages.create,
                body=body,
                from_=whatsapp_address(self._from_number),
                to=whatsapp_address(to_number),
            )
        except Exception as exc:
            logger.error("WhatsApp send error for %s: %s", report.consultation_id, exc)
            return DeliveryResult(
                success=False,
                channel=self.channel_name,
                recipient=to_number,
                error=str(exc),
            )

        logger.info(
            "Report %s sent via WhatsApp: SID=%s -> %s",
            report.consultation_id, message.sid, to_number,
        )
        return DeliveryResult(success=True, channel=self.channel_name, recipient=to_number)
