"""
Email Dispatcher — delivers the specialist report via SendGrid.

The doctor receives the long-form report as plain text with an HTML
alternative.

Configuration (environment variables):
  SENDGRID_API_KEY     — SendGrid API key
  SENDGRID_FROM_EMAIL  — Sender email (e.g., "noreply@medinet.app")
  SENDGRID_FROM_NAME   — Sender display name (default: "AI Medical System")
"""

from __future__ import annotations

import asyncio
import logging

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Email, Mail, To

from medinet import settings
from medinet.gateway.agents.report_agent import (
    EMAIL_CHANNEL,
    render_full_report,
    render_html_report,
)
from medinet.gateway.channels import DeliveryResult, PatientReport, ReportChannel

logger = logging.getLogger("gateway.dispatchers.email")


class EmailReportDispatcher(ReportChannel):
    """Delivers reports via SendGrid email API."""

    channel_name = EMAIL_CHANNEL

    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        from_name: str | None = None,
        client=None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.SENDGRID_API_KEY
        self._from_email = from_email or settings.SENDGRID_FROM_EMAIL
        self._from_name = from_name or settings.SENDGRID_FROM_NAME
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key) or self._client is not None

    def _get_client(self):
        """Lazy-initialize the SendGrid client."""
        if self._client is None:
            self._client = SendGridAPIClient(self._api_key)
            logger.info("SendGrid client initialized")
        return self._client

    def build_message(self, report: PatientReport, to_email: str) -> Mail:
        dx = report.diagnosis
        subject = (
            f"New Patient Consultation - {report.patient.name or report.patient.patient_id}"
            f" ({dx.urgency.value.upper()} priority)"
        )
        return Mail(
            from_email=Email(self._from_email, self._from_name),
            to_emails=To(to_email),
            subject=subject,
            plain_text_content=render_full_report(report),
            html_content=render_html_report(report),
        )

    async def send(self, report: PatientReport) -> DeliveryResult:
        to_email = report.doctor.email or ""
        if not self.is_configured:
            return self.skip("SENDGRID_API_KEY not set", to_email)
        if not to_email:
            return self.skip(f"Dr. {report.doctor.name} has no email address")

        try:
            message = self.build_message(report, to_email)
            sg_response = await asyncio.to_thread(self._get_client().send, message)
        except Exception as exc:
            logger.error("Email send error for %s: %s", report.consultation_id, exc)
            return DeliveryResult(
                success=False,
                channel=self.channel_name,
                recipient=to_email,
                error=str(exc),
            )

        status_code = sg_response.status_code
        if 200 <= status_code < 300:
            logger.info(
                "Report %s emailed to %s (status=%d)",
                report.consultation_id, to_email, status_code,
            )
            return DeliveryResult(
                success=True, channel=self.channel_name, recipient=to_email
            )

        logger.error(
            "Email send failed: status=%d body=%s", status_code, sg_response.body
        )
        return DeliveryResult(
            success=False,
            channel=self.channel_name,
            recipient=to_email,
            error=f"SendGrid returned status {status_code}",
        )
