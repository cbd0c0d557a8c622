"""
Report Agent — renders the specialist report and fans it out.

The fan-out is best effort: every registered channel is attempted, each
under its own timeout, and a failure on one channel never affects another.
The outcome is a per-channel boolean map, not an exception.
"""

from __future__ import annotations

import asyncio
import html
import logging

from pydantic import BaseModel, Field

from medinet import settings
from medinet.gateway.agents.specialty_mapper import GENERAL_MEDICINE, SpecialtyResolver
from medinet.gateway.channels import PatientReport, ReportChannel
from medinet.gateway.outcomes import priority_label

logger = logging.getLogger("gateway.agents.report")

EMAIL_CHANNEL = "email"
WHATSAPP_CHANNEL = "whatsapp"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Renderers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _patient_lines(report: PatientReport) -> list[str]:
    p = report.patient
    lines = [f"Name: {p.name or 'Unknown'}", f"Patient ID: {p.patient_id}"]
    if p.age is not None:
        lines.append(f"Age: {p.age}")
    if p.gender:
        lines.append(f"Gender: {p.gender}")
    if p.email:
        lines.append(f"Email: {p.email}")
    if p.phone:
        lines.append(f"Phone: {p.phone}")
    return lines


def render_full_report(report: PatientReport) -> str:
    """Long-form plain-text report for email."""
    dx = report.diagnosis
    appt = report.appointment
    sections = [
        "MEDICAL CONSULTATION REPORT",
        f"Consultation ID: {report.consultation_id}",
        f"Generated: {report.generated_at.strftime('%Y-%m-%d %H:%M UTC')}",
        "",
        "PATIENT INFORMATION",
        *_patient_lines(report),
        "",
        "PRELIMINARY DIAGNOSIS",
    ]
    for i, disease in enumerate(dx.diseases, 1):
        line = f"{i}. {disease.name} (confidence {disease.confidence}%, severity {disease.severity}/100)"
        sections.append(line)
        if disease.description:
            sections.append(f"   {disease.description}")
    sections += [
        "",
        f"Severity score: {dx.severity_score}/100",
        f"Urgency: {dx.urgency.value.upper()}",
        f"Specialty: {dx.specialty or GENERAL_MEDICINE}",
        f"Department: {SpecialtyResolver.describe(dx.specialty or GENERAL_MEDICINE)}",
        "",
        "APPOINTMENT",
        f"Doctor: Dr. {report.doctor.name} ({report.doctor.specialty})",
        f"Date: {appt.date.isoformat()}",
        f"Time: {appt.time}",
        f"Priority: {priority_label(appt.priority)}",
    ]
    if report.location is not None:
        loc = report.location
        sections += [
            "",
            "PATIENT LOCATION",
            f"Distance to clinic: {loc.distance_text}",
            f"Estimated travel time: {loc.duration_text}",
            f"Navigation: {loc.navigation_url}",
        ]
    sections += ["", "CONSULTATION TRANSCRIPT", *report.transcript]
    sections += [
        "",
        "NOTES",
        appt.notes or "-",
        "This report was generated by an AI screening assistant and is not a "
        "medical diagnosis.",
    ]
    return "\n".join(sections)


def render_short_report(report: PatientReport) -> str:
    """Compact summary for messaging channels."""
    dx = report.diagnosis
    appt = report.appointment
    lines = [
        "*New Patient Consultation*",
        f"Patient: {report.patient.name or report.patient.patient_id}",
        f"Likely condition: {dx.top_disease.name} ({dx.top_disease.confidence}%)",
        f"Urgency: {dx.urgency.value.upper()} (severity {dx.severity_score}/100)",
        f"Appointment: {appt.date.isoformat()} at {appt.time}",
        f"Priority: {priority_label(appt.priority)}",
    ]
    if report.location is not None:
        lines.append(
            f"Distance: {report.location.distance_text}, ETA {report.location.duration_text}"
        )
    if dx.recommended_actions:
        lines.append("Actions: " + "; ".join(dx.recommended_actions))
    lines.append(f"Consultation: {report.consultation_id}")
    return "\n".join(lines)


def render_html_report(report: PatientReport) -> str:
    dx = report.diagnosis
    appt = report.appointment
    esc = html.escape
    disease_rows = "".join(
        f"<tr><td>{esc(d.name)}</td><td>{d.confidence}%</td><td>{d.severity}</td></tr>"
        for d in dx.diseases
    )
    patient_items = "".join(f"<li>{esc(line)}</li>" for line in _patient_lines(report))
    transcript = "".join(f"<p>{esc(line)}</p>" for line in report.transcript)
    location = ""
    if report.location is not None:
        loc = report.location
        location = (
            "<h3>Patient Location</h3>"
            f"<p>Distance: {esc(loc.distance_text)}, ETA {esc(loc.duration_text)}</p>"
            f"<p><a href=\"{esc(loc.navigation_url)}\">Open navigation</a></p>"
        )
    return (
        "<html><body>"
        "<h2>Medical Consultation Report</h2>"
        f"<p>Consultation ID: {esc(report.consultation_id)}</p>"
        f"<h3>Patient</h3><ul>{patient_items}</ul>"
        "<h3>Preliminary Diagnosis</h3>"
        "<table><tr><th>Condition</th><th>Confidence</th><th>Severity</th></tr>"
        f"{disease_rows}</table>"
        f"<p>Severity score: {dx.severity_score}/100, urgency "
        f"<strong>{esc(dx.urgency.value.upper())}</strong></p>"
        "<h3>Appointment</h3>"
        f"<p>Dr. {esc(report.doctor.name)}, {esc(appt.date.isoformat())} at "
        f"{esc(appt.time)} ({esc(priority_label(appt.priority))})</p>"
        f"{location}"
        f"<h3>Transcript</h3>{transcript}"
        "</body></html>"
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Fan-out
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class NotificationResult(BaseModel):
    results: dict[str, bool] = Field(default_factory=dict)

    @property
    def email_sent(self) -> bool:
        return self.results.get(EMAIL_CHANNEL, False)

    @property
    def messaging_sent(self) -> bool:
        return self.results.get(WHATSAPP_CHANNEL, False)

    @property
    def sent_channels(self) -> list[str]:
        return [name for name, ok in self.results.items() if ok]

    @property
    def any_sent(self) -> bool:
        return any(self.results.values())


class NotificationFanout:

    def __init__(
        self,
        channels: list[ReportChannel] | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._channels: list[ReportChannel] = list(channels or [])
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.NOTIFICATION_TIMEOUT_SECONDS
        )

    def register(self, channel: ReportChannel) -> None:
        self._channels.append(channel)
        logger.info("Registered report channel: %s", channel.channel_name)

    @property
    def channels(self) -> list[ReportChannel]:
        return list(self._channels)

    def channel_status(self) -> dict[str, bool]:
        return {c.channel_name: c.is_configured for c in self._channels}

    async def _send_one(self, channel: ReportChannel, report: PatientReport) -> bool:
        try:
            result = await asyncio.wait_for(channel.send(report), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "%s delivery for %s timed out after %ss",
                channel.channel_name, report.consultation_id, self._timeout,
            )
            return False
        except Exception as exc:
            logger.error(
                "%s delivery for %s failed: %s",
                channel.channel_name, report.consultation_id, exc,
            )
            return False
        if not result.success and not result.skipped:
            logger.warning(
                "%s delivery for %s unsuccessful: %s",
                channel.channel_name, report.consultation_id, result.error,
            )
        return result.success

    async def send_report(self, report: PatientReport) -> NotificationResult:
        outcomes = await asyncio.gather(
            *(self._send_one(c, report) for c in self._channels)
        )
        result = NotificationResult(
            results={c.channel_name: ok for c, ok in zip(self._channels, outcomes)}
        )
        logger.info(
            "Report %s delivered via %s",
            report.consultation_id, result.sent_channels or "no channel",
        )
        return result

    @staticmethod
    def acknowledgement(result: NotificationResult) -> str:
        labels = {EMAIL_CHANNEL: "email", WHATSAPP_CHANNEL: "WhatsApp"}
        sent = [labels.get(name, name) for name in result.sent_channels]
        return (
            "Your consultation report has been sent to the specialist via "
            f"{' and '.join(sent)}."
        )
