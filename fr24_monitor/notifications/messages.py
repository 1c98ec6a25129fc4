from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import TYPE_CHECKING

from ..config import Configuration
from ..errors import EmailNotConfiguredError
from ..timestamps import format_for_display, zone_name

if TYPE_CHECKING:
    from .policy import RemediationDecision


TEST_EMAIL_SUBJECT = "FR24 Monitor Test Email"


@dataclass(frozen=True)
class ComposedEmail:
    subject: str
    body: str
    from_email: str
    from_name: str
    to_email: str


def alert_subject(config: Configuration, decision: "RemediationDecision") -> str:
    subject = (config.email.subject or "").strip() or "FR24 Monitor Alert"
    if decision.dry_run:
        subject = f"[DRY RUN] {subject}"
    return subject


def alert_body(decision: "RemediationDecision", now: datetime, zone: tzinfo, hostname: str = "") -> str:
    lines = [
        f"FR24 Monitor decided to {decision.action_class.replace('_', ' ')}.",
        "",
        f"Reason: {decision.reason}",
        f"Tracked aircraft: {decision.tracked_aircraft} (threshold {decision.threshold})",
        f"Uptime: {decision.uptime_hours:.1f} hours",
        f"Endpoint: {decision.endpoint or 'N/A'}",
        f"Time: {format_for_display(now, zone)} ({zone_name(zone)})",
    ]
    if hostname:
        lines.append(f"System: {hostname}")
    sample = decision.sample
    if sample is not None:
        lines += [
            "",
            "Latest sample:",
            f"- Taken: {format_for_display(sample.timestamp, zone)}",
            f"- Tracked: {sample.tracked_aircraft}",
            f"- Uploaded: {sample.uploaded_aircraft if sample.uploaded_aircraft is not None else 'N/A'}",
            f"- Feed status: {sample.feed_status or 'N/A'}",
        ]
    if decision.dry_run:
        lines += ["", "Dry run mode is on: no action was taken."]
    return "\n".join(lines) + "\n"


def build_test_email(config: Configuration, now: datetime, zone: tzinfo, hostname: str) -> ComposedEmail:
    """Compose (never send) the message used to check the SMTP settings."""
    email = config.email
    if not (email.enabled or config.notifications.email_enabled):
        raise EmailNotConfiguredError("Email alerts are not enabled. Please enable them in the configuration.")
    missing = [name for name in ("smtp_host", "to_email") if not str(getattr(email, name) or "").strip()]
    if missing:
        raise EmailNotConfiguredError(f"Email configuration incomplete: missing {', '.join(missing)}")

    body = "\n".join(
        [
            "This is a test email to verify your FR24 Monitor email configuration is working correctly.",
            "",
            f"Timestamp: {format_for_display(now, zone)}",
            f"System: {hostname}",
            f"Timezone: {zone_name(zone)}",
            "",
            "If you received this email, your FR24 Monitor email alerts are configured properly "
            "and will be sent when the system requires a reboot.",
            "",
            "Configuration tested:",
            f"- SMTP Server: {email.smtp_host}:{email.smtp_port}",
            f"- From: {email.from_email}",
            f"- To: {email.to_email}",
            f"- Security: {email.smtp_security.upper()}",
            "",
            "This is an automated test email from the FR24 Monitor system.",
        ]
    )
    return ComposedEmail(
        subject=TEST_EMAIL_SUBJECT,
        body=body + "\n",
        from_email=email.from_email,
        from_name=email.from_name,
        to_email=email.to_email,
    )
