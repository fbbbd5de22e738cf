"""
Email Service: transactional email through the SendGrid v3 HTTP API.

This module is responsible for:
1. Rendering invitation, notification and digest emails (HTML + text)
2. Posting them to SendGrid with a bounded timeout
3. Reporting delivery failures as EmailDeliveryError
"""

import html
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from ..core.config import get_settings
from ..models import EmailDigestQueue, NotificationType, PanelInvitation

logger = logging.getLogger(__name__)

SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class EmailConfig:
    """Email delivery configuration."""
    api_key: str | None = None
    from_email: str = "noreply@delphi-panels.app"
    from_name: str = "Delphi Panels"
    app_url: str = "http://localhost:5173"
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls) -> "EmailConfig":
        settings = get_settings()
        return cls(
            api_key=settings.sendgrid_api_key,
            from_email=settings.sendgrid_from_email,
            from_name=settings.sendgrid_from_name,
            app_url=settings.app_url.rstrip("/"),
            timeout_seconds=settings.email_timeout_seconds,
        )


class EmailDeliveryError(Exception):
    """The email provider rejected the message or could not be reached."""
    pass


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str


# =============================================================================
# EMAIL SERVICE
# =============================================================================


class EmailService:
    """Sends rendered emails through SendGrid."""

    def __init__(
        self,
        config: EmailConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config or EmailConfig.from_settings()
        self._transport = transport

    @property
    def config(self) -> EmailConfig:
        return self._config

    @property
    def is_configured(self) -> bool:
        return bool(self._config.api_key)

    async def send(self, message: EmailMessage) -> None:
        """Send one email. Raises EmailDeliveryError on any failure."""
        if not self.is_configured:
            raise EmailDeliveryError("SendGrid is not configured")

        payload = {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {"email": self._config.from_email, "name": self._config.from_name},
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.text},
                {"type": "text/html", "value": message.html},
            ],
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._config.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    SENDGRID_API_URL,
                    headers={"Authorization": f"Bearer {self._config.api_key}"},
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"SendGrid request failed: {e}") from e

        if response.status_code >= 300:
            raise EmailDeliveryError(
                f"SendGrid returned {response.status_code}: {response.text[:200]}"
            )

        logger.info(f"[EMAIL] Sent '{message.subject}' to {message.to}")


# =============================================================================
# TEMPLATES
# =============================================================================


_LAYOUT = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background-color: #2563eb; color: white; padding: 20px; text-align: center; border-radius: 8px 8px 0 0;">
        <h1 style="margin: 0; font-size: 20px;">{heading}</h1>
    </div>
    <div style="background-color: #f9fafb; padding: 30px; border-radius: 0 0 8px 8px;">
        {body}
    </div>
    <div style="text-align: center; margin-top: 30px; font-size: 14px; color: #6b7280;">
        <p>This is an automated email from {product}.<br>Please do not reply to this email.</p>
    </div>
</body>
</html>
"""

_BUTTON = (
    '<p style="text-align: center;"><a href="{href}" style="display: inline-block; '
    'background-color: #2563eb; color: white; padding: 12px 24px; text-decoration: none; '
    'border-radius: 6px; margin: 20px 0;">{label}</a></p>'
)

_TYPE_LABELS = {
    NotificationType.TOPIC_ASSIGNED: "New topic",
    NotificationType.NEW_FEEDBACK: "New feedback",
    NotificationType.ROUND_CLOSED: "Round closed",
    NotificationType.CONSENSUS_REACHED: "Consensus reached",
    NotificationType.INVITATION: "Invitation",
}


def _page(heading: str, body: str, product: str) -> str:
    return _LAYOUT.format(
        heading=html.escape(heading),
        body=body,
        product=html.escape(product),
    )


def _link_for(app_url: str, data: dict[str, Any]) -> str:
    if data.get("topicId"):
        return f"{app_url}/topics/{data['topicId']}"
    if data.get("panelId"):
        return f"{app_url}/panels/{data['panelId']}"
    return f"{app_url}/notifications"


def build_invitation_email(
    invitation: PanelInvitation,
    config: EmailConfig,
    expiry_days: int = 7,
) -> EmailMessage:
    """Render the panel invitation email."""
    accept_url = f"{config.app_url}/invitations/{invitation.token}"
    inviter = invitation.invited_by_name or "A panel administrator"
    panel_name = invitation.panel_name

    personal_message = ""
    if invitation.message:
        personal_message = (
            "<p><strong>Personal message:</strong></p>"
            '<p style="background-color: white; padding: 15px; border-left: 4px solid #2563eb; margin: 20px 0;">'
            f"{html.escape(invitation.message)}</p>"
        )

    body = f"""
        <h2>You're Invited to Join as an Expert</h2>
        <p>Dear Expert,</p>
        <p>{html.escape(inviter)} has invited you to join the <strong>{html.escape(panel_name)}</strong> panel as an expert contributor.</p>
        {personal_message}
        <p>As an expert panel member, you will:</p>
        <ul>
            <li>Provide anonymous feedback on the topics under discussion</li>
            <li>Participate in structured rounds of discussion</li>
            <li>Help the panel reach consensus</li>
        </ul>
        {_BUTTON.format(href=html.escape(accept_url), label="Accept Invitation")}
        <p style="font-size: 14px; color: #6b7280;">
            This invitation will expire in {expiry_days} days. If you have any questions, please contact the panel administrator.
        </p>
    """

    text_lines = [
        f"You're Invited to Join {panel_name} as an Expert",
        "",
        "Dear Expert,",
        "",
        f"{inviter} has invited you to join the {panel_name} panel as an expert contributor.",
    ]
    if invitation.message:
        text_lines += ["", f"Personal message: {invitation.message}"]
    text_lines += [
        "",
        "As an expert panel member, you will:",
        "- Provide anonymous feedback on the topics under discussion",
        "- Participate in structured rounds of discussion",
        "- Help the panel reach consensus",
        "",
        f"Accept your invitation here: {accept_url}",
        "",
        f"This invitation will expire in {expiry_days} days.",
        "",
        f"This is an automated email from {config.from_name}.",
    ]

    return EmailMessage(
        to=invitation.email,
        subject=f"Invitation to join {panel_name} as an Expert",
        html=_page(config.from_name, body, config.from_name),
        text="\n".join(text_lines),
    )


def build_notification_email(
    to: str,
    recipient_name: str,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: dict[str, Any],
    config: EmailConfig,
) -> EmailMessage:
    """Render a single immediate notification email."""
    link = _link_for(config.app_url, data)
    label = _TYPE_LABELS.get(notification_type, "Update")

    body = f"""
        <p>Hi {html.escape(recipient_name)},</p>
        <h2 style="font-size: 16px;">{html.escape(title)}</h2>
        <p>{html.escape(message)}</p>
        {_BUTTON.format(href=html.escape(link), label="Open Delphi")}
        <hr style="border: none; border-top: 1px solid #E5E7EB; margin: 24px 0;">
        <p style="color: #9CA3AF; font-size: 12px;">
            <a href="{html.escape(config.app_url)}/settings/notifications" style="color: #6B7280;">Manage notification preferences</a>
        </p>
    """

    text = f"Hi {recipient_name},\n\n{title}\n\n{message}\n\n{link}\n"

    return EmailMessage(
        to=to,
        subject=f"[{label}] {title}",
        html=_page(label, body, config.from_name),
        text=text,
    )


def build_digest_email(
    to: str,
    frequency: str,
    entries: Sequence[EmailDigestQueue],
    config: EmailConfig,
) -> EmailMessage:
    """Render one digest email covering every queued entry for a user."""
    period = "Daily" if frequency == "daily" else "Weekly"
    count = len(entries)

    items_html = "".join(
        f'<li style="margin-bottom: 12px;"><strong>{html.escape(e.title)}</strong><br>'
        f'<span style="color: #6b7280;">{html.escape(e.message)}</span> '
        f'<a href="{html.escape(_link_for(config.app_url, e.data or {}))}">View</a></li>'
        for e in entries
    )
    body = f"""
        <p>Here is what happened on your panels:</p>
        <ul style="padding-left: 20px;">{items_html}</ul>
        {_BUTTON.format(href=html.escape(config.app_url + "/notifications"), label="Open Delphi")}
    """

    text_items = "\n".join(
        f"- {e.title}: {e.message} ({_link_for(config.app_url, e.data or {})})"
        for e in entries
    )
    noun = "update" if count == 1 else "updates"

    return EmailMessage(
        to=to,
        subject=f"Your {period} Delphi digest: {count} {noun}",
        html=_page(f"{period} Digest", body, config.from_name),
        text=f"Here is what happened on your panels:\n\n{text_items}\n",
    )
