"""Send item notifications via SMTP (Gmail app-password friendly).

The Markdown body is rendered to inline-styled HTML with a plain-text
alternative.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

import markdown

from hnwatch.errors import TransportError
from hnwatch.notifier import DeliveryResult, Message

logger = logging.getLogger(__name__)

_HTML_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"></head>
<body style="margin:0; padding:16px; background-color:#f6f6ef;
             font-family:Verdana,Geneva,sans-serif; font-size:14px; color:#222;">
{body}
</body>
</html>
"""

_STYLE_OVERRIDES = {
    "h2": "font-size:17px; font-weight:600; margin:0 0 6px 0; color:#111;",
    "a": "color:#ff6600; text-decoration:none;",
    "ul": "padding-left:18px; margin:8px 0;",
    "em": "color:#828282;",
}


def _md_to_html(md_text: str) -> str:
    """Convert Markdown to email-safe HTML with inline styles."""
    body = markdown.markdown(md_text, output_format="html")
    for tag, style in _STYLE_OVERRIDES.items():
        body = body.replace(f"<{tag}>", f'<{tag} style="{style}">')
        body = body.replace(f"<{tag} ", f'<{tag} style="{style}" ')
    return _HTML_TEMPLATE.format(body=body)


def send_email(
    *,
    smtp_host: str,
    smtp_port: int,
    username: str,
    password: str,
    to_addrs: list[str] | tuple[str, ...] | str,
    subject: str,
    body_text: str,
) -> None:
    """Send one multipart/alternative email over STARTTLS. Blocking."""
    recipients = [to_addrs] if isinstance(to_addrs, str) else list(to_addrs)

    msg = MIMEMultipart("alternative")
    msg["From"] = username
    msg["To"] = ", ".join(recipients)
    msg["Subject"] = subject
    msg["Message-ID"] = make_msgid(domain="hnwatch")
    msg.attach(MIMEText(body_text, "plain", "utf-8"))
    msg.attach(MIMEText(_md_to_html(body_text), "html", "utf-8"))

    with smtplib.SMTP(smtp_host, smtp_port, timeout=30) as server:
        server.ehlo()
        server.starttls()
        server.ehlo()
        server.login(username, password)
        server.sendmail(username, recipients, msg.as_string())


class EmailTransport:
    """One email per item. The blocking SMTP session runs in a worker thread."""

    name = "email"

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        username: str,
        password: str,
        to_addrs: list[str] | tuple[str, ...],
        subject_prefix: str = "[HN]",
    ) -> None:
        if not (username and password and to_addrs):
            raise ValueError("SMTP_USERNAME, SMTP_PASSWORD and EMAIL_TO are required.")
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._username = username
        self._password = password
        self._to_addrs = tuple(to_addrs)
        self._subject_prefix = subject_prefix

    async def send(self, message: Message) -> DeliveryResult:
        subject = f"{self._subject_prefix} {message.subject}".strip()
        try:
            await asyncio.to_thread(
                send_email,
                smtp_host=self._smtp_host,
                smtp_port=self._smtp_port,
                username=self._username,
                password=self._password,
                to_addrs=self._to_addrs,
                subject=subject,
                body_text=message.markdown,
            )
        except (smtplib.SMTPException, OSError) as exc:
            raise TransportError(f"SMTP send to {self._smtp_host} failed: {exc}") from exc
        logger.info("Emailed item %d to %s", message.item_id, ", ".join(self._to_addrs))
        return DeliveryResult(ok=True)
