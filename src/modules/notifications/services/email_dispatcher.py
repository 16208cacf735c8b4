"""
Outbound email for the signature workflow.

The dispatcher decides subject and body; a transport decides how the
message leaves the process. Without SMTP settings messages are only
logged, which is what development and tests use.
"""
import logging
import os
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import settings

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates", "email")

jinja_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html", "xml"]),
)


@dataclass
class EmailMessage:
    to: str
    subject: str
    text: str
    html: str


class LoggingTransport:
    """Development transport: writes the message to the log."""

    def send(self, message: EmailMessage) -> None:
        logger.info("EMAIL to=%s subject=%r", message.to, message.subject)
        logger.debug("EMAIL body:\n%s", message.text)


class SmtpTransport:
    def __init__(self, host: str, port: int, user: str, password: str,
                 mail_from: str, starttls: bool = True):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.mail_from = mail_from
        self.starttls = starttls

    def send(self, message: EmailMessage) -> None:
        msg = MIMEMultipart('alternative')
        msg['From'] = f"SignFlow <{self.mail_from}>"
        msg['To'] = message.to
        msg['Subject'] = message.subject
        msg.attach(MIMEText(message.text, 'plain'))
        msg.attach(MIMEText(message.html, 'html'))

        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.starttls:
                server.starttls()
            if self.user:
                server.login(self.user, self.password)
            server.send_message(msg)
        logger.info("Email sent to %s", message.to)


def build_transport():
    if settings.SMTP_HOST:
        return SmtpTransport(
            settings.SMTP_HOST,
            settings.SMTP_PORT,
            settings.SMTP_USER,
            settings.SMTP_PASSWORD,
            settings.MAIL_FROM,
            settings.SMTP_STARTTLS,
        )
    logger.warning("SMTP_HOST not configured; emails will only be logged")
    return LoggingTransport()


class EmailDispatcher:
    """Renders workflow emails from Jinja2 templates and hands them to a transport.

    Signer supplied values (names, decline reasons) end up in other people's
    inboxes, so HTML bodies are always rendered with autoescaping.
    """

    def __init__(self, transport=None, frontend_url: str = None):
        self.transport = transport or build_transport()
        self.frontend_url = (frontend_url or settings.FRONTEND_URL).rstrip("/")

    def sign_url(self, token: str) -> str:
        return f"{self.frontend_url}/sign/{token}"

    def _send(self, to: str, subject: str, template_name: str, text: str, **context):
        template = jinja_env.get_template(template_name)
        html = template.render(subject=subject, year=datetime.now().year, **context)
        self.transport.send(EmailMessage(to=to, subject=subject, text=text, html=html))

    def send_signature_request_email(self, signer_email: str, signer_name: str,
                                     document_title: str, requester_name: str, token: str):
        sign_url = self.sign_url(token)
        text = f"""Hello {signer_name},

{requester_name} has requested your signature on "{document_title}".

Please review the document carefully and sign if you agree with the terms.
This is a legally binding signature request.

Review & Sign Document: {sign_url}
"""
        self._send(
            signer_email,
            f"Signature Requested: {document_title}",
            "signature_request.html",
            text,
            recipient_name=signer_name,
            requester_name=requester_name,
            document_title=document_title,
            sign_url=sign_url,
        )

    def send_signature_reminder_email(self, signer_email: str, signer_name: str,
                                      document_title: str, token: str):
        sign_url = self.sign_url(token)
        text = f"""Hello {signer_name},

This is a friendly reminder that your signature is still pending on "{document_title}".

Sign Now: {sign_url}
"""
        self._send(
            signer_email,
            f"Reminder: Signature Pending - {document_title}",
            "signature_reminder.html",
            text,
            recipient_name=signer_name,
            document_title=document_title,
            sign_url=sign_url,
        )

    def send_signature_declined_email(self, recipient_email: str, recipient_name: str,
                                      document_title: str, signer_name: str, reason: str):
        text = f"""Hello {recipient_name},

{signer_name} declined to sign "{document_title}".

Reason: {reason}

The signature request has been closed.
"""
        self._send(
            recipient_email,
            f"Signature Declined: {document_title}",
            "signature_declined.html",
            text,
            recipient_name=recipient_name,
            signer_name=signer_name,
            document_title=document_title,
            reason=reason,
        )

    def send_completion_email(self, recipient_email: str, recipient_name: str,
                              document_title: str, certificate_ref: str, integrity_digest: str):
        text = f"""Hello {recipient_name},

All parties have signed "{document_title}".

Integrity digest: {integrity_digest}

Certificate of Completion: {certificate_ref}
"""
        self._send(
            recipient_email,
            f"Fully Signed: {document_title}",
            "signature_completed.html",
            text,
            recipient_name=recipient_name,
            document_title=document_title,
            certificate_ref=certificate_ref,
            integrity_digest=integrity_digest,
        )
