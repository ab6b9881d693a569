from __future__ import annotations

import html
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional, Protocol

from authcore.logging import get_logger, redact_address
from authcore.storage.models import Account

logger = get_logger(__name__)


class Notifier(Protocol):
    def send_verification_email(self, account: Account, verification_url: str) -> bool: ...


class EmailService:
    """SMTP notifier for account verification mail.

    When no SMTP host or sender is configured the message is logged instead
    of sent, which is what local development and tests rely on.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "authcore",
        timeout: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _build_message(self, to_addr: str, subject: str, text_body: str, html_body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_addr
        msg.set_content(text_body)
        msg.add_alternative(html_body, subtype="html")
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)
        else:
            with smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
            ) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

    def _send(self, to_addr: str, subject: str, text_body: str, html_body: str) -> bool:
        recipient = redact_address(to_addr)
        if not self.is_configured:
            logger.info("email_dev_mode", recipient=recipient, subject=subject)
            return True
        msg = self._build_message(to_addr, subject, text_body, html_body)
        try:
            self._deliver(msg)
        except smtplib.SMTPAuthenticationError as exc:
            logger.error(
                "email_auth_failed",
                recipient=recipient,
                host=self.smtp_host,
                smtp_code=getattr(exc, "smtp_code", None),
            )
            return False
        except smtplib.SMTPRecipientsRefused as exc:
            logger.error("email_recipient_refused", recipient=recipient, error=str(exc))
            return False
        except smtplib.SMTPException as exc:
            logger.error(
                "email_smtp_error",
                recipient=recipient,
                host=self.smtp_host,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        except (ssl.SSLError, OSError) as exc:
            # Connection refused, DNS failure, TLS handshake and socket timeouts
            logger.error(
                "email_connect_failed",
                recipient=recipient,
                host=self.smtp_host,
                port=self.smtp_port,
                error=str(exc),
            )
            return False
        logger.info("email_sent", recipient=recipient, subject=subject)
        return True

    def send_verification_email(self, account: Account, verification_url: str) -> bool:
        subject = "Confirm your account"
        text_body = (
            f"Hi {account.username},\n\n"
            "Confirm your email address to finish creating your account:\n\n"
            f"{verification_url}\n\n"
            "If you did not sign up, you can ignore this message.\n"
        )
        html_body = (
            f"<p>Hi {html.escape(account.username)},</p>"
            "<p>Confirm your email address to finish creating your account:</p>"
            f'<p><a href="{html.escape(verification_url)}">Verify my account</a></p>'
            "<p>If you did not sign up, you can ignore this message.</p>"
        )
        return self._send(account.email, subject, text_body, html_body)
