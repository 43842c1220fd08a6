from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Any, Protocol

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from .config import settings
from .errors import ConfigurationError, MailerUnavailable

logger = logging.getLogger("centers.mailer")

# templates come from system_settings and are untrusted input
_templates = SandboxedEnvironment(autoescape=True, undefined=StrictUndefined)


def render_template(source: str, context: dict[str, Any]) -> str:
    try:
        return _templates.from_string(source).render(**context)
    except TemplateError as exc:
        raise ConfigurationError(f"template rendering failed: {exc}") from exc


def split_recipients(receiver: str) -> list[str]:
    return [r.strip() for r in receiver.split(";") if r.strip()]


class Mailer(Protocol):
    def send(self, receiver: str, subject: str, content_type: str, body: str) -> None:
        ...


@dataclass
class LogMailer:
    sent: list[dict[str, str]] = field(default_factory=list)

    def send(self, receiver: str, subject: str, content_type: str, body: str) -> None:
        logger.info("mail to %s: %s (%d bytes %s)", receiver, subject, len(body), content_type)
        self.sent.append({"receiver": receiver, "subject": subject, "content_type": content_type, "body": body})


@dataclass
class SmtpMailer:
    host: str
    port: int = 587
    username: str | None = None
    password: str | None = None
    sender: str = "noreply@localhost"
    use_tls: bool = True
    use_ssl: bool = False
    timeout: float = 30.0

    def _message(self, receiver: str, subject: str, content_type: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(split_recipients(receiver))
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid()
        subtype = content_type.split("/", 1)[1] if "/" in content_type else "plain"
        msg.set_content(body, subtype=subtype)
        return msg

    def send(self, receiver: str, subject: str, content_type: str, body: str) -> None:
        if not self.host:
            raise MailerUnavailable("SMTP_HOST must be configured for the smtp mail backend")
        if not split_recipients(receiver):
            raise MailerUnavailable("no recipient address")
        msg = self._message(receiver, subject, content_type, body)
        try:
            if self.use_ssl:
                context = ssl.create_default_context()
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                    if self.username and self.password:
                        server.login(self.username, self.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.ehlo()
                    if self.use_tls:
                        server.starttls(context=ssl.create_default_context())
                    if self.username and self.password:
                        server.login(self.username, self.password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.exception("mail delivery to %s failed", receiver)
            raise MailerUnavailable(str(exc)) from exc


_mailer: Mailer | None = None


def get_mailer() -> Mailer:
    global _mailer
    if _mailer is None:
        mode = settings.MAIL_BACKEND
        if mode == "smtp":
            _mailer = SmtpMailer(
                host=settings.SMTP_HOST,
                port=settings.SMTP_PORT,
                username=settings.SMTP_USER or None,
                password=settings.SMTP_PASSWORD or None,
                sender=settings.SMTP_FROM,
                use_tls=settings.SMTP_USE_TLS,
                use_ssl=settings.SMTP_USE_SSL,
                timeout=settings.SMTP_TIMEOUT_SECS,
            )
        elif mode == "log":
            _mailer = LogMailer()
        else:
            raise RuntimeError(f"Unsupported MAIL_BACKEND '{mode}'")
    return _mailer
