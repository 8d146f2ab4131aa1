from __future__ import annotations
import asyncio
import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import Protocol

from jinja2 import Environment, FileSystemLoader, select_autoescape
from loguru import logger

from .confirmation import Confirmation
from .errors import NotificationError
from .helpers import to_ist_display


TEMPLATES_DIR = Path(__file__).parent / "templates"

_jinja = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


class Mailer(Protocol):
    def send(self, to: str, subject: str, html: str) -> None: ...


class SmtpMailer:
    """Blocking SMTP-over-SSL sender (Gmail with an app password)."""

    def __init__(self, *, host: str, port: int, user: str, password: str,
                 timeout: float = 20.0) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.user
        msg["To"] = to
        msg.set_content("This receipt is best viewed in an HTML mail client.")
        msg.add_alternative(html, subtype="html")
        with smtplib.SMTP_SSL(self.host, self.port,
                              timeout=self.timeout) as s:
            s.login(self.user, self.password)
            s.send_message(msg)


def render_receipt(confirmation: Confirmation,
                   form_url: str) -> tuple[str, str]:
    p = confirmation.petitioner
    subject = f"Payment Confirmed - {p['name']}"
    html = _jinja.get_template("receipt.html").render(
        p=p,
        display=confirmation.display,
        confirmed_by=confirmation.confirmed_by,
        confirmed_at=to_ist_display(p["confirmed_at"]),
        form_url=form_url,
    )
    return subject, html


class Notifier:
    def __init__(self, mailer: Mailer, *, form_url: str,
                 timeout: float = 20.0) -> None:
        self.mailer = mailer
        self.form_url = form_url
        self.timeout = timeout

    async def send_receipt(self, confirmation: Confirmation) -> None:
        to = confirmation.petitioner.get("email")
        if not to:
            raise NotificationError(
                f"petitioner {confirmation.petitioner['id']} has no email"
            )
        subject, html = render_receipt(confirmation, self.form_url)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.mailer.send, to, subject, html),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise NotificationError(
                f"mail to {to} timed out after {self.timeout}s"
            ) from e
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"mail to {to} failed: {e}") from e
        logger.info(f"Confirmation email sent to {to}")

    async def deliver(self, confirmation: Confirmation) -> None:
        """Post-commit hook: send the receipt, never raise.

        The confirmation is already committed when this runs, so a failed
        mail is only worth a log line.
        """
        pid = confirmation.petitioner.get("id")
        try:
            await self.send_receipt(confirmation)
        except NotificationError as e:
            logger.error(f"receipt for petitioner {pid} not sent: {e}")
        except Exception:
            logger.exception(f"receipt for petitioner {pid} not sent")
