# pensive/emailer.py
from typing import Iterable, List, Optional
import re
import smtplib, ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from . import config
from .extraction import html_to_text
from .logging_setup import get_logger

logger = get_logger("pensive.emailer")

_ADDRESS = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def send_email(
    subject: str,
    html: str,
    to: Iterable[str],
    reply_to: Optional[str] = None,
) -> bool:
    """
    Returns True on success, False on failure.
    Honors SEND_MODE = console | smtp
    """
    recipients = [r.strip() for r in to if r and _ADDRESS.match(r.strip())]
    if not recipients:
        logger.warning("EMAIL_NO_RECIPIENTS", extra={"subject": subject})
        return False

    mode = config.SEND_MODE
    msg = _build_multipart_message(subject, config.EMAIL_FROM, recipients, html, html_to_text(html), reply_to)

    try:
        if mode == "smtp":
            _send_via_smtp(msg, recipients)
        else:
            if mode != "console":
                logger.warning(f"Unknown SEND_MODE={mode!r}; falling back to console.")
            _send_console(subject, recipients, html)
    except (smtplib.SMTPException, OSError, RuntimeError) as e:
        logger.exception("EMAIL_SEND_FAILED", extra={"mode": mode, "error": type(e).__name__})
        return False

    logger.info("EMAIL_SENT", extra={"mode": mode, "recipients": len(recipients)})
    return True


def _build_multipart_message(subject, sender, recipients, html, text, reply_to) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    if reply_to:
        msg["Reply-To"] = reply_to
    msg.attach(MIMEText(text, "plain", "utf-8"))
    msg.attach(MIMEText(html, "html", "utf-8"))
    return msg


def _send_console(subject: str, recipients: List[str], html: str) -> None:
    preview = html if len(html) < 1200 else html[:1200] + "…"
    logger.info(f"[EMAIL console]\nTo: {', '.join(recipients)}\nSubject: {subject}\n---\n{preview}\n---")


def _send_via_smtp(msg: MIMEMultipart, recipients: List[str]) -> None:
    if not config.SMTP_HOST:
        raise RuntimeError("SMTP_HOST missing while SEND_MODE=smtp")
    ctx = ssl.create_default_context()
    # Port 465 needs SMTP_SSL; everything else goes through STARTTLS when offered
    with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=config.EMAIL_TIMEOUT) as server:
        server.ehlo()
        if server.has_extn("starttls"):
            server.starttls(context=ctx)
            server.ehlo()
        if config.SMTP_USER:
            server.login(config.SMTP_USER, config.SMTP_PASS)
        server.sendmail(msg["From"], recipients, msg.as_string())
