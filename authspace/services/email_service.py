import logging
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid

from authspace.core.config import get_settings, get_smtp_ctx

logger = logging.getLogger(__name__)


def send_mail(to_email: str, subject: str, text: str, html: str | None = None) -> str:
    """Deliver one message and return its Message-ID."""
    settings = get_settings()
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.mail_from
    msg["To"] = to_email
    msg["Message-ID"] = make_msgid(domain=settings.mail_from.partition("@")[2] or None)
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")

    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=20) as smtp:
        smtp.ehlo()
        if settings.smtp_starttls:
            smtp.starttls(context=get_smtp_ctx())
            smtp.ehlo()
        if settings.smtp_username and settings.smtp_password:
            smtp.login(settings.smtp_username, settings.smtp_password)
        smtp.send_message(msg)
    return msg["Message-ID"]


def send_invitation(to_email: str, link: str) -> str:
    message_id = send_mail(
        to_email,
        "[authspace] Invitation",
        f"Hi,\n\nYou have been invited. Create your account here: {link}\n",
        f"""<p>Hi,</p>
            <p>You have been invited. Follow this link to create your account:
            <a href=\"{link}\">{link}</a></p>
            <p>If you did not expect this email, you can safely ignore it.</p>""",
    )
    logger.info("Invitation mail sent: message_id=%s", message_id)
    return message_id


def send_password_reset(to_email: str, link: str) -> str:
    message_id = send_mail(
        to_email,
        "[authspace] Please reset your password",
        "We heard that you lost your password.\n\n"
        f"Use the following link to choose a new one: {link}\n\n"
        "If you did not ask for this, you can safely ignore this email.\n",
        f"""<p>We heard that you lost your password.</p>
            <p>Use the following link to choose a new one: <a href=\"{link}\">{link}</a></p>
            <p>If you did not ask for this, you can safely ignore this email.</p>""",
    )
    logger.info("Password reset mail sent: message_id=%s", message_id)
    return message_id


def send_password_changed(to_email: str) -> str:
    message_id = send_mail(
        to_email,
        "[authspace] Password changed",
        f"The password of the {to_email} account has been changed.\n",
    )
    logger.info("Password changed mail sent: message_id=%s", message_id)
    return message_id
