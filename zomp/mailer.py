"""
Outbound email for the verification and password-reset flows.

Messages are delivered over SMTP from a worker thread so the event loop is
never blocked. Delivery is best effort: failures are logged and reported
as ``False`` but never raised, so an SMTP outage cannot fail the request
that triggered the email. With no ``SMTP_HOST`` configured the message is
logged and skipped.
"""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from starlette.concurrency import run_in_threadpool

from zomp.config import settings
from zomp.models import User
from zomp.security import issue_token

logger = logging.getLogger(__name__)

_HTML_TEMPLATE = """\
<h1>Hello There!</h1>
<p>{intro}</p>
<p>{action}</p>
<p><a href="{link}" target="_blank">{label}</a></p>
<p>Sincerely,<br>The Zomp Team</p>
"""

_TEXT_TEMPLATE = """\
Hello There!

{intro}
{action}

{link}

Sincerely,
The Zomp Team
"""


def _send_via_smtp(to_addr: str, subject: str, text_body: str, html_body: str) -> None:
    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = settings.EMAIL_FROM
    message["To"] = to_addr
    message.attach(MIMEText(text_body, "plain", "utf-8"))
    message.attach(MIMEText(html_body, "html", "utf-8"))

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as server:
        if settings.SMTP_USER:
            server.starttls()
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        server.sendmail(settings.EMAIL_FROM, [to_addr], message.as_string())


async def send_email(to_addr: str, subject: str, text_body: str, html_body: str) -> bool:
    if not settings.SMTP_HOST:
        logger.info("SMTP not configured, skipping email %r to %s", subject, to_addr)
        return False
    try:
        await run_in_threadpool(_send_via_smtp, to_addr, subject, text_body, html_body)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Email %r to %s failed: %s", subject, to_addr, exc)
        return False
    logger.info("Email %r sent to %s", subject, to_addr)
    return True


def _render(intro: str, action: str, link: str, label: str) -> tuple[str, str]:
    text_body = _TEXT_TEMPLATE.format(intro=intro, action=action, link=link)
    html_body = _HTML_TEMPLATE.format(intro=intro, action=action, link=link, label=label)
    return text_body, html_body


async def send_verify_email(user: User) -> bool:
    token = issue_token(user)
    link = f"{settings.CLIENT_ORIGIN}/verify/{user.id}/{token}"
    text_body, html_body = _render(
        "Thank you for using Zomp!",
        "You can verify your email by clicking on the following link:",
        link,
        "Verify Your Email",
    )
    return await send_email(user.email, "Verify Your Zomp Account Email", text_body, html_body)


async def send_forgot_password_email(user: User) -> bool:
    token = issue_token(user)
    link = f"{settings.CLIENT_ORIGIN}/reset-password/{user.id}/{token}"
    text_body, html_body = _render(
        f"We received a request to reset the password for the Zomp account associated with {user.email}.",
        "You can reset your password by clicking on the following link:",
        link,
        "Reset Your Password",
    )
    return await send_email(user.email, "Reset Your Zomp Password", text_body, html_body)
