"""
Mail service - account verification, password reset and OTP mails

SMTP is blocking, so sends run in a worker thread. With mail disabled
(development, tests) the message is logged instead of sent.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from copilot.config import settings
from copilot.errors import UpstreamFailure

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        enabled: Optional[bool] = None,
    ):
        self.host = host or settings.mail_host
        self.port = port or settings.mail_port
        self.user = user or settings.mail_user
        self.password = password or settings.mail_password
        self.enabled = settings.mail_enabled if enabled is None else enabled

    async def send(self, to: str, subject: str, html: str) -> None:
        message = EmailMessage()
        message["From"] = f"{settings.mail_sender_name} <{self.user}>"
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html, subtype="html")

        if not self.enabled:
            logger.info(f"Mail disabled, not sending '{subject}' to {to}")
            return

        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send '{subject}' to {to}: {e}")
            raise UpstreamFailure("Failed to send email") from e

        logger.info(f"Sent '{subject}' to {to}")

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
            smtp.starttls()
            if self.user:
                smtp.login(self.user, self.password or "")
            smtp.send_message(message)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------
    async def send_verification(self, to: str, pending_id: str) -> None:
        link = f"{settings.site_url}/signup/pending/{pending_id}"
        await self.send(
            to,
            f"{settings.app_name} - Verify your email",
            f"""<p>Welcome to {settings.app_name}.</p>
<p>Confirm your email address to finish creating your account:</p>
<p><a href="{link}">{link}</a></p>
<p>The link expires in one hour.</p>""",
        )

    async def send_reset(self, to: str, user_id: str, secret: str) -> None:
        link = f"{settings.site_url}/forgot/set/{user_id}/{secret}"
        await self.send(
            to,
            f"{settings.app_name} - Reset your password",
            f"""<p>Someone asked to reset the password of this account.</p>
<p>Choose a new password here:</p>
<p><a href="{link}">{link}</a></p>
<p>If it was not you, ignore this mail.</p>""",
        )

    async def send_otp(self, to: str, otp: str) -> None:
        await self.send(
            to,
            f"{settings.app_name} - Your login code",
            f"""<p>Your one-time login code is</p>
<h2>{otp}</h2>
<p>It expires in one hour.</p>""",
        )
