"""Email delivery for rebalance alerts."""
from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from ..config import EmailConfig

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Vault rebalance required"


class EmailNotifier:
    """Send rebalance alerts over SMTP with STARTTLS."""

    def __init__(self, config: EmailConfig) -> None:
        self.alert_email = config.alert_email
        self.smtp_server = config.smtp_server
        self.smtp_port = config.smtp_port
        self.sender_email = config.sender_email
        self.sender_password = config.sender_password

    def _build_message(self, body: str, subject: str) -> MIMEMultipart:
        msg = MIMEMultipart()
        msg["From"] = self.sender_email
        msg["To"] = self.alert_email
        msg["Subject"] = subject or DEFAULT_SUBJECT
        msg.attach(MIMEText(body, "plain", "utf-8"))
        return msg

    def _deliver(self, msg: MIMEMultipart) -> None:
        server = smtplib.SMTP(self.smtp_server, self.smtp_port)
        try:
            server.starttls()
            server.login(self.sender_email, self.sender_password)
            server.send_message(msg)
        finally:
            server.quit()

    async def send_alert(self, message: str, subject: str = "") -> bool:
        if not self.alert_email:
            logger.debug("No alert email configured, skipping email")
            return False
        if not self.sender_email or not self.sender_password:
            logger.warning("Email credentials not configured")
            return False

        msg = self._build_message(message, subject)
        try:
            # smtplib blocks; keep the simulation loop responsive.
            await asyncio.to_thread(self._deliver, msg)
        except (OSError, smtplib.SMTPException) as e:
            logger.error("Failed to send rebalance email: %s", e)
            return False
        logger.info("Rebalance email sent to %s", self.alert_email)
        return True

    async def send_log(self, message: str, silent: bool = True) -> bool:
        """Run summaries are not emailed."""
        return False
