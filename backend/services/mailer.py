"""
Deployment result notifications over SMTP.

Mail is best effort: every failure is logged and swallowed so it can never
fail the deployment it reports on.
"""
import asyncio
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Optional

import aiosmtplib

from config import Settings
from models import DeploymentStatusView

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def is_configured(self) -> bool:
        return self.settings.mail_enabled

    async def send_email(self, to_email: str, subject: str, html_content: str, text_content: Optional[str] = None) -> bool:
        """Send one message. Returns True on success, False otherwise."""
        if not self.is_configured:
            logger.debug("[Email] SMTP not configured, skipping email to %s", to_email)
            return False
        s = self.settings
        message = MIMEMultipart("alternative")
        message["From"] = f"{s.email_from_name} <{s.email_from}>"
        message["To"] = to_email
        message["Subject"] = subject
        if text_content:
            message.attach(MIMEText(text_content, "plain"))
        message.attach(MIMEText(html_content, "html"))
        try:
            await aiosmtplib.send(
                message,
                hostname=s.smtp_host,
                port=s.smtp_port,
                username=s.smtp_user,
                password=s.smtp_password,
                start_tls=s.smtp_start_tls,
            )
        except Exception as e:
            logger.error("[Email] Failed to send email to %s: %s", to_email, e)
            return False
        logger.info("[Email] Sent email to %s: %s", to_email, subject)
        return True

    def notify_deployment(self, to_email: Optional[str], project_name: str, view: DeploymentStatusView) -> bool:
        """Blocking helper for worker threads."""
        if not to_email or not self.is_configured:
            return False
        subject, html, text = render_deployment_email(project_name, view)
        try:
            return asyncio.run(self.send_email(to_email, subject, html, text))
        except Exception as e:
            logger.error("[Email] Notification for %s failed: %s", project_name, e)
            return False


def render_deployment_email(project_name: str, view: DeploymentStatusView) -> tuple[str, str, str]:
    ok = view.deployment_status == "Deployed"
    subject = f"{project_name}: deployment {'succeeded' if ok else 'failed'}"
    lines = [f"Status: {view.deployment_status}", f"Details: {view.deployment_step or '-'}"]
    if view.github_repo_url:
        lines.append(f"GitHub: {view.github_repo_url}")
    if view.vercel_url:
        lines.append(f"Live site: {view.vercel_url}")
    text = "\n".join(lines)
    html = "<p>" + "<br>".join(escape(line) for line in lines) + "</p>"
    return subject, html, text
