"""
Notification Service
Transactional email through the Resend HTTP API
"""

from html import escape
from typing import List

import httpx

from ..core.config import get_settings
from ..core.logging import payment_logger
from ..core.result import Result

settings = get_settings()


class EmailNotifier:
    """Sends buyer-facing emails; failures are reported, never raised"""

    def __init__(
        self,
        api_key: str = settings.RESEND_API_KEY,
        sender: str = settings.EMAIL_FROM,
        api_url: str = settings.RESEND_API_URL
    ):
        self.api_key = api_key
        self.sender = sender
        self.api_url = api_url

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def send(self, to: List[str], subject: str, html: str) -> Result[None]:
        if not self.enabled:
            return Result.err("Email delivery not configured")

        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(15.0)) as client:
                response = await client.post(
                    self.api_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={"from": self.sender, "to": to, "subject": subject, "html": html}
                )
            if response.status_code >= 400:
                payment_logger.log_payment_error(
                    operation="SendEmail",
                    error=f"HTTP {response.status_code}",
                    subject=subject
                )
                return Result.err("Email delivery failed", status_code=response.status_code)
            return Result.ok()

        except httpx.HTTPError as e:
            payment_logger.log_payment_error(operation="SendEmail", error=str(e), subject=subject)
            return Result.err("Email delivery failed")

    async def send_download_link(self, to: str, beat_title: str, download_url: str) -> Result[None]:
        title = escape(beat_title or "Beat")
        html = (
            "<div style=\"font-family:sans-serif;max-width:520px;margin:0 auto;\">"
            "<h1>Purchase complete</h1>"
            f"<p>Your beat <strong>&ldquo;{title}&rdquo;</strong> is ready to download.</p>"
            f"<p><a href=\"{escape(download_url, quote=True)}\">Download</a></p>"
            f"<p style=\"font-size:12px;\">This link expires in {settings.DOWNLOAD_TTL_HOURS} hours. "
            f"Maximum {settings.MAX_DOWNLOADS} downloads.</p>"
            "</div>"
        )
        return await self.send([to], f"Your beat is ready: {beat_title}", html)

    async def send_verification_code(self, to: str, code: str) -> Result[None]:
        html = (
            "<div style=\"font-family:sans-serif;max-width:520px;margin:0 auto;\">"
            "<h1>Verify your email</h1>"
            f"<p>Your verification code is <strong style=\"font-size:24px;\">{code}</strong></p>"
            f"<p style=\"font-size:12px;\">The code expires in {settings.VERIFICATION_CODE_TTL_MINUTES} minutes.</p>"
            "</div>"
        )
        return await self.send([to], f"Your verification code: {code}", html)
