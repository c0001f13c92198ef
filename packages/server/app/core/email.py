"""
Outbound email via the Resend HTTP API.

Handles:
- Magic-link invitation templates (sign-off request, MSF feedback request)
- Bounded retry with exponential backoff on 5xx, 429 and connection errors
- No retry on other 4xx (a bad address will not get better)
"""

from __future__ import annotations

import asyncio
from html import escape

import httpx
import structlog

from app.core.config import get_settings
from portfolio_shared.schemas.common import MSF_RESPONSE

log = structlog.get_logger()


class EmailDeliveryError(Exception):
    """The email collaborator could not deliver a message."""


class ResendEmailSender:
    """Sends transactional email through Resend."""

    def __init__(
        self,
        api_key: str,
        from_email: str,
        *,
        api_url: str = "https://api.resend.com/emails",
        max_attempts: int = 3,
        retry_base_seconds: float = 0.5,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = api_key
        self._from_email = from_email
        self._api_url = api_url
        self._max_attempts = max(1, max_attempts)
        self._retry_base_seconds = retry_base_seconds
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def send(self, to: str, subject: str, html: str) -> None:
        if not self._api_key:
            raise EmailDeliveryError("email delivery is not configured")

        body = {"from": self._from_email, "to": to, "subject": subject, "html": html}
        headers = {"Authorization": f"Bearer {self._api_key}"}

        last_error: str | None = None
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout_seconds),
            transport=self._transport,
        ) as client:
            for attempt in range(self._max_attempts):
                try:
                    resp = await client.post(self._api_url, json=body, headers=headers)
                except (httpx.ConnectError, httpx.ReadError, httpx.TimeoutException) as exc:
                    last_error = str(exc) or exc.__class__.__name__
                else:
                    if resp.status_code < 400:
                        log.info("email.sent", to=to, attempt=attempt + 1)
                        return
                    last_error = f"HTTP {resp.status_code}: {resp.text[:200]}"
                    if resp.status_code != 429 and resp.status_code < 500:
                        log.error("email.rejected", to=to, status=resp.status_code)
                        raise EmailDeliveryError(last_error)

                if attempt + 1 < self._max_attempts:
                    backoff = self._retry_base_seconds * (2 ** attempt)
                    log.warning("email.retry", attempt=attempt + 1, backoff=backoff, error=last_error)
                    await asyncio.sleep(backoff)

        raise EmailDeliveryError(last_error or "email delivery failed")


def get_email_sender() -> ResendEmailSender:
    """FastAPI dependency for the configured email sender."""
    settings = get_settings()
    return ResendEmailSender(
        settings.resend_api_key,
        settings.resend_from_email,
        api_url=settings.resend_api_url,
        max_attempts=settings.email_max_attempts,
        retry_base_seconds=settings.email_retry_base_seconds,
        timeout_seconds=settings.email_timeout_seconds,
    )


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

_WRAPPER = (
    '<div style="font-family: -apple-system, BlinkMacSystemFont, \'Segoe UI\', Roboto, Arial, sans-serif;'
    ' max-width: 600px; margin: 0 auto; padding: 40px 20px;">{body}</div>'
)
_BUTTON = (
    '<a href="{url}" style="display: inline-block; background: {colour}; color: white; padding: 12px 24px;'
    ' border-radius: 8px; text-decoration: none; margin-top: 20px; font-weight: 600;">{label}</a>'
)


def render_link_email(
    *, form_type: str, kind: str, title: str, trainee_name: str, url: str
) -> tuple[str, str]:
    """Return (subject, html) for a magic-link invitation."""
    trainee = escape(trainee_name)
    if form_type == MSF_RESPONSE:
        subject = f"Multi-Source Feedback Request for {trainee_name}"
        body = (
            "<h1>Multi-Source Feedback Request</h1>"
            f"<p>You have been invited to provide feedback for <strong>{trainee}</strong>.</p>"
            "<p>Your feedback is confidential and will help the trainee understand their strengths"
            " and areas for development.</p>"
            + _BUTTON.format(url=escape(url, quote=True), colour="#4f46e5", label="Complete Feedback Form")
            + "<p style=\"font-size: 12px;\">This link is unique to you. Please do not share it.</p>"
        )
    else:
        subject = f"Complete {kind}: {title}"
        body = (
            "<h1>Form Ready for Sign-Off</h1>"
            f"<p>A {escape(kind)} form has been prepared for your review and sign-off.</p>"
            f"<p><strong>Form:</strong> {escape(title)}</p>"
            f"<p><strong>Trainee:</strong> {trainee}</p>"
            + _BUTTON.format(url=escape(url, quote=True), colour="#059669", label="Review and Sign Off")
            + "<p style=\"font-size: 12px;\">This link can only be used once and expires after 24 hours."
            " You will need to enter your GMC number to complete the sign-off.</p>"
        )
    return subject, _WRAPPER.format(body=body)
