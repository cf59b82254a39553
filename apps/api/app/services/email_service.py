"""Email delivery service using Resend API."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.core.config import settings
from app.core.logging_config import mask_email
from app.schemas.newsletter import ArticleNotification

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
BRAND_NAME = "Arena Fund"
MAX_RETRY_DELAY_SECONDS = 30.0
DEFAULT_TEST_MESSAGE = (
    "This is a test email to verify that the newsletter email infrastructure is working correctly."
)

# Jinja2 template environment (.txt templates are rendered unescaped)
TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"
_jinja_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


@dataclass
class EmailResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


def build_unsubscribe_url(email: str, token: str) -> str:
    """Absolute one-click unsubscribe link for ``email``."""
    query = urlencode({"token": token, "email": email})
    return f"{settings.public_base_url}{settings.api_v1_prefix}/newsletter/unsubscribe?{query}"


def _render(name: str, subject: str, **context: Any) -> RenderedEmail:
    context = {"brand_name": BRAND_NAME, "subject": subject, **context}
    return RenderedEmail(
        subject=subject,
        html=_jinja_env.get_template(f"{name}.html").render(**context),
        text=_jinja_env.get_template(f"{name}.txt").render(**context),
    )


def render_article_email(
    article: ArticleNotification, *, subscriber_name: str | None, unsubscribe_url: str
) -> RenderedEmail:
    return _render(
        "article",
        f"New Insight: {article.title}",
        article=article,
        article_url=f"{settings.public_base_url}/insights/{article.slug}",
        subscriber_name=subscriber_name or "there",
        unsubscribe_url=unsubscribe_url,
    )


def render_welcome_email(*, subscriber_name: str | None, unsubscribe_url: str) -> RenderedEmail:
    return _render(
        "welcome",
        f"Welcome to {BRAND_NAME} Insights!",
        subscriber_name=subscriber_name or "there",
        unsubscribe_url=unsubscribe_url,
    )


def render_unsubscribe_confirmation(*, subscriber_name: str | None) -> RenderedEmail:
    return _render(
        "unsubscribe_confirmation",
        f"You've been unsubscribed from {BRAND_NAME} Insights",
        subscriber_name=subscriber_name or "there",
        insights_url=f"{settings.public_base_url}/insights",
        unsubscribe_url=None,
    )


def render_test_email(*, to_email: str, message: str | None = None) -> RenderedEmail:
    return _render(
        "test",
        f"{BRAND_NAME} Newsletter Test Email",
        to_email=to_email,
        message=message or DEFAULT_TEST_MESSAGE,
        unsubscribe_url=None,
    )


def _is_retryable(status_code: int | None) -> bool:
    # None means the request never got a response (timeout, connection reset)
    return status_code is None or status_code == 429 or 500 <= status_code < 600


class EmailService:
    """Sends newsletter emails via the Resend API.

    Failed sends are retried on 429, 5xx and transport errors with full-jitter
    exponential backoff. ``send`` never raises; callers inspect the
    :class:`EmailResult`.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        max_retries: int | None = None,
        base_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.api_key = settings.resend_api_key if api_key is None else api_key
        self.max_retries = settings.email_max_retries if max_retries is None else max_retries
        self.base_delay = (
            settings.email_retry_base_delay_seconds if base_delay is None else base_delay
        )
        self.transport = transport
        self._sleep = sleep

    @property
    def from_address(self) -> str:
        return f"{settings.email_from_name} <{settings.email_from_address}>"

    async def send(
        self,
        to_email: str,
        email: RenderedEmail,
        *,
        context: str,
        unsubscribe_url: str | None = None,
    ) -> EmailResult:
        """Send a rendered email to a single recipient."""
        if not self.api_key:
            logger.warning(
                "Resend API key not configured, %s email not sent to %s",
                context,
                mask_email(to_email),
            )
            return EmailResult(False, error="Email delivery is not configured")

        payload: dict[str, Any] = {
            "from": self.from_address,
            "to": [to_email],
            "subject": email.subject,
            "html": email.html,
            "text": email.text,
            "tags": [{"name": "category", "value": context}],
        }
        if settings.email_reply_to:
            payload["reply_to"] = settings.email_reply_to
        if unsubscribe_url:
            payload["headers"] = {
                "List-Unsubscribe": f"<{unsubscribe_url}>",
                "List-Unsubscribe-Post": "List-Unsubscribe=One-Click",
            }

        attempt = 0
        while True:
            status_code: int | None = None
            try:
                response = await self._post(payload)
            except httpx.TransportError as exc:
                error = f"{type(exc).__name__}: {exc}"
            else:
                if response.is_success:
                    email_id = response.json().get("id")
                    logger.info(
                        "Newsletter email sent: context=%s to=%s id=%s",
                        context,
                        mask_email(to_email),
                        email_id,
                    )
                    return EmailResult(True, message_id=str(email_id) if email_id else None)
                status_code = response.status_code
                error = f"HTTP {status_code}: {response.text[:200]}"

            if not _is_retryable(status_code) or attempt >= self.max_retries:
                logger.error(
                    "Newsletter email failed: context=%s to=%s attempt=%s error=%s",
                    context,
                    mask_email(to_email),
                    attempt,
                    error,
                )
                return EmailResult(False, error=error)

            delay = min(MAX_RETRY_DELAY_SECONDS, random.random() * self.base_delay * 2**attempt)
            logger.warning(
                "Retrying newsletter email: context=%s attempt=%s next_delay=%.2fs status=%s",
                context,
                attempt,
                delay,
                status_code,
            )
            await self._sleep(delay)
            attempt += 1

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=15.0, transport=self.transport) as client:
            return await client.post(
                RESEND_API_URL,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )

    # --- Newsletter emails ---

    async def send_article_notification(
        self,
        article: ArticleNotification,
        *,
        to_email: str,
        subscriber_name: str | None,
        unsubscribe_url: str,
    ) -> EmailResult:
        email = render_article_email(
            article, subscriber_name=subscriber_name, unsubscribe_url=unsubscribe_url
        )
        return await self.send(
            to_email, email, context="article_notification", unsubscribe_url=unsubscribe_url
        )

    async def send_welcome_email(
        self, *, to_email: str, subscriber_name: str | None, unsubscribe_url: str
    ) -> EmailResult:
        email = render_welcome_email(subscriber_name=subscriber_name, unsubscribe_url=unsubscribe_url)
        return await self.send(
            to_email, email, context="welcome", unsubscribe_url=unsubscribe_url
        )

    async def send_unsubscribe_confirmation(
        self, *, to_email: str, subscriber_name: str | None
    ) -> EmailResult:
        email = render_unsubscribe_confirmation(subscriber_name=subscriber_name)
        return await self.send(to_email, email, context="unsubscribe_confirmation")

    async def send_test_email(self, *, to_email: str, message: str | None = None) -> EmailResult:
        email = render_test_email(to_email=to_email, message=message)
        return await self.send(to_email, email, context="test")
