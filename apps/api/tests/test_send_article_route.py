"""Tests for article broadcast and subscriber stats endpoints."""

from collections.abc import Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import AsyncClient

from app.core.config import settings
from app.core.rate_limit import limiter
from app.models.newsletter_subscriber import SubscriberStatus
from tests.conftest import API_KEY_HEADERS, API_PREFIX, ResendRecorder

SEND_URL = f"{API_PREFIX}/newsletter/send-article"
STATS_URL = f"{API_PREFIX}/newsletter/stats"

ARTICLE = {
    "articleId": "article-123",
    "title": "New Investment Insights",
    "excerpt": "Discover the latest trends in venture capital...",
    "slug": "new-investment-insights",
    "publishDate": "2024-01-15",
    "category": "Investment Strategy",
    "author": "Arena Fund Team",
    "readTimeMinutes": 5,
}


class TestSendArticle:
    @pytest.mark.asyncio
    async def test_requires_api_key(self, client: AsyncClient, resend: ResendRecorder) -> None:
        response = await client.post(SEND_URL, json={"article": ARTICLE})

        assert response.status_code == 401
        assert resend.requests == []

    @pytest.mark.asyncio
    async def test_wrong_api_key(self, client: AsyncClient) -> None:
        response = await client.post(
            SEND_URL, json={"article": ARTICLE}, headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_broadcast(
        self,
        client: AsyncClient,
        subscriber_factory: Callable[..., Any],
        resend: ResendRecorder,
    ) -> None:
        await subscriber_factory(email="a@example.com")
        await subscriber_factory(email="b@example.com")
        await subscriber_factory(email="c@example.com", status=SubscriberStatus.UNSUBSCRIBED)

        response = await client.post(SEND_URL, json={"article": ARTICLE}, headers=API_KEY_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Article notification sent successfully"
        assert data["stats"] == {"totalSubscribers": 2, "successCount": 2, "failureCount": 0}
        assert len(resend.requests) == 2

    @pytest.mark.asyncio
    async def test_partial_failure_is_500_with_stats(
        self,
        client: AsyncClient,
        subscriber_factory: Callable[..., Any],
        resend: ResendRecorder,
    ) -> None:
        await subscriber_factory(email="a@example.com")
        await subscriber_factory(email="b@example.com")
        resend.fail_for = {"b@example.com"}

        response = await client.post(SEND_URL, json={"article": ARTICLE}, headers=API_KEY_HEADERS)

        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert data["message"] == "Failed to send article notification"
        assert data["stats"] == {"totalSubscribers": 2, "successCount": 1, "failureCount": 1}
        assert data["errors"][0].startswith("b@example.com")

    @pytest.mark.asyncio
    async def test_article_required(self, client: AsyncClient) -> None:
        response = await client.post(SEND_URL, json={}, headers=API_KEY_HEADERS)
        assert response.status_code == 400
        assert response.json()["message"] == "Article data is required"

    @pytest.mark.asyncio
    async def test_missing_fields_listed(self, client: AsyncClient) -> None:
        article = {k: v for k, v in ARTICLE.items() if k not in ("excerpt", "slug")}

        response = await client.post(SEND_URL, json={"article": article}, headers=API_KEY_HEADERS)

        assert response.status_code == 400
        assert response.json()["message"] == "Missing required article fields: excerpt, slug"

    @pytest.mark.asyncio
    async def test_test_mode_requires_email(self, client: AsyncClient) -> None:
        response = await client.post(
            SEND_URL, json={"article": ARTICLE, "testMode": True}, headers=API_KEY_HEADERS
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Test email is required in test mode"

    @pytest.mark.asyncio
    async def test_test_mode_sends_single_email(
        self,
        client: AsyncClient,
        subscriber_factory: Callable[..., Any],
        resend: ResendRecorder,
    ) -> None:
        await subscriber_factory(email="a@example.com")

        response = await client.post(
            SEND_URL,
            json={"article": ARTICLE, "testMode": True, "testEmail": "editor@example.com"},
            headers=API_KEY_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Test email sent successfully"
        assert data["testMode"] is True
        assert data["messageId"]
        assert [p["to"] for p in resend.payloads] == [["editor@example.com"]]

    @pytest.mark.asyncio
    async def test_test_mode_failure(self, client: AsyncClient, resend: ResendRecorder) -> None:
        resend.fail_for = {"editor@example.com"}

        response = await client.post(
            SEND_URL,
            json={"article": ARTICLE, "testMode": True, "testEmail": "editor@example.com"},
            headers=API_KEY_HEADERS,
        )

        assert response.status_code == 500
        assert response.json()["testMode"] is True

    @pytest.mark.asyncio
    async def test_endpoint_description(self, client: AsyncClient) -> None:
        response = await client.get(SEND_URL)

        assert response.status_code == 200
        data = response.json()
        assert data["method"] == "POST"
        assert data["endpoint"] == SEND_URL
        assert "article" in data["parameters"]


class TestStats:
    @pytest.mark.asyncio
    async def test_requires_api_key(self, client: AsyncClient) -> None:
        response = await client.get(STATS_URL)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_stats(self, client: AsyncClient, subscriber_factory: Callable[..., Any]) -> None:
        await subscriber_factory(email="a@example.com", source="homepage")
        await subscriber_factory(email="b@example.com", source="insights")
        await subscriber_factory(email="c@example.com", status=SubscriberStatus.BOUNCED)

        response = await client.get(STATS_URL, headers=API_KEY_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert data["activeCount"] == 2
        assert data["byStatus"] == {"active": 2, "unsubscribed": 0, "bounced": 1}
        assert data["activeBySource"] == {"homepage": 1, "insights": 1}


@pytest_asyncio.fixture
async def admin_limiter() -> Any:
    """Turn the decorator limiter on for one test, with empty counters."""
    limiter.reset()
    limiter.enabled = True
    yield limiter
    limiter.enabled = False
    limiter.reset()


class TestAdminThrottling:
    @pytest.mark.asyncio
    async def test_wrong_key_attempts_are_throttled(
        self, client: AsyncClient, admin_limiter: Any
    ) -> None:
        allowed = int(settings.rate_limit_admin.split("/")[0])
        headers = {"Authorization": "Bearer wrong"}

        statuses = [
            (await client.post(SEND_URL, json={"article": ARTICLE}, headers=headers)).status_code
            for _ in range(allowed + 1)
        ]

        assert statuses[:allowed] == [401] * allowed
        assert statuses[-1] == 429

    @pytest.mark.asyncio
    async def test_stats_throttled_per_client(
        self, client: AsyncClient, admin_limiter: Any
    ) -> None:
        allowed = int(settings.rate_limit_admin.split("/")[0])
        for _ in range(allowed):
            response = await client.get(STATS_URL, headers=API_KEY_HEADERS)
            assert response.status_code == 200

        blocked = await client.get(STATS_URL, headers=API_KEY_HEADERS)
        other_client = await client.get(
            STATS_URL, headers={**API_KEY_HEADERS, "CF-Connecting-IP": "198.51.100.77"}
        )

        assert blocked.status_code == 429
        assert other_client.status_code == 200
