"""
Tests for fulfillment hooks.
"""

import json

import httpx
import pytest

from reconciliation_agent.services.fulfillment import LoggingFulfillmentTrigger, WebhookFulfillmentTrigger


class TestWebhookFulfillment:
    @pytest.mark.asyncio
    async def test_posts_order_id(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202)

        trigger = WebhookFulfillmentTrigger(
            "https://shop.test/fulfill",
            api_key="hook-key",
            transport=httpx.MockTransport(handler),
        )
        await trigger.trigger("ord_1")

        assert len(requests) == 1
        assert requests[0].method == "POST"
        assert str(requests[0].url) == "https://shop.test/fulfill"
        assert json.loads(requests[0].content) == {"order_id": "ord_1"}
        assert requests[0].headers["Authorization"] == "Bearer hook-key"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200)

        trigger = WebhookFulfillmentTrigger("https://shop.test/fulfill", transport=httpx.MockTransport(handler))
        await trigger.trigger("ord_1")

        assert "Authorization" not in requests[0].headers

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        trigger = WebhookFulfillmentTrigger(
            "https://shop.test/fulfill",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )

        with pytest.raises(httpx.HTTPStatusError):
            await trigger.trigger("ord_1")


class TestLoggingFulfillment:
    @pytest.mark.asyncio
    async def test_does_not_raise(self):
        await LoggingFulfillmentTrigger().trigger("ord_1")
