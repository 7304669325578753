"""
Fulfillment hooks for orders that just became paid.

Fulfillment is best-effort from the agent's point of view: a failure is
logged and recorded in the run metrics but never rolls back the status
change or fails the run.
"""

import logging
from typing import Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class FulfillmentTrigger(Protocol):
    async def trigger(self, order_id: str) -> None: ...


class LoggingFulfillmentTrigger:
    """Used when no fulfillment endpoint is configured."""

    async def trigger(self, order_id: str) -> None:
        logger.info(f"Order {order_id} paid; no fulfillment endpoint configured")


class WebhookFulfillmentTrigger:
    """POSTs {"order_id": ...} to the fulfillment endpoint."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._headers = headers
        self._timeout = timeout
        self._transport = transport

    async def trigger(self, order_id: str) -> None:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self.url, json={"order_id": order_id}, headers=self._headers)
            response.raise_for_status()
        logger.info(f"Fulfillment triggered for order {order_id}")
