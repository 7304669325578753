"""
Payment gateway status client.

GatewayHttpClient performs one authenticated `GET /charges/{id}` and turns
every failure into a GatewayError. GatewayStatusClient wraps it for one run:
each lookup goes through the retry policy and the run's circuit breaker, and
every attempt is counted in the run metrics.

Usage:
    async with GatewayHttpClient(settings.GATEWAY_API_URL, settings.GATEWAY_API_KEY) as http:
        client = GatewayStatusClient(http, retry_policy, breaker, recorder)
        status = await client.get_status("bill_123")  # None = unknown this cycle
"""

import logging
from typing import Optional, Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from reconciliation_agent.core.circuit_breaker import CircuitBreaker
from reconciliation_agent.core.errors import CircuitOpenError, GatewayError, GatewaySchemaError, GatewayTimeoutError
from reconciliation_agent.core.metrics import MetricsRecorder
from reconciliation_agent.core.retry import RetryPolicy
from reconciliation_agent.schemas import GatewayStatus

logger = logging.getLogger(__name__)

# 4xx answers that may succeed on a later attempt
RETRYABLE_CLIENT_STATUSES = {408, 429}


class ChargeStatusSource(Protocol):
    async def get_charge_status(self, charge_id: str) -> GatewayStatus: ...


class GatewayHttpClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "GatewayHttpClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_charge_status(self, charge_id: str) -> GatewayStatus:
        """
        Fetch and validate the status of one charge.

        Raises:
            GatewayTimeoutError: The request timed out
            GatewayError: Transport failure or non-2xx answer
            GatewaySchemaError: The body is not a valid charge payload
        """
        path = f"/charges/{quote(charge_id, safe='')}"

        try:
            response = await self._client.get(path)
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(f"Timeout fetching charge {charge_id}: {e}") from e
        except httpx.RequestError as e:
            raise GatewayError(f"Request for charge {charge_id} failed: {e}") from e

        if response.status_code >= 400:
            code = response.status_code
            raise GatewayError(
                f"HTTP {code} fetching charge {charge_id}",
                status_code=code,
                retryable=code >= 500 or code in RETRYABLE_CLIENT_STATUSES,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise GatewaySchemaError(f"Charge {charge_id}: response is not JSON", status_code=response.status_code) from e

        # Some gateway versions wrap the charge in {"data": {...}}
        if isinstance(payload, dict) and "status" not in payload and isinstance(payload.get("data"), dict):
            payload = payload["data"]

        try:
            return GatewayStatus.model_validate(payload)
        except ValidationError as e:
            raise GatewaySchemaError(
                f"Charge {charge_id}: invalid payload ({e.error_count()} errors)",
                status_code=response.status_code,
            ) from e


class GatewayStatusClient:
    """Per-run gateway access: retry, circuit breaker and call accounting."""

    def __init__(
        self,
        source: ChargeStatusSource,
        retry_policy: RetryPolicy,
        breaker: CircuitBreaker,
        recorder: MetricsRecorder,
    ):
        self.source = source
        self.retry_policy = retry_policy
        self.breaker = breaker
        self.recorder = recorder

    async def get_status(self, charge_id: str) -> Optional[GatewayStatus]:
        """
        Current gateway status, or None when it could not be determined this cycle.

        Lookups rejected by an open circuit are counted apart from API calls.
        """
        try:
            return await self.retry_policy.execute(
                lambda: self.source.get_charge_status(charge_id),
                breaker=self.breaker,
                on_attempt=self.recorder.record_api_call,
                description=f"charge {charge_id} status",
            )
        except CircuitOpenError as e:
            self.recorder.record_short_circuit()
            logger.warning(f"Charge {charge_id} not queried: {e}")
            return None
