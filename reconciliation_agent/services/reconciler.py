"""
Reconciliation orchestrator.

One run:
    acquire lock -> fetch pending orders -> process each order -> release lock

The lock is released on every path that acquired it (normal completion,
deadline overrun, unexpected exception, cancellation). A run that finds the
lock taken returns a skipped result without touching anything else.

Per order:
    1. No charge: warn and skip
    2. Ask the gateway (retry + circuit breaker); unknown status: skip
    3. Gateway pending or equal to local status: no write
    4. Guarded status update + audit row in one transaction
    5. Newly paid: trigger fulfillment (best-effort)
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from reconciliation_agent.core.circuit_breaker import CircuitBreaker
from reconciliation_agent.core.config import Settings
from reconciliation_agent.core.context import bind_run_context, clear_context, generate_run_id
from reconciliation_agent.core.errors import ErrorHandler, capture_exception
from reconciliation_agent.core.health_thresholds import RunThresholds
from reconciliation_agent.core.metrics import MetricsRecorder, RunMetrics
from reconciliation_agent.core.metrics_persistent import persist_run_metrics
from reconciliation_agent.core.retry import RetryPolicy, Sleep
from reconciliation_agent.models.order import Order, OrderStatus
from reconciliation_agent.services.fulfillment import (
    FulfillmentTrigger,
    LoggingFulfillmentTrigger,
    WebhookFulfillmentTrigger,
)
from reconciliation_agent.services.gateway import ChargeStatusSource, GatewayHttpClient, GatewayStatusClient
from reconciliation_agent.services.lock import DistributedLock
from reconciliation_agent.services.orders import fetch_pending_orders, update_order_with_audit

logger = structlog.get_logger(__name__)

# RunResult.status values
RUN_COMPLETED = "completed"
RUN_SKIPPED = "skipped"
RUN_TIMED_OUT = "timed_out"
RUN_FAILED = "failed"


@dataclass
class RunResult:
    run_id: str
    status: str
    metrics: Optional[RunMetrics] = None

    @property
    def skipped(self) -> bool:
        return self.status == RUN_SKIPPED

    @property
    def succeeded(self) -> bool:
        return self.status == RUN_COMPLETED


class ReconciliationAgent:
    """
    Reconciles stale pending orders against the payment gateway.

    Construct once per process and share it with the scheduler and the
    manual-trigger entry points. Per-run state (breaker, counters) is created
    inside run().
    """

    def __init__(
        self,
        settings: Settings,
        session_factory,
        status_source: ChargeStatusSource,
        fulfillment: Optional[FulfillmentTrigger] = None,
        lock: Optional[DistributedLock] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.status_source = status_source
        self.fulfillment = fulfillment or LoggingFulfillmentTrigger()
        self.lock = lock or DistributedLock(session_factory)
        self._sleep = sleep
        self.retry_policy = RetryPolicy(
            max_retries=settings.MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            backoff_factor=settings.RETRY_BACKOFF_FACTOR,
            attempt_timeout=settings.API_TIMEOUT_SECONDS,
            throttle=settings.API_THROTTLE_SECONDS,
            sleep=sleep,
        )
        self.thresholds = RunThresholds.from_settings(settings)

    async def aclose(self) -> None:
        close = getattr(self.status_source, "aclose", None)
        if close is not None:
            await close()

    def new_circuit_breaker(self) -> CircuitBreaker:
        return CircuitBreaker(
            name="gateway",
            error_threshold=self.settings.CIRCUIT_BREAKER_THRESHOLD,
            min_calls=self.settings.CIRCUIT_BREAKER_MIN_CALLS,
            recovery_timeout=self.settings.CIRCUIT_BREAKER_COOLDOWN_SECONDS,
        )

    async def run(self, trigger: str = "manual") -> RunResult:
        """
        Execute one reconciliation run.

        Returns:
            RunResult with status completed, skipped or timed_out

        Raises:
            Any error that made the run meaningless (e.g. the pending-order
            query failed), after the lock was released and metrics stored
        """
        run_id = generate_run_id()
        bind_run_context(run_id, trigger=trigger)
        try:
            if not await self.lock.acquire(run_id, self.settings.LOCK_TTL_SECONDS):
                logger.info("Reconciliation skipped, another run holds the lock")
                return RunResult(run_id=run_id, status=RUN_SKIPPED)
            return await self._run_locked(run_id, trigger)
        finally:
            clear_context()

    async def _run_locked(self, run_id: str, trigger: str) -> RunResult:
        recorder = MetricsRecorder(run_id)
        breaker = self.new_circuit_breaker()
        gateway = GatewayStatusClient(self.status_source, self.retry_policy, breaker, recorder)
        status = RUN_FAILED

        logger.info("Reconciliation run started", batch_size=self.settings.BATCH_SIZE)
        try:
            await asyncio.wait_for(
                self._process_all(run_id, gateway, recorder),
                timeout=self.settings.RUN_TIMEOUT_SECONDS,
            )
            status = RUN_COMPLETED
        except asyncio.TimeoutError:
            status = RUN_TIMED_OUT
            recorder.record_error(f"Run exceeded deadline of {self.settings.RUN_TIMEOUT_SECONDS:.0f}s")
            logger.error("Reconciliation run timed out", timeout=self.settings.RUN_TIMEOUT_SECONDS)
        except Exception as e:
            recorder.record_error(f"Run failed: {e}")
            capture_exception(e, context={"action": "reconciliation_run"})
            raise
        finally:
            run = recorder.finish(success=status == RUN_COMPLETED)
            await self.lock.release(run_id)
            await persist_run_metrics(
                self.session_factory,
                run,
                metadata={
                    "trigger": trigger,
                    "environment": self.settings.ENVIRONMENT,
                    "status": status,
                    "circuit_state": breaker.state.value,
                    "short_circuited": run.short_circuited,
                },
                thresholds=self.thresholds,
            )
            logger.info("Reconciliation run finished", status=status, **recorder.summary())

        return RunResult(run_id=run_id, status=status, metrics=run)

    async def _process_all(self, run_id: str, gateway: GatewayStatusClient, recorder: MetricsRecorder) -> None:
        orders = await fetch_pending_orders(
            self.session_factory,
            min_age_minutes=self.settings.PENDING_ORDER_MIN_AGE_MINUTES,
            batch_size=self.settings.BATCH_SIZE,
        )
        logger.info("Pending orders fetched", count=len(orders))

        for index, order in enumerate(orders):
            if index > 0 and self.settings.API_THROTTLE_SECONDS > 0:
                await self._sleep(self.settings.API_THROTTLE_SECONDS)
            try:
                await self.process_order(order, run_id, gateway, recorder)
            except Exception as e:
                recorder.record_error(f"Order {order.id}: {e}")
                logger.error("Order processing failed", order_id=order.id, error=str(e))

    async def process_order(
        self,
        order: Order,
        run_id: str,
        gateway: GatewayStatusClient,
        recorder: MetricsRecorder,
    ) -> bool:
        """
        Reconcile one order.

        Returns:
            True if the order's status was changed by this call
        """
        recorder.record_processed()

        charge = order.primary_charge
        if charge is None:
            logger.warning("Order has no charge, skipping", order_id=order.id)
            recorder.record_error(f"Order {order.id}: no charge")
            return False

        if order.status != OrderStatus.PENDING.value:
            logger.debug("Order no longer pending, skipping", order_id=order.id, status=order.status)
            return False

        gateway_status = await gateway.get_status(charge.charge_id)
        if gateway_status is None:
            logger.info("Gateway status unknown this cycle", order_id=order.id, charge_id=charge.charge_id)
            return False

        new_status = gateway_status.to_order_status()
        if new_status is OrderStatus.PENDING or new_status.value == order.status:
            return False

        updated = await update_order_with_audit(
            self.session_factory,
            order_id=order.id,
            expected_status=order.status,
            new_status=new_status.value,
            execution_id=run_id,
            charge_id=charge.charge_id,
            gateway_status=gateway_status.status.value,
        )
        if not updated:
            return False

        recorder.record_updated()
        logger.info("Order reconciled", order_id=order.id, old_status=order.status, new_status=new_status.value)

        if new_status is OrderStatus.PAID:
            await self._trigger_fulfillment(order.id, recorder)
        return True

    async def _trigger_fulfillment(self, order_id: str, recorder: MetricsRecorder) -> None:
        with ErrorHandler("trigger_fulfillment", context={"order_id": order_id}) as handler:
            await self.fulfillment.trigger(order_id)
        if handler.error is not None:
            recorder.record_error(f"Order {order_id}: fulfillment failed: {handler.error}")


def build_agent(settings: Settings, session_factory, transport=None) -> ReconciliationAgent:
    """
    Wire the agent for production use.

    Raises:
        ConfigurationError: GATEWAY_API_KEY is missing
    """
    settings.require_gateway_credentials()

    status_source = GatewayHttpClient(
        settings.GATEWAY_API_URL,
        settings.GATEWAY_API_KEY,
        timeout=settings.API_TIMEOUT_SECONDS,
        transport=transport,
    )
    if settings.FULFILLMENT_WEBHOOK_URL:
        fulfillment: FulfillmentTrigger = WebhookFulfillmentTrigger(settings.FULFILLMENT_WEBHOOK_URL)
    else:
        fulfillment = LoggingFulfillmentTrigger()

    return ReconciliationAgent(settings, session_factory, status_source, fulfillment=fulfillment)
