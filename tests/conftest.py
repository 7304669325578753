"""
Test fixtures for reconciliation agent tests.

Datastore tests run against a file-backed SQLite database (aiosqlite) in a
temporary directory, so concurrent sessions behave like separate connections.
The gateway and fulfillment collaborators are replaced with in-memory fakes.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Union

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

from reconciliation_agent.core.config import Settings, load_settings
from reconciliation_agent.core.typing import utc_now
from reconciliation_agent.db import create_session_factory
from reconciliation_agent.models import Charge, Order
from reconciliation_agent.schemas import GatewayStatus
from reconciliation_agent.services.reconciler import ReconciliationAgent

Outcome = Union[str, Exception]


def make_settings(**overrides) -> Settings:
    """Settings for tests: no delays, small limits, fake credentials."""
    values = dict(
        ENVIRONMENT="test",
        DATABASE_URL="sqlite+aiosqlite://",
        GATEWAY_API_URL="https://gateway.test",
        GATEWAY_API_KEY="test-key",
        RETRY_BASE_DELAY_SECONDS=0.0,
        API_THROTTLE_SECONDS=0.0,
        API_TIMEOUT_SECONDS=5.0,
        RUN_TIMEOUT_SECONDS=30.0,
        LOCK_TTL_SECONDS=60.0,
        SENTRY_DSN="",
        FULFILLMENT_WEBHOOK_URL="",
    )
    values.update(overrides)
    return load_settings(**values)


class FakeGateway:
    """
    In-memory charge status source.

    `outcomes` maps charge id to a status string, an exception to raise, or a
    list of those consumed one per call (the last entry repeats).
    """

    def __init__(self, outcomes: Optional[Dict[str, Union[Outcome, List[Outcome]]]] = None, default: Outcome = "pending"):
        self.outcomes = outcomes or {}
        self.default = default
        self.calls: List[str] = []

    async def get_charge_status(self, charge_id: str) -> GatewayStatus:
        self.calls.append(charge_id)
        outcome = self.outcomes.get(charge_id, self.default)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, Exception):
            raise outcome
        return GatewayStatus(id=charge_id, status=outcome, amount=1990, currency="BRL")


class RecordingFulfillment:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.triggered: List[str] = []

    async def trigger(self, order_id: str) -> None:
        self.triggered.append(order_id)
        if self.fail:
            raise RuntimeError("fulfillment service unavailable")


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Async engine on a fresh SQLite file with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reconciliation.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest.fixture
def create_order(session_factory) -> Callable:
    """
    Insert an order (and optionally its charge).

    Usage:
        order = await create_order(status="pending", age_minutes=120, charge_id="bill_1")
    """

    async def _create(
        status: str = "pending",
        age_minutes: int = 120,
        charge_id: Optional[str] = "auto",
        order_id: Optional[str] = None,
    ) -> Order:
        created = utc_now() - timedelta(minutes=age_minutes)
        order = Order(
            status=status,
            customer_name="Maria Silva",
            customer_email="maria@example.com",
            total_amount=Decimal("19.90"),
            created_at=created,
            updated_at=created,
        )
        if order_id:
            order.id = order_id

        async with session_factory() as session:
            session.add(order)
            if charge_id is not None:
                session.add(
                    Charge(
                        order_id=order.id,
                        charge_id=f"bill_{order.id[:8]}" if charge_id == "auto" else charge_id,
                        amount=Decimal("19.90"),
                        created_at=created,
                    )
                )
            await session.commit()
        return order

    return _create


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fulfillment() -> RecordingFulfillment:
    return RecordingFulfillment()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_agent(session_factory, fake_gateway, fulfillment, recording_sleep) -> Callable:
    """Build an agent wired to the fakes; keyword arguments override settings."""

    def _make(**setting_overrides) -> ReconciliationAgent:
        return ReconciliationAgent(
            make_settings(**setting_overrides),
            session_factory,
            fake_gateway,
            fulfillment=fulfillment,
            sleep=recording_sleep,
        )

    return _make


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    return make_settings
