"""Pytest configuration and fixtures for bracketbot tests."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Callable
from unittest.mock import MagicMock

import httpx
import pytest

# Set test environment variables before importing modules
os.environ.setdefault("QUOINE_TOKEN_ID", "test_token_id")
os.environ.setdefault("QUOINE_TOKEN_SECRET", "test_token_secret")

from bracketbot.config import Settings, reload_settings
from bracketbot.exchange.models import Execution, Order, OrderStatus, Position
from bracketbot.notify.base import Notifier
from bracketbot.risk.cooldown import CooldownLock

T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_position(
    id: int = 1,
    side: str = "long",
    open_price: float = 1_000_000.0,
    pnl: float = 0.0,
    created_at: float = T0,
    status: str = "open",
) -> Position:
    ts = datetime.fromtimestamp(int(created_at), tz=timezone.utc)
    return Position(
        id=id,
        side=side,
        open_price=open_price,
        stop_loss=0.0,
        take_profit=0.0,
        pnl=pnl,
        created_at=ts,
        updated_at=ts,
        status=status,
    )


def make_order(id: int = 1, side: str = "buy", price: float = 990_000.0, status: str = "live") -> Order:
    ts = datetime.fromtimestamp(int(T0), tz=timezone.utc)
    return Order(
        id=id,
        side=side,
        quantity=0.1,
        price=price,
        status=OrderStatus(status),
        created_at=ts,
        updated_at=ts,
    )


def make_execution(id: int = 1, price: float = 1_000_000.0, created_at: float = T0) -> Execution:
    return Execution(
        id=id,
        quantity=0.01,
        price=price,
        taker_side="buy",
        created_at=datetime.fromtimestamp(int(created_at), tz=timezone.utc),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cooldown(clock: FakeClock) -> CooldownLock:
    return CooldownLock(clock=clock)


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with every wait shortened so unwind threads finish quickly."""
    return Settings(
        quoine_token_id="test_token_id",
        quoine_token_secret="test_token_secret",
        close_delay_seconds=0.0,
    )


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings from the (test) environment."""
    return reload_settings()


@pytest.fixture
def mock_client() -> MagicMock:
    """Exchange client double with an empty book by default."""
    client = MagicMock()
    client.get_recent_executions.return_value = []
    client.list_orders.return_value = []
    client.list_positions.return_value = []
    client.close_position.return_value = None
    client.cancel_all_orders.return_value = 0
    client.close_all_positions.return_value = []
    return client


@pytest.fixture
def mock_notifier() -> MagicMock:
    return MagicMock(spec=Notifier)


def json_handler(routes: dict[tuple[str, str], Any]) -> Callable:
    """Build an httpx.MockTransport handler from (method, path) -> response."""

    calls: list = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        key = (request.method, request.url.path)
        if key not in routes:
            return httpx.Response(404, json={"message": "not found"})
        result = routes[key]
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json=result)

    handler.calls = calls  # type: ignore[attr-defined]
    return handler
