from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from bracketbot.core.timeutils import from_epoch


class OrderStatus(Enum):
    LIVE = "live"
    FILLED = "filled"
    PARTIALLY_FILLED = "partially_filled"
    CANCELLED = "cancelled"


def _float(value: Any) -> float:
    # Quoine sends most numbers as strings; missing ones as null
    if value is None or value == "":
        return 0.0
    return float(value)


def _required_float(model: Mapping[str, Any], key: str) -> float:
    value = model.get(key)
    if value is None or value == "":
        raise ValueError(f"Missing {key}")
    return float(value)


@dataclass(frozen=True)
class Execution:
    id: int
    quantity: float
    price: float
    taker_side: str  # buy/sell
    created_at: datetime

    @classmethod
    def from_api(cls, model: Mapping[str, Any]) -> "Execution":
        return cls(
            id=int(model["id"]),
            quantity=_float(model.get("quantity")),
            price=_required_float(model, "price"),
            taker_side=str(model.get("taker_side", "")),
            created_at=from_epoch(model.get("created_at")),
        )


@dataclass(frozen=True)
class Order:
    id: int
    side: str  # buy/sell
    quantity: float
    price: float
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    product_id: Optional[int] = None
    leverage_level: Optional[int] = None
    funding_currency: Optional[str] = None

    @property
    def is_live(self) -> bool:
        return self.status == OrderStatus.LIVE

    @classmethod
    def from_api(cls, model: Mapping[str, Any]) -> "Order":
        product_id = model.get("product_id")
        leverage = model.get("leverage_level")
        return cls(
            id=int(model["id"]),
            side=str(model.get("side", "")),
            quantity=_float(model.get("quantity")),
            price=_float(model.get("price")),
            status=OrderStatus(model.get("status", "live")),
            created_at=from_epoch(model.get("created_at")),
            updated_at=from_epoch(model.get("updated_at")),
            product_id=int(product_id) if product_id is not None else None,
            leverage_level=int(leverage) if leverage is not None else None,
            funding_currency=model.get("funding_currency"),
        )


@dataclass(frozen=True)
class Position:
    """An open or closed leveraged trade ("trade" in Quoine's API)."""

    id: int
    side: str  # long/short
    open_price: float
    stop_loss: float
    take_profit: float
    pnl: float
    created_at: datetime
    updated_at: datetime
    status: str = "open"

    @property
    def is_long(self) -> bool:
        return self.side == "long"

    @property
    def is_short(self) -> bool:
        return self.side == "short"

    @classmethod
    def from_api(cls, model: Mapping[str, Any]) -> "Position":
        return cls(
            id=int(model["id"]),
            side=str(model.get("side", "")),
            open_price=_required_float(model, "open_price"),
            stop_loss=_float(model.get("stop_loss")),
            take_profit=_float(model.get("take_profit")),
            pnl=_float(model.get("pnl")),
            created_at=from_epoch(model.get("created_at")),
            updated_at=from_epoch(model.get("updated_at")),
            status=str(model.get("status", "open")),
        )
