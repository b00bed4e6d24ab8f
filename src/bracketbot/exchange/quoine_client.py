from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, List, Mapping, Optional, TypeVar
from urllib.parse import urlencode

import httpx
import jwt

from bracketbot.config import Settings
from bracketbot.core.logger import get_logger, log_trade_event
from bracketbot.core.retry import with_retry
from bracketbot.exchange.models import Execution, Order, Position

log = get_logger("quoine")

T = TypeVar("T")

QUOINE_API_BASE = "https://api.quoine.com"
QUOINE_API_VERSION = "2"

# Statuses Quoine answers with when an order is no longer live or a
# trade is already closed.
_ALREADY_DONE_STATUSES = (404, 422)


class APIError(Exception):
    """Raised for any non-200 response or unparseable body from the exchange."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is None:
            return base
        return f"{base} (status={self.status_code})"


class InvalidOrderError(Exception):
    """Raised when order parameters are invalid before anything is sent."""
    pass


class QuoineClient:
    """Quoine REST client for executions, orders and trades.

    Every private endpoint is signed with an HS256 JWT whose payload is
    ``{path, nonce, token_id}``; ``path`` includes the query string and
    ``nonce`` is the current time in milliseconds, strictly increasing
    per client.

    Usage:
        client = QuoineClient(token_id="...", token_secret="...")
        executions = client.get_recent_executions(int(time.time()) - 60)
        client.place_order("buy", 0.1, executions[0].price * 0.99)
        client.close()
    """

    def __init__(
        self,
        token_id: str,
        token_secret: str,
        base_url: str = QUOINE_API_BASE,
        product_id: int = 5,
        leverage_level: int = 25,
        funding_currency: str = "JPY",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not token_id or not token_secret:
            raise ValueError("Quoine token id and secret are required")

        self.token_id = token_id
        self.token_secret = token_secret
        self.product_id = product_id
        self.leverage_level = leverage_level
        self.funding_currency = funding_currency

        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "X-Quoine-API-Version": QUOINE_API_VERSION,
                "Content-Type": "application/json",
            },
        )

        self._nonce_lock = threading.Lock()
        self._last_nonce = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "QuoineClient":
        return cls(
            token_id=settings.quoine_token_id,
            token_secret=settings.quoine_token_secret,
            base_url=settings.quoine_base_url,
            product_id=settings.product_id,
            leverage_level=settings.leverage_level,
            funding_currency=settings.funding_currency,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()
        log.debug("Quoine client closed")

    # -- signing -------------------------------------------------------

    def _next_nonce(self) -> int:
        with self._nonce_lock:
            nonce = max(int(time.time() * 1000), self._last_nonce + 1)
            self._last_nonce = nonce
            return nonce

    def auth_token(self, path: str) -> str:
        """Build the X-Quoine-Auth token for a request path."""
        payload = {
            "path": path,
            "nonce": self._next_nonce(),
            "token_id": self.token_id,
        }
        return jwt.encode(payload, self.token_secret, algorithm="HS256")

    # -- transport -----------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[Mapping[str, Any]] = None,
        authenticated: bool = True,
    ) -> Any:
        headers = {}
        if authenticated:
            headers["X-Quoine-Auth"] = self.auth_token(path)

        log.debug(f"Quoine API: {method} {path}")
        response = self.client.request(
            method,
            path,
            headers=headers,
            content=json.dumps(body) if body is not None else None,
        )
        log.debug(response.text)

        if response.status_code != 200:
            log.error(f"Quoine API error on {method} {path}: {response.status_code} {response.text}")
            raise APIError(
                f"Quoine API error on {method} {path}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            log.error(f"Malformed response body on {method} {path}: {response.text[:200]}")
            raise APIError(
                f"Malformed response body on {method} {path}",
                status_code=response.status_code,
                body=response.text,
            ) from e

    @staticmethod
    def _parse(factory: Callable[[Any], T], data: Any) -> T:
        try:
            return factory(data)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise APIError(f"Unexpected response shape: {e}", body=json.dumps(data, default=str)) from e

    @staticmethod
    def _models(data: Any) -> list:
        if isinstance(data, Mapping):
            return data["models"]
        return data

    @staticmethod
    def _path(base: str, params: Mapping[str, Any]) -> str:
        query = urlencode({k: v for k, v in params.items() if v is not None})
        return f"{base}?{query}" if query else base

    # -- executions ----------------------------------------------------

    @with_retry(max_attempts=3, min_wait=1.0, max_wait=10.0)
    def get_recent_executions(self, since_timestamp: int) -> List[Execution]:
        """Executions since an epoch timestamp, most recent first.

        GET /executions?product_id=&timestamp=  (public)
        """
        path = self._path("/executions", {"product_id": self.product_id, "timestamp": int(since_timestamp)})
        data = self._request("GET", path, authenticated=False)
        executions = self._parse(lambda d: [Execution.from_api(m) for m in self._models(d)], data)
        return sorted(executions, key=lambda e: (e.created_at, e.id), reverse=True)

    # -- orders --------------------------------------------------------

    @with_retry(max_attempts=3, min_wait=1.0, max_wait=10.0)
    def list_orders(self, status: Optional[str] = "live") -> List[Order]:
        """GET /orders?status=live"""
        path = self._path("/orders", {"status": status})
        data = self._request("GET", path)
        return self._parse(lambda d: [Order.from_api(m) for m in self._models(d)], data)

    @with_retry(max_attempts=3, min_wait=1.0, max_wait=10.0)
    def get_order(self, order_id: int) -> Order:
        """GET /orders/:id"""
        data = self._request("GET", f"/orders/{order_id}")
        return self._parse(Order.from_api, data)

    def place_order(self, side: str, quantity: float, price: float) -> Order:
        """Place a leveraged limit order.

        POST /orders

        Raises:
            InvalidOrderError: If side, quantity or price is invalid
            APIError: If the exchange rejects the order
        """
        side = side.lower()
        if side not in ("buy", "sell"):
            raise InvalidOrderError(f"Invalid side: {side}")
        if quantity <= 0:
            raise InvalidOrderError(f"Invalid quantity: {quantity}")
        if price <= 0:
            raise InvalidOrderError(f"Invalid price: {price}")

        body = {
            "order_type": "limit",
            "product_id": self.product_id,
            "side": side,
            "quantity": quantity,
            "price": price,
            "leverage_level": self.leverage_level,
            "funding_currency": self.funding_currency,
        }
        data = self._request("POST", "/orders", body=body)
        order = self._parse(Order.from_api, data)
        log_trade_event(log, "order_placed", order_id=order.id, side=side, quantity=quantity, price=price)
        return order

    def cancel_order(self, order_id: int) -> Optional[Order]:
        """Cancel an order.

        PUT /orders/:id/cancel

        Returns:
            The cancelled Order, or None if it was no longer live
        """
        try:
            data = self._request("PUT", f"/orders/{order_id}/cancel")
        except APIError as e:
            if e.status_code in _ALREADY_DONE_STATUSES:
                log.info(f"Order {order_id} already done, nothing to cancel")
                return None
            raise
        order = self._parse(Order.from_api, data)
        log_trade_event(log, "order_cancelled", order_id=order.id, status=order.status.value)
        return order

    def cancel_all_orders(self) -> int:
        """Cancel every live order. Returns the number cancelled."""
        count = 0
        for order in self.list_orders(status="live"):
            if self.cancel_order(order.id) is not None:
                count += 1
        return count

    # -- trades (positions) --------------------------------------------

    @with_retry(max_attempts=3, min_wait=1.0, max_wait=10.0)
    def list_positions(self, status: Optional[str] = "open", limit: Optional[int] = None) -> List[Position]:
        """GET /trades?status=open

        ``status=None`` lists trades of every status.
        """
        path = self._path("/trades", {"status": status, "limit": limit})
        data = self._request("GET", path)
        return self._parse(lambda d: [Position.from_api(m) for m in self._models(d)], data)

    def close_position(self, position_id: int) -> Optional[Position]:
        """Close a trade at market.

        PUT /trades/:id/close

        Returns:
            The closed Position with realized pnl, or None if already closed
        """
        try:
            data = self._request("PUT", f"/trades/{position_id}/close")
        except APIError as e:
            if e.status_code in _ALREADY_DONE_STATUSES:
                log.info(f"Trade {position_id} already closed")
                return None
            raise
        position = self._parse(Position.from_api, data)
        log_trade_event(log, "position_closed", position_id=position.id, side=position.side, pnl=position.pnl)
        return position

    def update_position(self, position_id: int, **params: Any) -> Position:
        """Update trade exit parameters (take_profit, stop_loss).

        PUT /trades/:id
        """
        data = self._request("PUT", f"/trades/{position_id}", body=params)
        return self._parse(Position.from_api, data)

    def set_position_take_profit(self, position_id: int, value: float) -> Position:
        position = self.update_position(position_id, take_profit=value)
        log_trade_event(log, "take_profit_set", position_id=position_id, price=value)
        return position

    def close_all_positions(self) -> List[Position]:
        """Close every open trade. Returns the ones actually closed here."""
        closed = []
        for position in self.list_positions(status="open"):
            result = self.close_position(position.id)
            if result is not None:
                closed.append(result)
        return closed
