from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

from bracketbot.core.logger import get_logger
from bracketbot.core.timeutils import display, utcnow
from bracketbot.exchange.models import Position

log = get_logger("notify")


def format_trade_close(position: Position, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"{display(now)}: Closed {position.side} position with {position.pnl} pnl."


def format_session_summary(
    start_time: datetime,
    positions: Iterable[Position],
    now: Optional[datetime] = None,
) -> str:
    now = now or utcnow()
    total_pnl = sum(p.pnl for p in positions)
    return f"Duration: {display(start_time)} ~ {display(now)}\nTotal pnl: {total_pnl}"


class Notifier(ABC):
    """Best-effort delivery of text messages to the operator.

    Implementations must not raise from the public methods: a lost
    message is logged, never allowed to stop trading.
    """

    @abstractmethod
    def push_text(self, text: str) -> bool:
        raise NotImplementedError

    def send_alert(self, text: str) -> bool:
        return self.push_text(text)

    def report_trade_close(self, position: Position) -> bool:
        return self.push_text(format_trade_close(position))

    def report_session_summary(self, start_time: datetime, positions: Iterable[Position]) -> bool:
        return self.push_text(format_session_summary(start_time, positions))

    def close(self) -> None:
        pass


class LogNotifier(Notifier):
    """Writes notifications to the log. Used when LINE is not configured."""

    def push_text(self, text: str) -> bool:
        log.info(f"[NOTIFY] {text}")
        return True
