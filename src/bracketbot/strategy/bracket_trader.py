from __future__ import annotations

import threading
import time
import traceback
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from bracketbot.config import Settings
from bracketbot.core.logger import get_logger, log_error_with_context, set_cycle_id
from bracketbot.core.timeutils import from_epoch
from bracketbot.exchange.models import Position
from bracketbot.exchange.quoine_client import APIError, QuoineClient
from bracketbot.notify.base import Notifier
from bracketbot.risk.cooldown import CooldownLock
from bracketbot.risk.margins import MarginPolicy

log = get_logger("trader")

# Upper bound on trades fetched for the end-of-session report
SESSION_HISTORY_LIMIT = 1000


class CycleOutcome(Enum):
    LOCKED = "locked"  # Waited out a cooldown
    NO_SIGNAL = "no_signal"  # No recent executions to price from
    PLACED = "placed"  # Bracket placed and unwinds scheduled


class ErrorTier(Enum):
    RECOVERABLE = "recoverable"  # Sleep and restart the loop
    FATAL = "fatal"  # Alert, shut down, re-raise


class StopRequested(Exception):
    """Raised from a wait when shutdown has been requested."""
    pass


def classify_error(error: BaseException) -> ErrorTier:
    if isinstance(error, APIError):
        return ErrorTier.RECOVERABLE
    return ErrorTier.FATAL


def format_error_alert(error: BaseException) -> str:
    frames = traceback.extract_tb(error.__traceback__)
    where = f"{frames[-1].filename}:{frames[-1].lineno}" if frames else "<unknown>"
    return f"{where}: {error} ({type(error).__name__})"


@dataclass
class BracketTrader:
    """Brackets the last traded price with a buy and a sell limit order.

    Each cycle:
    1. Waits out the cooldown lock if a recent close lost money
    2. Reads executions from the last minute; without one, waits and retries
    3. Places buy at price * lower_margin and sell at price * upper_margin
    4. Waits for fills, then cancels whatever is still live
    5. Sets a take-profit on each open position and schedules its close

    Closes run on a thread pool after ``close_delay_seconds`` and never
    block the loop. A losing close extends the cooldown lock.

    Errors are split in two tiers: APIError sleeps and restarts the loop,
    anything else alerts and terminates. Shutdown always cancels live
    orders, closes open positions and reports the session pnl.
    """

    settings: Settings
    client: QuoineClient
    notifier: Notifier
    lock: Optional[CooldownLock] = None
    clock: Callable[[], float] = time.time
    max_unwind_workers: int = 32

    margins: MarginPolicy = field(init=False)
    started_at: Optional[datetime] = field(default=None, init=False)
    _stop: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _unwinds: Dict[int, Future] = field(default_factory=dict, init=False, repr=False)
    _unwinds_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _executor: ThreadPoolExecutor = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.lock is None:
            self.lock = CooldownLock(clock=self.clock)
        self.margins = MarginPolicy.from_settings(self.settings)
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_unwind_workers,
            thread_name_prefix="unwind",
        )

    # -- control -------------------------------------------------------

    def request_stop(self) -> None:
        """Ask the loop to stop at its next wait."""
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def _sleep(self, seconds: float) -> None:
        if self._stop.wait(timeout=max(0.0, seconds)):
            raise StopRequested()

    def _check_stop(self) -> None:
        if self._stop.is_set():
            raise StopRequested()

    # -- main loop -----------------------------------------------------

    def run(self) -> None:
        """Run until interrupted or a fatal error occurs.

        Raises:
            Exception: Any error outside the recoverable tier, after the
                alert has been sent and shutdown has run
        """
        self.started_at = from_epoch(self.clock())
        log.info(
            f"Trader started. product={self.settings.product_id} qty={self.settings.order_quantity} "
            f"margins={self.margins.lower_margin}/{self.margins.upper_margin}"
        )

        try:
            while not self._stop.is_set():
                try:
                    self.run_cycle()
                except StopRequested:
                    raise
                except Exception as e:
                    if classify_error(e) is ErrorTier.FATAL:
                        raise
                    log_error_with_context(
                        log,
                        f"APIError occurred. Sleep {self.settings.api_error_sleep_seconds:.0f} seconds",
                        e,
                        status_code=getattr(e, "status_code", None),
                    )
                    self._sleep(self.settings.api_error_sleep_seconds)
        except (KeyboardInterrupt, StopRequested):
            log.info("Interrupted.")
        except Exception as e:
            log.exception(f"Fatal error: {e}")
            self.notifier.send_alert(format_error_alert(e))
            raise
        finally:
            self.shutdown()

    def run_cycle(self) -> CycleOutcome:
        """Execute one cycle of the loop."""
        self._check_stop()
        cid = set_cycle_id()
        now = self.clock()

        if self.lock.is_locked(now):
            remaining = self.lock.remaining(now)
            log.info(f"[{cid}] Locked after a losing close, waiting {remaining:.0f}s")
            self._sleep(remaining)
            return CycleOutcome.LOCKED

        since = int(now - self.settings.signal_window_seconds)
        executions = self.client.get_recent_executions(since)
        if not executions:
            log.info(f"[{cid}] No executions since {since}, waiting {self.settings.no_signal_sleep_seconds:.0f}s")
            self._sleep(self.settings.no_signal_sleep_seconds)
            return CycleOutcome.NO_SIGNAL

        # No new exposure once shutdown has been requested
        self._check_stop()
        self.place_bracket(executions[0].price)

        self._sleep(self.settings.fill_wait_seconds)

        self.cancel_open_orders()

        for position in self.client.list_positions(status="open"):
            self.adjust_take_profit(position)
            self.schedule_close(position)

        return CycleOutcome.PLACED

    # -- steps ---------------------------------------------------------

    def place_bracket(self, reference_price: float) -> tuple[float, float]:
        buy_price, sell_price = self.margins.bracket_prices(reference_price)
        qty = self.settings.order_quantity
        log.info(f"Bracketing {reference_price}: buy {qty} @ {buy_price}, sell {qty} @ {sell_price}")
        self.client.place_order("buy", qty, buy_price)
        self.client.place_order("sell", qty, sell_price)
        return (buy_price, sell_price)

    def cancel_open_orders(self) -> int:
        orders = self.client.list_orders(status="live")
        for order in orders:
            self.client.cancel_order(order.id)
        return len(orders)

    def adjust_take_profit(self, position: Position) -> Optional[Position]:
        try:
            target = self.margins.take_profit(position)
        except ValueError as e:
            log.warning(f"Skipping take-profit for position {position.id}: {e}")
            return None
        return self.client.set_position_take_profit(position.id, target)

    def schedule_close(self, position: Position) -> Optional[Future]:
        """Close ``position`` after the configured delay on a worker thread.

        Returns:
            The tracking future, or None if a close is already pending
        """
        with self._unwinds_lock:
            for pid in [pid for pid, f in self._unwinds.items() if f.done()]:
                del self._unwinds[pid]

            if position.id in self._unwinds:
                log.debug(f"Close already pending for position {position.id}")
                return None

            future = self._executor.submit(self._unwind, position.id)
            self._unwinds[position.id] = future
            return future

    def _unwind(self, position_id: int) -> Optional[Position]:
        # Shutdown sets the event, which ends the delay early
        self._stop.wait(timeout=self.settings.close_delay_seconds)

        try:
            closed = self.client.close_position(position_id)
        except Exception as e:
            log_error_with_context(log, "Failed to close position", e, position_id=position_id)
            self.notifier.send_alert(f"Failed to close position {position_id}: {e}")
            return None

        if closed is None:
            return None

        self.notifier.report_trade_close(closed)

        # Lock for a while to sit out a slump
        if closed.pnl < 0:
            self.lock.lock_for(self.settings.loss_cooldown_seconds)

        return closed

    def pending_unwinds(self) -> List[Future]:
        with self._unwinds_lock:
            return [f for f in self._unwinds.values() if not f.done()]

    # -- shutdown ------------------------------------------------------

    def session_positions(self) -> List[Position]:
        """Positions opened since the trader started, any status."""
        positions = self.client.list_positions(status=None, limit=SESSION_HISTORY_LIMIT)
        if self.started_at is None:
            return positions
        return [p for p in positions if p.created_at >= self.started_at]

    def report_session(self) -> None:
        positions = self.session_positions()
        started_at = self.started_at or from_epoch(self.clock())
        self.notifier.report_session_summary(started_at, positions)
        log.info(f"Session pnl over {len(positions)} positions: {sum(p.pnl for p in positions)}")

    def shutdown(self) -> None:
        """Settle everything the session left open, then report.

        Each step runs even if an earlier one failed.
        """
        log.info("Shutting down...")
        self._stop.set()

        pending = self.pending_unwinds()
        if pending:
            log.info(f"Waiting for {len(pending)} pending closes ...")
            wait(pending)

        steps = [
            ("Cancelling all orders", self.client.cancel_all_orders),
            ("Closing all positions", self.client.close_all_positions),
            ("Reporting session", self.report_session),
        ]
        for label, step in steps:
            log.info(f"{label} ...")
            try:
                step()
            except Exception as e:
                log_error_with_context(log, f"{label} failed", e)

        self._executor.shutdown(wait=True)
        log.info("Trader stopped.")
