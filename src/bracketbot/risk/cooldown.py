from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from bracketbot.core.logger import get_logger
from bracketbot.core.timeutils import display, from_epoch

log = get_logger("cooldown")


class LockState(Enum):
    UNLOCKED = "unlocked"
    LOCKED = "locked"


@dataclass
class CooldownLock:
    """Forward-only trading lock set after a losing close.

    States:
        UNLOCKED: New brackets may be placed.
        LOCKED: ``now < locked_until``; the loop waits it out.

    The deadline is shared between the main loop and unwind threads, so
    every update is a compare-and-set to ``max(current, candidate)``: an
    earlier, shorter cooldown can never overwrite a later one.

    Usage:
        lock = CooldownLock()
        lock.lock_for(600)          # after a losing close
        if lock.is_locked():
            time.sleep(lock.remaining())
    """

    clock: Callable[[], float] = time.time
    _locked_until: float = field(default=0.0, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def locked_until(self) -> float:
        with self._lock:
            return self._locked_until

    def state(self, now: Optional[float] = None) -> LockState:
        now = self.clock() if now is None else now
        with self._lock:
            return LockState.LOCKED if now < self._locked_until else LockState.UNLOCKED

    def is_locked(self, now: Optional[float] = None) -> bool:
        return self.state(now) == LockState.LOCKED

    def remaining(self, now: Optional[float] = None) -> float:
        """Seconds until the lock releases (0 when unlocked)."""
        now = self.clock() if now is None else now
        with self._lock:
            return max(0.0, self._locked_until - now)

    def extend_until(self, deadline: float) -> bool:
        """Move the deadline forward to ``deadline`` if it is later.

        Returns:
            True if the deadline moved
        """
        with self._lock:
            if deadline <= self._locked_until:
                return False
            self._locked_until = deadline
        log.warning(f"Trading locked until {display(from_epoch(deadline))}")
        return True

    def lock_for(self, seconds: float) -> bool:
        return self.extend_until(self.clock() + seconds)
