"""
Relay submission quota.

Each beneficiary may have a bounded number of intents relayed per window.
A batch costs one unit per intent, so splitting a batch buys nothing.
"""

import math
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional, Tuple


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of charging a batch against a beneficiary's quota."""
    allowed: bool
    limit: int
    remaining: int
    reset_after: float

    def headers(self) -> Dict[str, str]:
        """HTTP headers describing the quota after this decision."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_after)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(math.ceil(self.reset_after))
        return headers


class SubmissionQuota:
    """
    Sliding-window intent quota keyed by beneficiary.

    Thread-safe; the clock is injectable for tests.
    """

    def __init__(self, intents_per_window: int, window_seconds: int = 60,
                 clock: Optional[Callable[[], float]] = None):
        self.limit = max(1, intents_per_window)
        self._window = window_seconds
        self._clock = clock or time.monotonic
        self._spent: Dict[str, Deque[Tuple[float, int]]] = defaultdict(deque)
        self._used: Dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def _expire(self, beneficiary: str, now: float) -> None:
        spent = self._spent[beneficiary]
        while spent and spent[0][0] <= now - self._window:
            _, cost = spent.popleft()
            self._used[beneficiary] -= cost

    def consume(self, beneficiary: str, intents: int = 1) -> QuotaDecision:
        """Charge `intents` units, or refuse and say when enough frees up."""
        now = self._clock()
        with self._lock:
            self._expire(beneficiary, now)
            spent = self._spent[beneficiary]
            used = self._used[beneficiary]

            if used + intents > self.limit:
                return QuotaDecision(
                    allowed=False,
                    limit=self.limit,
                    remaining=self.limit - used,
                    reset_after=self._retry_after(spent, used, intents, now),
                )

            spent.append((now, intents))
            self._used[beneficiary] = used + intents
            return QuotaDecision(
                allowed=True,
                limit=self.limit,
                remaining=self.limit - used - intents,
                reset_after=spent[0][0] + self._window - now,
            )

    def _retry_after(self, spent: Deque[Tuple[float, int]], used: int, intents: int, now: float) -> float:
        if intents > self.limit:
            # never fits; report a full window
            return float(self._window)
        for at, cost in spent:
            used -= cost
            if used + intents <= self.limit:
                return max(0.0, at + self._window - now)
        return float(self._window)

    def reset(self, beneficiary: Optional[str] = None) -> None:
        """Forget spent quota for one beneficiary or for all."""
        with self._lock:
            if beneficiary is None:
                self._spent.clear()
                self._used.clear()
            else:
                self._spent.pop(beneficiary, None)
                self._used.pop(beneficiary, None)
