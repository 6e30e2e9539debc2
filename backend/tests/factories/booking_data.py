"""Shared constants and a controllable clock for the booking tests."""

from datetime import date, datetime, timedelta
from decimal import Decimal

# Monday morning. Tuesday sessions are 25+ hours away.
FIXED_NOW = datetime(2026, 3, 2, 8, 0)
TUESDAY = date(2026, 3, 3)
SESSION_RATE = Decimal("1500.00")
MERCHANT_ID = "1211149"
MERCHANT_SECRET = "payhere-test-secret"


class FrozenClock:
    """Callable clock pinned to a wall-clock time; tests move it explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)
