"""
Cooldown countdown - display-side extrapolation of a server cooldown.

The server reports ms_remaining once; the countdown advances it with a
local monotonic clock so the display can re-render without re-fetching.
Eligibility is never decided here.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

from trial_clients.models.domain import CooldownState

RERENDER_INTERVAL_SECONDS: Final = 60

MS_PER_MINUTE: Final = 60 * 1000
MS_PER_HOUR: Final = 60 * MS_PER_MINUTE
MS_PER_DAY: Final = 24 * MS_PER_HOUR


@dataclass(frozen=True)
class CountdownParts:
    """Remaining time split for display."""

    days: int
    hours: int
    minutes: int

    def label(self) -> str:
        if self.days > 0:
            return f"{self.days}d {self.hours}h {self.minutes}m"
        if self.hours > 0:
            return f"{self.hours}h {self.minutes}m"
        return f"{self.minutes}m"


class CooldownCountdown:
    """
    Countdown from a single server snapshot.

    A None snapshot means "no countdown" (e.g. blocked by a pending
    review); remaining_ms() then stays None.
    """

    def __init__(
        self,
        ms_remaining: int | None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._snapshot_ms = ms_remaining
        self._clock = clock
        self._taken_at = clock()

    @classmethod
    def from_state(
        cls, state: CooldownState, clock: Callable[[], float] = time.monotonic
    ) -> "CooldownCountdown":
        return cls(state.ms_remaining, clock=clock)

    @property
    def active(self) -> bool:
        remaining = self.remaining_ms()
        return remaining is not None and remaining > 0

    def remaining_ms(self) -> int | None:
        """Snapshot minus elapsed local time, floored at zero."""
        if self._snapshot_ms is None:
            return None
        elapsed_ms = int((self._clock() - self._taken_at) * 1000)
        return max(self._snapshot_ms - elapsed_ms, 0)

    def parts(self) -> CountdownParts | None:
        remaining = self.remaining_ms()
        if remaining is None:
            return None
        days, rest = divmod(remaining, MS_PER_DAY)
        hours, rest = divmod(rest, MS_PER_HOUR)
        minutes = rest // MS_PER_MINUTE
        return CountdownParts(days=days, hours=hours, minutes=minutes)

    def needs_refetch(self) -> bool:
        """True once a countdown has run out; the server decides what comes next."""
        return self._snapshot_ms is not None and not self.active
