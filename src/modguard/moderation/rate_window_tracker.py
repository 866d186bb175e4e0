"""
Sliding-window event counters keyed by (guild, category).

Each counter keeps the ordered timestamps of events inside its window. Every
read or write first evicts entries older than ``now - window_seconds`` and then
counts, so the result is always a true sliding window rather than a fixed
bucket that an attacker could straddle at its edges.

All operations are synchronous and guarded by one lock, which makes the
evict-then-count sequence atomic per call even when the tracker is shared
between the event loop and executor threads.
"""

from __future__ import annotations

import bisect
import threading
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, Optional, Tuple

from modguard.datatypes.discord_datatypes import GuildID
from modguard.datatypes.event_datatypes import EventCategory
from modguard.util.logger import get_logger

logger = get_logger("rate_window_tracker")

CounterKey = Tuple[GuildID, EventCategory]
WindowResolver = Callable[[GuildID, EventCategory], float]


def to_epoch(value: datetime | float) -> float:
    return value.timestamp() if isinstance(value, datetime) else float(value)


class WindowCounter:
    """Ordered event timestamps for one (guild, category) pair."""

    __slots__ = ("timestamps", "window_seconds", "last_seen")

    def __init__(self, window_seconds: float) -> None:
        self.timestamps: Deque[float] = deque()
        self.window_seconds = window_seconds
        self.last_seen = 0.0

    def evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self.timestamps and self.timestamps[0] < cutoff:
            self.timestamps.popleft()

    def add(self, timestamp: float) -> None:
        if not self.timestamps or timestamp >= self.timestamps[-1]:
            self.timestamps.append(timestamp)
        else:
            # Late arrival; keep the sequence ordered
            bisect.insort(self.timestamps, timestamp)
        self.last_seen = max(self.last_seen, timestamp)

    def __len__(self) -> int:
        return len(self.timestamps)


class RateWindowTracker:
    """
    Per-(guild, category) sliding-window counters.

    Window lengths come from the guild policy. Callers that already hold a
    policy snapshot pass ``window_seconds`` explicitly so the count matches
    the snapshot being evaluated; otherwise ``window_resolver`` is consulted.

    Counters are created on the first recorded event and removed by
    :meth:`sweep` once they have been empty for longer than the largest window
    seen for their category. Unknown keys read as zero and never allocate.
    """

    def __init__(self, window_resolver: Optional[WindowResolver] = None) -> None:
        self._counters: Dict[CounterKey, WindowCounter] = {}
        self._max_windows: Dict[EventCategory, float] = {}
        self._window_resolver = window_resolver
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def record(
        self,
        guild_id: GuildID,
        category: EventCategory,
        timestamp: datetime | float,
        window_seconds: Optional[float] = None,
    ) -> int:
        """
        Add one event and return the count inside the window ending at it.

        Args:
            guild_id: Guild the event belongs to.
            category: Counting category.
            timestamp: Event time (aware datetime or POSIX seconds).
            window_seconds: Window length; resolved from policy when omitted.

        Returns:
            int: Number of events in the trailing window, including this one.
        """
        window = self._resolve_window(guild_id, category, window_seconds)
        if window <= 0:
            return 0
        ts = to_epoch(timestamp)
        key = (guild_id, category)

        with self._lock:
            counter = self._counters.get(key)
            if counter is None:
                counter = WindowCounter(window)
                self._counters[key] = counter
            counter.window_seconds = window
            self._max_windows[category] = max(self._max_windows.get(category, 0.0), window)

            counter.add(ts)
            counter.evict(max(ts, counter.last_seen))
            return len(counter)

    def current_count(
        self,
        guild_id: GuildID,
        category: EventCategory,
        now: datetime | float,
        window_seconds: Optional[float] = None,
    ) -> int:
        """Return the number of events in the window ending at ``now``."""
        with self._lock:
            counter = self._counters.get((guild_id, category))
            if counter is None:
                return 0
            if window_seconds is not None:
                counter.window_seconds = window_seconds
            counter.evict(to_epoch(now))
            return len(counter)

    def snapshot(self, guild_id: GuildID, now: datetime | float) -> Dict[EventCategory, int]:
        """Current count of every category that has a live counter for the guild."""
        at = to_epoch(now)
        with self._lock:
            counts: Dict[EventCategory, int] = {}
            for (counter_guild, category), counter in self._counters.items():
                if counter_guild != guild_id:
                    continue
                counter.evict(at)
                counts[category] = len(counter)
            return counts

    def sweep(self, now: datetime | float) -> int:
        """
        Drop counters that have been empty for longer than their category's
        largest window.

        Returns:
            int: Number of counters removed.
        """
        at = to_epoch(now)
        with self._lock:
            stale = []
            for key, counter in self._counters.items():
                counter.evict(at)
                if counter.timestamps:
                    continue
                emptied_at = counter.last_seen + counter.window_seconds
                if at - emptied_at > self._max_windows.get(key[1], counter.window_seconds):
                    stale.append(key)
            for key in stale:
                del self._counters[key]

        if stale:
            logger.debug("[RATE TRACKER] Collected %d idle counters", len(stale))
        return len(stale)

    def forget_guild(self, guild_id: GuildID) -> None:
        """Remove every counter of a guild, e.g. when the bot leaves it."""
        with self._lock:
            for key in [key for key in self._counters if key[0] == guild_id]:
                del self._counters[key]

    def __len__(self) -> int:
        return len(self._counters)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve_window(self, guild_id: GuildID, category: EventCategory, window_seconds: Optional[float]) -> float:
        if window_seconds is not None:
            return float(window_seconds)
        if self._window_resolver is None:
            return 0.0
        return float(self._window_resolver(guild_id, category))
