"""Bounded in-memory history of failures and the recoveries attempted for them."""

import time
from collections import deque
from dataclasses import dataclass, field


@dataclass
class ErrorHistoryEntry:
    step: str
    error: str
    recovery: str
    success: bool = False
    timestamp: float = field(default_factory=time.time)


class ErrorHistory:
    """Fixed-capacity ring buffer; the oldest entry is evicted first.

    Access is confined to one flow at a time, so no locking is done.
    """

    def __init__(self, capacity: int = 100) -> None:
        self._entries: deque[ErrorHistoryEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def record(self, step: str, error: str, recovery: str, success: bool = False) -> ErrorHistoryEntry:
        entry = ErrorHistoryEntry(step=step, error=error, recovery=recovery, success=success)
        self._entries.append(entry)
        return entry

    def mark_last_success(self, step: str) -> bool:
        """Flag the most recent entry for ``step`` as successfully recovered."""
        for entry in reversed(self._entries):
            if entry.step == step:
                entry.success = True
                return True
        return False

    def successful_patterns(self) -> list[tuple[str, float]]:
        """Recovery patterns that worked more than half of the time.

        Returns:
            (pattern, success_rate) pairs sorted by success rate, descending
        """
        totals: dict[str, list[int]] = {}
        for entry in self._entries:
            key = f"{entry.error[:30]}_{entry.recovery}"
            stats = totals.setdefault(key, [0, 0])
            stats[1] += 1
            if entry.success:
                stats[0] += 1

        patterns = [
            (pattern, success / total)
            for pattern, (success, total) in totals.items()
            if success / total > 0.5
        ]
        return sorted(patterns, key=lambda p: p[1], reverse=True)

    def entries(self) -> list[ErrorHistoryEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
