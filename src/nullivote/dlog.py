"""Small-range discrete log via a precomputed table.

Only small non-negative integers are ever encrypted (per-voter nullification
counts), so a table of n*G for n in [0, max_value] answers every lookup in
O(1) after O(max_value) point additions.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from . import curve
from .curve import Point
from .errors import DiscreteLogOutOfRange

logger = logging.getLogger(__name__)


class DiscreteLogTable:
    """Read-only mapping point -> n for n in [0, max_value]

    Built once; safe to share between threads and tally runs.
    """

    def __init__(self, max_value: int, entries: Dict[Point, int]):
        self.max_value = max_value
        self._entries = entries

    @classmethod
    def build(cls, max_value: int) -> "DiscreteLogTable":
        if max_value < 0:
            raise ValueError("max_value must be non-negative")

        G = curve.base_point()
        current = curve.identity()
        entries: Dict[Point, int] = {}
        for n in range(max_value + 1):
            entries[current] = n
            if n < max_value:
                current = curve.add(current, G)

        logger.info("built discrete log table with %d entries", len(entries))
        return cls(max_value, entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, point: Point) -> bool:
        return point in self._entries

    def lookup(self, point: Point) -> Optional[int]:
        """Return n with n*G == point, or None if n is outside the table"""

        return self._entries.get(point)

    def resolve(self, point: Point) -> int:
        """Like lookup, but raise DiscreteLogOutOfRange when not found"""

        n = self._entries.get(point)
        if n is None:
            raise DiscreteLogOutOfRange(f"point is not n*G for any n <= {self.max_value}")
        return n


_shared: Dict[int, DiscreteLogTable] = {}
_shared_lock = threading.Lock()


def shared_table(max_value: int) -> DiscreteLogTable:
    """Process-wide table for max_value, built on first use"""

    with _shared_lock:
        table = _shared.get(max_value)
        if table is None:
            table = DiscreteLogTable.build(max_value)
            _shared[max_value] = table
        return table
