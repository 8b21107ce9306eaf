"""roster_sync.allocator

Sequential roster_id allocation for new students.
"""

from __future__ import annotations

from typing import Iterable


class RosterIdAllocator:
    """Single-writer counter; each call to allocate() consumes one id.

    Seeded as max(existing ids) + 1, or base + 1 when there are none.
    """

    def __init__(self, existing_ids: Iterable[int], base: int) -> None:
        self._next = max(existing_ids, default=base) + 1
        self.allocated: list[int] = []

    @property
    def next_id(self) -> int:
        return self._next

    def allocate(self) -> int:
        roster_id = self._next
        self._next += 1
        self.allocated.append(roster_id)
        return roster_id

    def release(self, roster_id: int) -> None:
        """Return the most recently allocated id after a failed insert."""
        if not self.allocated or self.allocated[-1] != roster_id:
            raise ValueError(f"roster_id {roster_id} is not the latest allocation")
        self.allocated.pop()
        self._next = roster_id
