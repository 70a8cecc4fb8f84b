"""
Single-writer / multi-reader snapshot handoff.

The producer fills the back slot and then flips the front index, so a reader
always sees a complete value from one publish. The sequence number lets a
consumer tell whether anything new arrived since its last read.
"""

from typing import Generic, Optional, Tuple, TypeVar

T = TypeVar('T')


class SnapshotBuffer(Generic[T]):
    """Double-buffered snapshot with a valid flag"""

    def __init__(self):
        self._slots = [None, None]
        self._front = 0
        self.sequence = 0
        self.valid = False

    def publish(self, value: T):
        back = self._front ^ 1
        self._slots[back] = value
        self._front = back
        self.sequence += 1
        self.valid = True

    def read(self) -> Optional[T]:
        """Most recent published value, None before the first publish"""
        return self._slots[self._front] if self.valid else None

    def read_with_sequence(self) -> Tuple[Optional[T], int]:
        return self.read(), self.sequence

    def clear(self):
        self._slots = [None, None]
        self._front = 0
        self.sequence = 0
        self.valid = False
