"""
Version and identifier generation.

Three generators:
- next_version(): monotonic epoch-millisecond version numbers
- next_id(): random document identifiers (nanoid-style or UUID)
- next_sortable_id(): ULIDs for logs, ordered by creation time

Invariants:
    - next_version() never returns the same value twice in a process,
      even when called many times within one millisecond
    - Versions stay close to wall-clock milliseconds so they can be stored
      in DateTime64(3) columns
    - None of these functions block or raise

How to change safely:
    - Never reset the version cell outside tests
    - Keep the nanoid alphabet at 64 symbols (byte & 63 relies on it)
"""

from __future__ import annotations

import os
import secrets
import threading
import time
import uuid
from enum import Enum

NANOID_ALPHABET = "useandom-26T198340PX75pxJACKVERYMINDBUSHWOLF_GQZbfghjklqvwyzrict"
NANOID_SIZE = 21

CROCKFORD_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH = 26


class IdType(Enum):
    """Document identifier kinds."""

    TEXT = "text"
    UUID = "uuid"

    @classmethod
    def from_str(cls, value: str) -> IdType:
        """Convert string representation to IdType.

        Raises:
            ValueError: If value is not a known id type
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid id type '{value}'. Valid types: {valid}")


class VersionClock:
    """Process-wide monotonic version source.

    Holds a single (clock_ms, counter) cell. Each call reads the wall clock;
    if it moved past the last issued value the cell is reset to it,
    otherwise the counter advances. The issued value is clock_ms + counter,
    which equals max(now_ms, last + 1).

    Thread-safety:
        The cell is only read and written under an internal lock.
    """

    def __init__(self, clock=None) -> None:
        self._clock = clock or (lambda: time.time_ns() // 1_000_000)
        self._lock = threading.Lock()
        self._clock_ms = 0
        self._counter = 0

    def next(self) -> int:
        with self._lock:
            now = self._clock()
            if now > self._clock_ms + self._counter:
                self._clock_ms = now
                self._counter = 0
            else:
                self._counter += 1
            return self._clock_ms + self._counter

    @property
    def last(self) -> int:
        """Last issued version (0 before the first call)."""
        with self._lock:
            return self._clock_ms + self._counter


_version_clock = VersionClock()


def next_version() -> int:
    """Return a version strictly greater than every prior one in this process."""
    return _version_clock.next()


def _nanoid(size: int = NANOID_SIZE) -> str:
    data = secrets.token_bytes(size)
    return "".join(NANOID_ALPHABET[b & 63] for b in data)


def next_id(kind: IdType | str = IdType.TEXT) -> str:
    """Generate a document identifier.

    Args:
        kind: IdType.TEXT for a 21-char URL-safe id, IdType.UUID for uuid4

    Returns:
        New identifier string
    """
    if isinstance(kind, str):
        kind = IdType.from_str(kind)
    if kind is IdType.UUID:
        return str(uuid.uuid4())
    return _nanoid()


def _encode_crockford(value: int, length: int) -> str:
    chars = []
    for _ in range(length):
        chars.append(CROCKFORD_ALPHABET[value & 31])
        value >>= 5
    return "".join(reversed(chars))


class SortableIdGenerator:
    """ULID generator (48-bit ms timestamp + 80 random bits, Crockford base32).

    Within a single millisecond the random part is incremented instead of
    redrawn, so ids from one process sort in creation order.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_ms = -1
        self._last_random = 0

    def next(self) -> str:
        with self._lock:
            now = time.time_ns() // 1_000_000
            if now <= self._last_ms:
                now = self._last_ms
                self._last_random = (self._last_random + 1) & ((1 << 80) - 1)
                if self._last_random == 0:
                    # random part overflowed; borrow the next millisecond
                    now += 1
            else:
                self._last_random = int.from_bytes(os.urandom(10), "big")
            self._last_ms = now
            return _encode_crockford(now & ((1 << 48) - 1), 10) + _encode_crockford(
                self._last_random, 16
            )


_sortable_ids = SortableIdGenerator()


def next_sortable_id() -> str:
    """Return a 26-character ULID whose lexicographic order follows creation order."""
    return _sortable_ids.next()
