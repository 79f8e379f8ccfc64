"""Block List Store — the process-wide set of blocked country codes.

Read-mostly, rare-write:
  - ``is_blocked()`` / ``snapshot()`` read a single ``frozenset`` reference
    without locking. A reference read is atomic, and the set it points at is
    never mutated, so a reader sees either the old list or the new one in
    full.
  - ``set_blocked()`` builds the new frozenset first and then swaps the
    reference under ``_write_lock``. The lock serialises writers only.

There is no merge or partial-update operation. Each replace discards the
previous contents.

Persistence: none by default. The list starts empty (or from
``blocking.initial_countries``) and is lost on restart. A
:class:`BlockListPersistence` can be supplied to save after every replace and
to ``reload()`` from.
"""

from __future__ import annotations

import threading
from typing import Iterable, Optional, Protocol, runtime_checkable

from geoblock.models.decision import normalize_country_code
from geoblock.utils.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class BlockListPersistence(Protocol):
    """Optional load/save seam for deployments that need the list to survive restarts."""

    def load(self) -> Iterable[str]:
        ...

    def save(self, countries: frozenset[str]) -> None:
        ...


def normalize_countries(countries: Iterable[str]) -> frozenset[str]:
    """Strip + upper-case each code and drop empties."""
    normalized: set[str] = set()
    for code in countries:
        value = normalize_country_code(code)
        if value:
            normalized.add(value)
    return frozenset(normalized)


class BlockListStore:
    """Injectable, thread-safe holder of the current block list."""

    def __init__(
        self,
        initial: Iterable[str] = (),
        persistence: Optional[BlockListPersistence] = None,
    ) -> None:
        self._blocked: frozenset[str] = normalize_countries(initial)
        self._write_lock = threading.Lock()
        self._persistence = persistence

    # ── Reads (lock-free) ─────────────────────────────────────────────────────

    def is_blocked(self, code: Optional[str]) -> bool:
        """Pure membership test against the current list."""
        normalized = normalize_country_code(code)
        if normalized is None:
            return False
        return normalized in self._blocked

    def snapshot(self) -> frozenset[str]:
        """The current list. Immutable, so safe to hand out."""
        return self._blocked

    def __len__(self) -> int:
        return len(self._blocked)

    # ── Writes ────────────────────────────────────────────────────────────────

    def set_blocked(self, countries: Iterable[str]) -> frozenset[str]:
        """Replace the entire block list atomically.

        Returns:
            The new, normalized list.
        """
        new_list = normalize_countries(countries)
        with self._write_lock:
            previous = self._blocked
            self._blocked = new_list
            if self._persistence is not None:
                self._persistence.save(new_list)
        logger.info(
            "Block list replaced",
            blocked_countries=sorted(new_list),
            previous_count=len(previous),
            count=len(new_list),
        )
        return new_list

    def reload(self) -> frozenset[str]:
        """Replace the list with the persisted one. No-op without persistence."""
        if self._persistence is None:
            return self._blocked
        loaded = normalize_countries(self._persistence.load())
        with self._write_lock:
            self._blocked = loaded
        logger.info("Block list reloaded", count=len(loaded))
        return loaded
