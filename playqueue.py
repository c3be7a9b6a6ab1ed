"""
Play queue with a cursor, shuffle permutation and repeat mode.

The queue stores track ids in insertion order. Shuffle never reorders that
storage; it keeps a separate permutation of storage indices, so switching
shuffle off is a plain lookup back into insertion order.

The cursor is a position in the current traversal order (the permutation
when shuffle is on, insertion order otherwise).
"""

from __future__ import annotations

import logging
import random
from typing import Iterable, Optional

from errors import EmptyQueueError, QueueError
from models import RepeatMode

logger = logging.getLogger(__name__)


class PlaybackQueue:
    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self._entries: list[int] = []
        self._shuffle_order: Optional[list[int]] = None
        self._pos: Optional[int] = None
        self._repeat = RepeatMode.OFF

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, track_id: object) -> bool:
        return track_id in self._entries

    @property
    def shuffle(self) -> bool:
        return self._shuffle_order is not None

    @property
    def repeat(self) -> RepeatMode:
        return self._repeat

    @property
    def loop(self) -> bool:
        return self._repeat != RepeatMode.OFF

    @property
    def cursor(self) -> Optional[int]:
        """Cursor position within the traversal order."""
        return self._pos

    def ids(self) -> list[int]:
        """Queued ids in insertion order."""
        return list(self._entries)

    def order(self) -> list[int]:
        """Queued ids in traversal order."""
        return [self._entries[i] for i in self._traversal()]

    def current(self) -> Optional[int]:
        if self._pos is None:
            return None
        return self._entries[self._traversal()[self._pos]]

    def require_current(self) -> int:
        current = self.current()
        if current is None:
            raise EmptyQueueError()
        return current

    def cursor_index(self) -> Optional[int]:
        """Insertion index of the entry under the cursor."""
        if self._pos is None:
            return None
        return self._traversal()[self._pos]

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def enqueue(self, track_id: int) -> None:
        self._entries.append(track_id)
        index = len(self._entries) - 1
        if self._shuffle_order is not None:
            # Only the unplayed tail may receive the new entry.
            lo = 0 if self._pos is None else self._pos + 1
            at = self._rng.randint(lo, len(self._shuffle_order))
            self._shuffle_order.insert(at, index)

    def extend(self, track_ids: Iterable[int]) -> None:
        for track_id in track_ids:
            self.enqueue(track_id)

    def remove(self, track_id: int) -> bool:
        """
        Remove the occurrence of ``track_id`` nearest the cursor.

        Returns True when the removed entry was the one under the cursor.
        """
        pos = self._nearest_position(track_id, forward=True)
        if pos is None:
            logger.debug("remove: track %s is not queued", track_id)
            return False
        return self._remove_at(pos)

    def remove_all(self, track_id: int) -> bool:
        """Remove every occurrence of ``track_id``; True if the cursor entry went with them."""
        hit_current = False
        while True:
            pos = self._nearest_position(track_id, forward=True)
            if pos is None:
                return hit_current
            hit_current = self._remove_at(pos) or hit_current

    def clear(self) -> None:
        self._entries.clear()
        if self._shuffle_order is not None:
            self._shuffle_order = []
        self._pos = None

    def restore(self, track_ids: Iterable[int], cursor_index: Optional[int], shuffle: bool) -> None:
        """Replace the contents, placing the cursor on an insertion index."""
        self._entries = list(track_ids)
        self._shuffle_order = None
        if cursor_index is not None and 0 <= cursor_index < len(self._entries):
            self._pos = cursor_index
        else:
            self._pos = None
        if shuffle:
            self.set_shuffle(True)

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def next(self, auto: bool = False) -> Optional[int]:
        """
        Advance the cursor and return the new current id.

        ``auto`` marks an advance caused by a track ending; only then does
        ``RepeatMode.ONE`` replay the same entry. Returns None at the end of
        the sequence when repeat is off, leaving the cursor in place.
        """
        n = len(self._entries)
        if n == 0:
            return None
        if self._pos is None:
            self._pos = 0
            return self.current()
        if auto and self._repeat == RepeatMode.ONE:
            return self.current()
        if self._pos + 1 < n:
            self._pos += 1
        elif self.loop:
            self._pos = 0
        else:
            return None
        return self.current()

    def previous(self) -> Optional[int]:
        n = len(self._entries)
        if n == 0 or self._pos is None:
            return None
        if self._pos > 0:
            self._pos -= 1
        elif self.loop:
            self._pos = n - 1
        else:
            return None
        return self.current()

    def jump_to(self, track_id: int) -> int:
        pos = self._nearest_position(track_id, forward=True)
        if pos is None:
            raise QueueError(f"Track {track_id} is not queued")
        self._pos = pos
        return track_id

    def set_shuffle(self, enabled: bool) -> None:
        if enabled == self.shuffle:
            return
        if enabled:
            n = len(self._entries)
            if self._pos is None:
                played: list[int] = []
                unplayed = list(range(n))
            else:
                played = list(range(self._pos + 1))
                unplayed = list(range(self._pos + 1, n))
            self._rng.shuffle(unplayed)
            self._shuffle_order = played + unplayed
        else:
            anchor = self.cursor_index()
            self._shuffle_order = None
            self._pos = anchor
        logger.debug("Shuffle %s", "on" if enabled else "off")

    def set_repeat(self, mode: RepeatMode) -> None:
        self._repeat = mode

    def set_loop(self, enabled: bool) -> None:
        self._repeat = RepeatMode.ALL if enabled else RepeatMode.OFF

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _traversal(self) -> list[int]:
        if self._shuffle_order is not None:
            return self._shuffle_order
        return list(range(len(self._entries)))

    def _nearest_position(self, track_id: int, *, forward: bool) -> Optional[int]:
        traversal = self._traversal()
        n = len(traversal)
        if n == 0:
            return None
        start = self._pos if self._pos is not None else 0
        step = 1 if forward else -1
        for offset in range(n):
            pos = (start + step * offset) % n
            if self._entries[traversal[pos]] == track_id:
                return pos
        return None

    def _remove_at(self, pos: int) -> bool:
        traversal = self._traversal()
        index = traversal[pos]
        del self._entries[index]
        if self._shuffle_order is not None:
            del self._shuffle_order[pos]
            self._shuffle_order = [i - 1 if i > index else i for i in self._shuffle_order]

        n = len(self._entries)
        if self._pos is None:
            return False
        if n == 0:
            self._pos = None
            return True
        if pos < self._pos:
            self._pos -= 1
            return False
        if pos > self._pos:
            return False
        # The cursor entry is gone: the next entry has slid into its place.
        if pos >= n:
            self._pos = 0 if self.loop else n - 1
        return True
