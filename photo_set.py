#!/usr/bin/env python3
"""
Photo Set Module
Holds the known photos of the configured folder and walks them in a
non-repeating, optionally shuffled cycle
"""

import logging
import random
from typing import Callable, Iterable, List, Optional, Tuple

from gframe_types import ImageRef

logger = logging.getLogger(__name__)

PhotoSet = Tuple[ImageRef, ...]


class PhotoSetStore:
    """Current collection of photos. Only ever replaced as a whole."""

    def __init__(self):
        self._photos: PhotoSet = ()
        self._version = 0
        self._listeners: List[Callable[[PhotoSet], None]] = []

    def replace(self, new_set: Iterable[ImageRef]) -> None:
        photos = tuple(new_set)
        self._photos = photos
        self._version += 1
        logger.debug(f"Photo set replaced (version {self._version}, {len(photos)} photos)")
        for listener in list(self._listeners):
            listener(photos)

    def snapshot(self) -> PhotoSet:
        return self._photos

    def add_listener(self, listener: Callable[[PhotoSet], None]) -> None:
        self._listeners.append(listener)

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        return len(self._photos)


class PlaybackCursor:
    """
    Non-repeating traversal of a PhotoSetStore.

    Every photo is returned exactly once per cycle. With shuffle enabled a new
    permutation is drawn whenever the cycle wraps and whenever the store is
    replaced.
    """

    def __init__(self, store: PhotoSetStore, shuffle: bool = True,
                 rng: Optional[random.Random] = None):
        self._store = store
        self.shuffle = shuffle
        self._rng = rng or random.Random()
        self._position = 0
        self._order: List[int] = []
        store.add_listener(self._on_replaced)
        self._draw_order(len(store))

    @property
    def position(self) -> int:
        return self._position

    @property
    def order(self) -> List[int]:
        return list(self._order)

    def _draw_order(self, count: int) -> None:
        order = list(range(count))
        if self.shuffle:
            self._rng.shuffle(order)
        self._order = order

    def _on_replaced(self, photos) -> None:
        self.reset(len(photos))

    def reset(self, count: Optional[int] = None) -> None:
        """Restart the cycle at position 0 with a fresh traversal order"""
        if count is None:
            count = len(self._store)
        self._position = 0
        self._draw_order(count)

    def next(self) -> Optional[ImageRef]:
        photos = self._store.snapshot()
        if not photos:
            return None

        # Never index with an order computed for a different set size
        if len(self._order) != len(photos):
            self.reset(len(photos))

        photo = photos[self._order[self._position]]
        self._position = (self._position + 1) % len(photos)

        if self._position == 0 and self.shuffle:
            logger.debug(f"Cycle of {len(photos)} photos complete, reshuffling")
            self._draw_order(len(photos))

        return photo
