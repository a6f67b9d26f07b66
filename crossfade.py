#!/usr/bin/env python3
"""
Crossfade Coordinator
Alternates two display slots: the next image loads into the hidden slot and
the slots swap visibility only once that load is confirmed
"""

import copy
import logging
from functools import partial
from typing import Any, Callable, Optional, Protocol, Sequence

from exceptions import LoadError
from gframe_types import SlotState

logger = logging.getLogger(__name__)


class DisplaySlot(Protocol):
    """One image slot on the presentation surface"""

    def set_source(self, url: str, on_success: Callable[[], None],
                   on_failure: Callable[[Optional[Exception]], None]) -> None:
        ...

    def set_opacity(self, value: float) -> None:
        ...


ShownCallback = Callable[[str, Any], None]
FailedCallback = Callable[[str, LoadError, Any], None]


class CrossfadeCoordinator:
    """
    Idle(active) -> Loading(active, pending) -> Idle(pending) on success,
    Idle(active) on failure.

    Each slot has a generation counter. A load callback only acts when its
    generation is still the slot's current one, so a superseded load can never
    flip the visible slot.
    """

    def __init__(self, slots: Sequence[DisplaySlot],
                 on_shown: Optional[ShownCallback] = None,
                 on_failed: Optional[FailedCallback] = None):
        if len(slots) != 2:
            raise ValueError(f"Crossfade needs exactly 2 slots, got {len(slots)}")
        self._slots = list(slots)
        self._state = SlotState()
        self._generations = [0, 0]
        self._pending_context: Any = None
        self.on_shown = on_shown
        self.on_failed = on_failed

        # Slot 0 holds the placeholder until the first image arrives
        self._slots[0].set_opacity(1.0)
        self._slots[1].set_opacity(0.0)

    @property
    def state(self) -> SlotState:
        return copy.deepcopy(self._state)

    @property
    def active_slot(self) -> int:
        return self._state.active_slot

    @property
    def in_flight(self) -> bool:
        pending = 1 - self._state.active_slot
        return self._state.slots[pending].pending_url is not None

    def show(self, url: str, context: Any = None) -> int:
        """Start loading url into the hidden slot. Returns the load generation."""
        pending = 1 - self._state.active_slot
        entry = self._state.slots[pending]
        if entry.pending_url is not None:
            logger.debug(f"Superseding load of {entry.pending_url} in slot {pending}")

        self._generations[pending] += 1
        generation = self._generations[pending]
        entry.pending_url = url
        self._pending_context = context

        self._slots[pending].set_source(
            url,
            partial(self._load_succeeded, pending, generation),
            partial(self._load_failed, pending, generation),
        )
        return generation

    def _is_current(self, slot: int, generation: int) -> bool:
        return (generation == self._generations[slot]
                and slot != self._state.active_slot
                and self._state.slots[slot].pending_url is not None)

    def _load_succeeded(self, slot: int, generation: int) -> None:
        if not self._is_current(slot, generation):
            logger.debug(f"Dropping stale load completion (slot {slot}, generation {generation})")
            return

        previous = self._state.active_slot
        entry = self._state.slots[slot]
        url = entry.pending_url
        context = self._pending_context

        self._slots[slot].set_opacity(1.0)
        self._slots[previous].set_opacity(0.0)

        entry.current_url = url
        entry.pending_url = None
        self._state.active_slot = slot
        self._pending_context = None

        if self.on_shown is not None:
            self.on_shown(url, context)

    def _load_failed(self, slot: int, generation: int, error: Optional[Exception] = None) -> None:
        if not self._is_current(slot, generation):
            logger.debug(f"Dropping stale load failure (slot {slot}, generation {generation})")
            return

        entry = self._state.slots[slot]
        url = entry.pending_url
        context = self._pending_context
        entry.pending_url = None
        self._pending_context = None

        if isinstance(error, LoadError):
            load_error = error
        else:
            load_error = LoadError(url, str(error) if error else "")

        if self.on_failed is not None:
            self.on_failed(url, load_error, context)
