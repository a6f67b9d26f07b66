#!/usr/bin/env python3
"""
Slideshow Controller
Drives the advance tick: picks the next photo, resolves its display URL and
hands it to the crossfade coordinator. Owns the photo set, the playback
cursor, the crossfade coordinator and the refresh scheduler of one folder.
"""

import logging
import random
import re
import time
from functools import partial
from typing import Callable, Optional, Protocol, Sequence, Tuple

from config_validation import SlideshowConfig
from crossfade import CrossfadeCoordinator, DisplaySlot
from exceptions import AuthError, LoadError, NotFoundError, TransientError
from gframe_types import DisplayRequest, ImageRef
from photo_set import PhotoSetStore, PlaybackCursor
from refresh import BLOCKED, RefreshScheduler

logger = logging.getLogger(__name__)

LOADING_MESSAGE = "Loading photos..."
EMPTY_MESSAGE = "No photos found in folder"


class InfoOverlay(Protocol):
    def set_text(self, text: str) -> None:
        ...


class PresentationSurface(Protocol):
    """What the controller needs from the screen"""
    slots: Sequence[DisplaySlot]
    overlay: Optional[InfoOverlay]

    def viewport(self) -> Tuple[int, int]:
        ...

    def show_message(self, text: str) -> None:
        ...

    def clear_message(self) -> None:
        ...


def format_photo_info(ref: ImageRef) -> str:
    """'March 5, 2024 • Beach' style caption; either part may be missing"""
    text = ""
    if ref.created_at is not None:
        d = ref.created_at
        text = f"{d:%B} {d.day}, {d.year}"
    if ref.display_name:
        # Remove file extension from display name
        display_name = re.sub(r'\.[^/.]+$', '', ref.display_name)
        text = f"{text} • {display_name}" if text else display_name
    return text


def error_message(error: Exception) -> str:
    """Short text for the on-screen error state"""
    if isinstance(error, AuthError):
        return "Not authenticated with Google Drive"
    if isinstance(error, NotFoundError):
        return "Google Drive folder not found"
    if isinstance(error, TransientError):
        return "Cannot reach Google Drive"
    return "Failed to load photos"


class SlideshowController:
    """One slideshow for one configured folder"""

    def __init__(self, config: SlideshowConfig, gateway, surface: PresentationSurface,
                 dispatcher, rng: Optional[random.Random] = None,
                 clock: Callable[[], float] = time.monotonic,
                 initial_attempts: int = 3):
        self.config = config
        self._gateway = gateway
        self._surface = surface
        self._dispatcher = dispatcher
        self._clock = clock

        self.store = PhotoSetStore()
        self.cursor = PlaybackCursor(self.store, shuffle=config.shuffle, rng=rng)
        self.coordinator = CrossfadeCoordinator(
            surface.slots, on_shown=self._on_shown, on_failed=self._on_load_failed
        )
        self.scheduler = RefreshScheduler(
            gateway, self.store, config.folder_id, dispatcher,
            interval=config.refresh_interval,
            recursive=config.recursive_search,
            on_loaded=self._on_photos_loaded,
            on_error=self._on_fetch_error,
            initial_attempts=initial_attempts,
            clock=clock,
        )

        self.paused = False
        self.auth_blocked = False
        self._next_advance: Optional[float] = None
        self._retry_at: Optional[float] = None
        self._request_id = 0
        self._in_flight: Optional[DisplayRequest] = None
        self._in_flight_since: Optional[float] = None
        self._message: Optional[str] = None

    # ----- lifecycle -----

    def start(self) -> None:
        self._set_message(LOADING_MESSAGE)
        self.scheduler.start()

    def poll(self) -> None:
        """Fire whatever timers are due. Called from the main loop."""
        self.scheduler.poll()
        if self.paused:
            return
        now = self._clock()
        if self._retry_at is not None and now >= self._retry_at:
            self._retry_at = None
            logger.debug("Retrying advance after failure")
            self.advance()
        elif self._next_advance is not None and now >= self._next_advance:
            self.advance()

    @property
    def next_advance(self) -> Optional[float]:
        return self._next_advance

    @property
    def retry_at(self) -> Optional[float]:
        return self._retry_at

    @property
    def in_flight(self) -> Optional[DisplayRequest]:
        return self._in_flight

    # ----- remote control -----

    def skip(self) -> None:
        """Show the next photo now"""
        self._retry_at = None
        self.advance(force=True)

    def pause(self) -> None:
        if not self.paused:
            logger.info("Slideshow paused")
            self.paused = True

    def resume(self) -> None:
        if self.paused:
            logger.info("Slideshow resumed")
            self.paused = False
            if self.store.snapshot():
                self._next_advance = self._clock() + self.config.update_interval

    def credential_updated(self) -> None:
        if self.auth_blocked:
            logger.info("Credentials updated, resuming slideshow")
            self.auth_blocked = False
            self._set_message(None)
            if self.store.snapshot():
                self._next_advance = self._clock() + self.config.startup_delay
        self.scheduler.credential_updated()

    # ----- advance -----

    def advance(self, force: bool = False) -> Optional[DisplayRequest]:
        """Request the next photo. Returns the new request, or None if nothing was issued."""
        if self.auth_blocked or self.scheduler.state == BLOCKED:
            self._block_on_auth(None)
            return None

        now = self._clock()
        self._next_advance = now + self.config.update_interval

        if self._in_flight is not None and not force:
            if now - self._in_flight_since < self.config.update_interval:
                logger.debug(f"Advance skipped: request {self._in_flight.request_id} still in flight")
                return None
            logger.warning(f"Request {self._in_flight.request_id} stalled, superseding it")

        ref = self.cursor.next()
        if ref is None:
            self._in_flight = None
            return None

        width, height = self._surface.viewport()
        self._request_id += 1
        request = DisplayRequest(ref, max(1, width), max(1, height), self._request_id)
        self._in_flight = request
        self._in_flight_since = now
        logger.debug(f"Request {request.request_id}: {ref.display_name or ref.id}")

        self._dispatcher.submit(
            self._gateway.resolve_display_url, ref, request.target_width, request.target_height,
            on_success=partial(self._on_resolved, request),
            on_failure=partial(self._on_resolve_failed, request),
        )
        return request

    def _is_current(self, request: Optional[DisplayRequest]) -> bool:
        return request is not None and self._in_flight is not None \
            and request.request_id == self._in_flight.request_id

    def _block_on_auth(self, error: Optional[Exception]) -> None:
        """Stop all fetching until credential_updated()"""
        if not self.auth_blocked:
            logger.error(f"Slideshow stopped until credentials are fixed{f': {error}' if error else ''}")
        self.auth_blocked = True
        self._in_flight = None
        self._next_advance = None
        self._retry_at = None
        self._set_message(error_message(error or AuthError()))
        self.scheduler.block()

    def _schedule_retry(self) -> None:
        self._in_flight = None
        self._retry_at = self._clock() + self.config.retry_backoff

    def _on_resolved(self, request: DisplayRequest, url: str) -> None:
        if not self._is_current(request):
            logger.debug(f"Dropping URL of superseded request {request.request_id}")
            return
        self.coordinator.show(url, context=request)

    def _on_resolve_failed(self, request: DisplayRequest, error: Exception) -> None:
        if not self._is_current(request):
            return
        if isinstance(error, AuthError):
            self._block_on_auth(error)
            return
        if isinstance(error, TransientError):
            url = self._gateway.fallback_url(request.image_ref)
            logger.warning(f"Could not resolve URL for {request.image_ref.display_name}, using direct link: {error}")
            self.coordinator.show(url, context=request)
            return
        logger.error(f"Could not resolve URL for {request.image_ref.display_name}: {error}")
        self._schedule_retry()

    def _on_shown(self, url: str, request: Optional[DisplayRequest]) -> None:
        if request is None:
            return
        # A superseded load can still win the crossfade; the caption follows the screen
        overlay = self._surface.overlay
        if self.config.show_photo_info and overlay is not None:
            overlay.set_text(format_photo_info(request.image_ref))
        if not self._is_current(request):
            return
        self._in_flight = None
        logger.info(f"Showing {request.image_ref.display_name or request.image_ref.id}")

    def _on_load_failed(self, url: str, error: LoadError, request: Optional[DisplayRequest]) -> None:
        if not self._is_current(request):
            return
        logger.error(f"Failed to load image, skipping: {error}")
        self._schedule_retry()

    # ----- photo set -----

    def _on_photos_loaded(self, photos: Sequence[ImageRef]) -> None:
        if self.auth_blocked:
            # The listing went through, so the credential works again
            logger.info("Drive access restored, resuming slideshow")
            self.auth_blocked = False

        if not photos:
            logger.warning("No photos found in folder")
            self._next_advance = None
            self._set_message(EMPTY_MESSAGE)
            return

        self._set_message(None)
        if self._next_advance is None:
            # Give the surface a moment before the first photo
            self._next_advance = self._clock() + self.config.startup_delay

    def _on_fetch_error(self, error: Exception) -> None:
        if isinstance(error, AuthError):
            self._block_on_auth(error)
            return
        if self.store.snapshot():
            # Keep showing what we have
            return
        self._set_message(error_message(error))

    def _set_message(self, text: Optional[str]) -> None:
        if text == self._message:
            return
        self._message = text
        if text is None:
            self._surface.clear_message()
        else:
            self._surface.show_message(text)

    @property
    def message(self) -> Optional[str]:
        return self._message
