#!/usr/bin/env python3
"""
Refresh Scheduler
Re-lists the Drive folder on a fixed interval and swaps the result into the
photo set. A failed refresh keeps the previous photos.
"""

import logging
import time
from typing import Callable, Optional, Sequence

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from exceptions import AuthError, NotFoundError, TransientError
from gframe_types import ImageRef
from photo_set import PhotoSetStore

logger = logging.getLogger(__name__)

# Scheduler states
IDLE = 'idle'
REFRESHING = 'refreshing'
BLOCKED = 'blocked'    # waiting for a new credential
HALTED = 'halted'      # folder not found, periodic refresh stopped


class RefreshScheduler:
    """Periodic folder re-listing, independent of the slideshow advance timer"""

    def __init__(self, gateway, store: PhotoSetStore, folder_id: str,
                 dispatcher, interval: float = 1800.0, recursive: bool = False,
                 on_loaded: Optional[Callable[[Sequence[ImageRef]], None]] = None,
                 on_error: Optional[Callable[[Exception], None]] = None,
                 initial_attempts: int = 3,
                 clock: Callable[[], float] = time.monotonic):
        self._gateway = gateway
        self._store = store
        self.folder_id = folder_id
        self.recursive = recursive
        self.interval = interval
        self._dispatcher = dispatcher
        self.on_loaded = on_loaded
        self.on_error = on_error
        self.initial_attempts = max(1, initial_attempts)
        self._clock = clock
        self.retry_wait = wait_exponential(multiplier=1, min=2, max=30)

        self.state = IDLE
        self.loaded_once = False
        self._next_due: Optional[float] = None
        self._reported_not_found = False

    @property
    def next_due(self) -> Optional[float]:
        return self._next_due

    def _list_with_retry(self):
        """Startup listing: transient failures are retried with exponential backoff"""
        retrying = Retrying(
            stop=stop_after_attempt(self.initial_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception_type(TransientError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._gateway.list_images, self.folder_id, self.recursive)

    def _list_once(self):
        return self._gateway.list_images(self.folder_id, self.recursive)

    def start(self) -> None:
        """Kick off the initial listing right away"""
        logger.info(f"Loading photos from folder {self.folder_id}"
                    f"{' (including subfolders)' if self.recursive else ''}")
        self._fire(self._list_with_retry)

    def refresh_now(self) -> bool:
        if self.state == REFRESHING:
            logger.debug("Refresh already in progress")
            return False
        if self.state == BLOCKED:
            logger.debug("Refresh skipped: waiting for credentials")
            return False
        self._fire(self._list_once if self.loaded_once else self._list_with_retry)
        return True

    def poll(self) -> None:
        if self.state != IDLE or self._next_due is None:
            return
        if self._clock() >= self._next_due:
            logger.info("Refreshing folder contents")
            self._fire(self._list_once if self.loaded_once else self._list_with_retry)

    def block(self) -> None:
        """Stop listing until credential_updated(). A listing in flight still decides its own outcome."""
        if self.state in (IDLE, HALTED):
            logger.info("Folder refresh blocked until credentials are fixed")
            self.state = BLOCKED

    def credential_updated(self) -> None:
        """External signal that a new credential is available"""
        if self.state in (BLOCKED, HALTED):
            logger.info("Credentials updated, resuming folder refresh")
            self.state = IDLE
            self._reported_not_found = False
            self.refresh_now()

    def _fire(self, lister) -> None:
        self.state = REFRESHING
        self._next_due = self._clock() + self.interval
        self._dispatcher.submit(lister, on_success=self._on_listed, on_failure=self._on_failed)

    def _on_listed(self, photos) -> None:
        self.state = IDLE
        self.loaded_once = True
        self._store.replace(photos)
        logger.info(f"Photo set updated: {len(self._store)} photos")
        if self.on_loaded is not None:
            self.on_loaded(self._store.snapshot())

    def _on_failed(self, error: Exception) -> None:
        if isinstance(error, AuthError):
            self.state = BLOCKED
            logger.error(f"Folder refresh blocked until credentials are fixed: {error}")
        elif isinstance(error, NotFoundError):
            self.state = HALTED
            if self._reported_not_found:
                return
            self._reported_not_found = True
            logger.error(f"Folder {self.folder_id} is not accessible, stopping refresh: {error}")
        elif isinstance(error, TransientError):
            self.state = IDLE
            logger.warning(f"Folder refresh failed, keeping {len(self._store)} known photos: {error}")
        else:
            self.state = IDLE
            logger.error(f"Unexpected error refreshing folder: {error}", exc_info=error)

        if self.on_error is not None:
            self.on_error(error)
